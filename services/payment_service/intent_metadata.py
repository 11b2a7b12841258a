"""
Cart items carried in PaymentIntent metadata.

Stripe caps metadata values at 500 characters and an object at 50 keys, so
the compact JSON item list is split into consecutive chunks:

    items, items_1, items_2, ...

Reading concatenates the chunks in order until the next key is missing.
"""

import json
from typing import Any, Dict, List, Mapping

VALUE_LIMIT = 500
MAX_ITEM_CHUNKS = 40


class ItemsTooLargeError(ValueError):
    """The item list does not fit in PaymentIntent metadata."""


def _chunk_key(index: int) -> str:
    return "items" if index == 0 else f"items_{index}"


def items_metadata(items: List[Dict[str, Any]]) -> Dict[str, str]:
    encoded = json.dumps(items, separators=(",", ":"))
    chunks = [encoded[start:start + VALUE_LIMIT] for start in range(0, len(encoded), VALUE_LIMIT)]
    if len(chunks) > MAX_ITEM_CHUNKS:
        raise ItemsTooLargeError("Too many items in cart")
    return {_chunk_key(index): chunk for index, chunk in enumerate(chunks)}


def items_from_metadata(metadata: Mapping[str, str]) -> List[Dict[str, Any]]:
    parts = []
    index = 0
    while _chunk_key(index) in metadata:
        parts.append(metadata[_chunk_key(index)])
        index += 1
    return json.loads("".join(parts)) if parts else []
