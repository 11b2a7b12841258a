"""Setup configuration for the nutrition-storefront cart and checkout backend."""

from setuptools import setup, find_packages

setup(
    name="nutrition-storefront",
    version="1.0.0",
    description="Cart, guest-cart merge and Stripe checkout backend for a nutrition storefront",
    author="Your Name",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn>=0.27.0",
        "redis>=5.0.0",
        "confluent-kafka>=2.3.0",
        "sqlalchemy>=2.0.23,<2.1",
        "psycopg2-binary>=2.9.9",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "stripe>=8.0.0",
        "httpx>=0.26.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.26.0",
        ],
    },
)
