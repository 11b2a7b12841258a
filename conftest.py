# Root conftest: puts the project root on sys.path for the test suite and
# points the shared engine at an in-memory database before anything imports it
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
