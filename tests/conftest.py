"""
Root-level conftest for all tests.
"""
import os

# Settings are built at import time by the worker modules, so the required
# connection settings must exist before anything from rpde_proxy is imported.
for key, value in {
    "POSTGRES_USER": "unit_test_user",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PASSWORD": "unit_test_password",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "unit_test_db",
    "REDIS_HOST": "localhost",
    "REDIS_PORT": "6379",
}.items():
    os.environ.setdefault(key, value)
