"""
pytest configuration and fixtures.

Loads environment variables from .env file for all tests and provides an
in-memory SQLite database for repository and store tests.
"""

from pathlib import Path

import pytest
from dotenv import load_dotenv

from trackproof.db import DatabaseConnection
from trackproof.db.tables import metadata


def pytest_configure(config):
    """Load .env file before running tests"""
    # Find the project root (where .env is located)
    project_root = Path(__file__).parent.parent
    env_file = project_root / ".env"

    if env_file.exists():
        print(f"Loading environment from {env_file}")
        load_dotenv(env_file)
    else:
        print(f"Warning: .env file not found at {env_file}")


@pytest.fixture
def sqlite_db():
    """Initialize DatabaseConnection against a fresh in-memory SQLite database."""
    DatabaseConnection.close()
    DatabaseConnection.initialize(database_url="sqlite://")
    metadata.create_all(DatabaseConnection.get_engine())
    yield DatabaseConnection
    DatabaseConnection.close()


# PNG signature followed by filler; enough for MIME detection and hashing
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
