"""
Pytest configuration for Ledgerly backend tests.

Sets up test environment and global fixtures.
"""
import os
import pytest
from unittest.mock import MagicMock

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")

from fakes import FakeSupabaseClient  # noqa: E402


@pytest.fixture
def supabase_client():
    """
    Mock Supabase client for route tests.
    Returns a MagicMock that simulates Supabase client behavior.
    """
    mock_client = MagicMock()
    return mock_client


@pytest.fixture
def fake_client() -> FakeSupabaseClient:
    """In-memory Supabase double with the recurring_transactions and transactions tables."""
    return FakeSupabaseClient()


@pytest.fixture
def user_id() -> str:
    return "user-1"
