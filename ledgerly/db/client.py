"""
Supabase client factory with RLS enforcement.

Every request gets its own client carrying the caller's JWT, so Row Level
Security scopes reads and writes to rows where user_id = auth.uid().
Service functions still filter on user_id explicitly.
"""

import logging

from ledgerly.config import settings
from supabase import Client, create_client

logger = logging.getLogger(__name__)


def get_supabase_client(access_token: str) -> Client:
    """
    Create an authenticated Supabase client for a specific user.

    Args:
        access_token: The user's JWT access token from Supabase Auth,
                      as verified in ledgerly/auth/dependencies.py.

    Returns:
        An authenticated Supabase client that enforces RLS.

    Example:
        >>> client = get_supabase_client(auth_user.access_token)
        >>> client.table("recurring_transactions").select("*").execute()
    """
    client: Client = create_client(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_PUBLISHABLE_KEY
    )

    # PostgREST requests carry the user's token; RLS resolves auth.uid() from it
    client.postgrest.auth(access_token)

    logger.debug("Created authenticated Supabase client with user token (RLS enforced)")

    return client
