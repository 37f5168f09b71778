"""
Database access layer for the Ledgerly backend.

All database operations MUST respect Row Level Security (user_id = auth.uid())
and filter on the authenticated user's id. Table schemas and migrations live
in the Supabase project, not here.
"""

from .client import get_supabase_client

__all__ = ["get_supabase_client"]
