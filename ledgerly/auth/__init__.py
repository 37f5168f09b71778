"""Supabase Auth token verification for the Ledgerly backend."""

from .dependencies import AuthenticatedUser, get_authenticated_user

__all__ = ["AuthenticatedUser", "get_authenticated_user"]
