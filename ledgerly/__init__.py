"""Ledgerly backend: transactions and recurring transaction rules on Supabase."""

__version__ = "0.1.0"
