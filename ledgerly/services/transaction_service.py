"""
Transaction read service.

Date-range reads materialize recurring occurrences first, so the window
contains both manual entries and rows generated from active rules.

CRITICAL RULES:
1. All operations filter on the authenticated user_id (RLS enforces it too)
2. A failed materialization never blocks the read; the window may be stale
3. Skipped recurring occurrences are hidden from reads
"""

import logging
from typing import Any, Dict, List, Optional

from ledgerly.services.recurring_transaction_service import (
    TRANSACTIONS_TABLE,
    execute_query,
    materialize_for_range,
    require_user,
)
from ledgerly.utils.dates import DateLike, to_iso

logger = logging.getLogger(__name__)


async def get_transactions_in_date_range(
    supabase_client: Any,
    user_id: Optional[str],
    start_date: DateLike,
    end_date: DateLike
) -> List[Dict[str, Any]]:
    """
    Fetch the user's transactions inside an inclusive date window.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: The authenticated user's ID
        start_date: Window start (YYYY-MM-DD), inclusive
        end_date: Window end (YYYY-MM-DD), inclusive

    Returns:
        Transactions ordered by transaction_date desc, then created_at desc

    Raises:
        UnauthenticatedError: If user_id is missing
        StoreError: If the read itself fails
    """
    user_id = require_user(user_id, "fetch transactions")
    start_iso = to_iso(start_date)
    end_iso = to_iso(end_date)

    try:
        await materialize_for_range(supabase_client, user_id, start_iso, end_iso)
    except Exception as e:
        logger.warning(
            f"Recurring materialization failed for user {user_id}; "
            f"proceeding with direct fetch: {e}",
            exc_info=True
        )
        # Don't raise - existing rows are still returned

    result = execute_query(
        supabase_client.table(TRANSACTIONS_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("is_recurring_skipped", False)
        .gte("transaction_date", start_iso)
        .lte("transaction_date", end_iso)
        .order("transaction_date", desc=True)
        .order("created_at", desc=True),
        "Failed to fetch transactions in date range"
    )

    transactions: List[Dict[str, Any]] = result.data or []
    logger.info(f"Fetched {len(transactions)} transactions for user {user_id} in [{start_iso}, {end_iso}]")
    return transactions


async def get_transaction_by_id(
    supabase_client: Any,
    user_id: Optional[str],
    transaction_id: str
) -> Optional[Dict[str, Any]]:
    """Fetch one transaction, or None if it does not exist for this user."""
    user_id = require_user(user_id, "fetch transactions")

    result = execute_query(
        supabase_client.table(TRANSACTIONS_TABLE)
        .select("*")
        .eq("transaction_id", transaction_id)
        .eq("user_id", user_id)
        .limit(1),
        f"Failed to fetch transaction {transaction_id}"
    )

    if result.data:
        return result.data[0]
    return None
