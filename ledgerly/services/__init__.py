"""
Service layer for the Ledgerly backend.

Business logic between the HTTP routes and the Supabase database:
- recurring_transaction_service: rules, materialization, scoped edits, skips
- occurrences: pure occurrence-date generation
- transaction_service: date-range reads (materializing first)
"""

from .occurrences import generate_occurrences, occurrences_for_rule
from .recurring_transaction_service import (
    create_rule,
    deactivate_rule,
    get_all_recurring_rules,
    get_recurring_rule_by_id,
    get_rule_for_transaction,
    materialize_for_range,
    skip_occurrence,
    update_recurring_transaction,
)
from .transaction_service import get_transaction_by_id, get_transactions_in_date_range

__all__ = [
    "generate_occurrences",
    "occurrences_for_rule",
    "create_rule",
    "get_all_recurring_rules",
    "get_recurring_rule_by_id",
    "get_rule_for_transaction",
    "deactivate_rule",
    "materialize_for_range",
    "update_recurring_transaction",
    "skip_occurrence",
    "get_transactions_in_date_range",
    "get_transaction_by_id",
]
