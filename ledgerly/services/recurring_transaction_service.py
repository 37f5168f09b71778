"""
Service layer for recurring transaction rules.

Handles:
- Rule creation, lookup and deactivation
- Materialization: turning rule occurrences inside a date window into
  concrete rows of the transactions table
- Scoped edits of materialized occurrences (this-only, this-and-future,
  rule-only) and single-occurrence skips

CRITICAL RULES:
1. Every query filters on the authenticated user_id (RLS enforces it too)
2. Materialization is idempotent: rows are upserted on
   (user_id, recurring_rule_id, recurrence_occurrence_date) with
   ignore-on-conflict, so re-running never clobbers per-occurrence edits
3. Skipped occurrences keep their row (is_recurring_skipped = true) and are
   never regenerated
4. No application-level locking; the unique constraint is the only guard
   against concurrent materialization
"""

from datetime import date
from typing import Any, Dict, List, Optional, Set, Union

import httpx
from postgrest.exceptions import APIError

from ledgerly.config import settings
from ledgerly.errors import (
    DateConflictError,
    InvalidRuleError,
    InvalidScopeError,
    NotFoundError,
    StoreError,
    UnauthenticatedError,
)
from ledgerly.schemas.recurring_transactions import (
    RecurringRuleCreateRequest,
    RuleOnlyEdit,
    ThisAndFutureEdit,
    ThisOnlyEdit,
)
from ledgerly.services.occurrences import occurrences_for_rule
from ledgerly.utils.dates import DateLike, parse_date, parse_optional_date, to_iso
from ledgerly.utils.logging import get_logger

logger = get_logger(__name__)

RULES_TABLE = "recurring_transactions"
TRANSACTIONS_TABLE = "transactions"
OCCURRENCE_CONFLICT_KEY = "user_id,recurring_rule_id,recurrence_occurrence_date"
# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"

RecurringEditModel = Union[ThisOnlyEdit, ThisAndFutureEdit, RuleOnlyEdit]


def require_user(user_id: Optional[str], action: str) -> str:
    """Fail fast before any query when there is no authenticated user."""
    if not user_id:
        raise UnauthenticatedError(f"User must be authenticated to {action}")
    return user_id


def execute_query(query: Any, failure: str) -> Any:
    """
    Run a PostgREST query builder, converting store failures into StoreError.

    Args:
        query: Supabase query builder (anything with .execute())
        failure: Message prefix describing the operation, used in logs and errors

    Raises:
        StoreError: On PostgREST API errors or transport failures
    """
    try:
        return query.execute()
    except APIError as e:
        logger.error(f"{failure}: {e.message} (code={e.code})")
        raise StoreError(f"{failure}: {e.message}", code=e.code) from e
    except httpx.HTTPError as e:
        logger.error(f"{failure}: {e}")
        raise StoreError(f"{failure}: {e}") from e


def occurrence_transaction_id(rule_id: str, occurrence: DateLike) -> str:
    """Deterministic id of the row materialized for a rule occurrence."""
    return f"rtx_{rule_id}_{to_iso(occurrence)}"


# --- Rules ---

async def create_rule(
    supabase_client: Any,
    user_id: Optional[str],
    rule: RecurringRuleCreateRequest
) -> Dict[str, Any]:
    """
    Create a new recurring rule.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: User UUID from auth token
        rule: Validated rule definition

    Returns:
        Created recurring_transactions row

    Raises:
        UnauthenticatedError: If user_id is missing
        StoreError: If the insert fails
    """
    user_id = require_user(user_id, "create recurring rules")
    logger.info(f"Creating {rule.frequency} recurring rule for user {user_id}")

    insert_data = {
        "user_id": user_id,
        "type": rule.type,
        "amount": rule.amount,
        "currency": rule.currency,
        "category_id": rule.category_id,
        "account_id": rule.account_id,
        "title": rule.title,
        "description": rule.description,
        "start_date": rule.start_date.isoformat(),
        "end_date": rule.end_date.isoformat() if rule.end_date else None,
        "frequency": rule.frequency,
        "interval": rule.interval,
        "timezone": rule.timezone or settings.DEFAULT_RULE_TIMEZONE,
        "is_active": True,
    }

    result = execute_query(
        supabase_client.table(RULES_TABLE).insert(insert_data),
        "Failed to create recurring rule"
    )

    if not result.data:
        raise StoreError("Failed to create recurring rule: no data returned")

    created: Dict[str, Any] = result.data[0]
    logger.info(f"Recurring rule created: {created.get('id')}")
    return created


async def get_all_recurring_rules(
    supabase_client: Any,
    user_id: Optional[str],
    active_only: bool = False
) -> List[Dict[str, Any]]:
    """List the user's rules, newest first."""
    user_id = require_user(user_id, "list recurring rules")

    query = supabase_client.table(RULES_TABLE).select("*").eq("user_id", user_id)
    if active_only:
        query = query.eq("is_active", True)

    result = execute_query(
        query.order("created_at", desc=True),
        "Failed to fetch recurring rules"
    )
    return result.data or []


async def get_recurring_rule_by_id(
    supabase_client: Any,
    user_id: Optional[str],
    rule_id: str
) -> Optional[Dict[str, Any]]:
    """Fetch one rule, or None if it does not exist for this user."""
    user_id = require_user(user_id, "fetch recurring rules")

    result = execute_query(
        supabase_client.table(RULES_TABLE)
        .select("*")
        .eq("id", rule_id)
        .eq("user_id", user_id)
        .limit(1),
        f"Failed to fetch recurring rule {rule_id}"
    )

    if result.data:
        return result.data[0]
    return None


async def deactivate_rule(
    supabase_client: Any,
    user_id: Optional[str],
    rule_id: str
) -> None:
    """
    Stop all future materialization of a rule.

    Already-materialized rows are left alone and stay visible as ordinary
    transactions.

    Raises:
        NotFoundError: If the rule does not exist for this user
    """
    user_id = require_user(user_id, "deactivate recurring rules")
    logger.info(f"Deactivating recurring rule {rule_id} for user {user_id}")

    result = execute_query(
        supabase_client.table(RULES_TABLE)
        .update({"is_active": False})
        .eq("id", rule_id)
        .eq("user_id", user_id),
        f"Failed to deactivate recurring rule {rule_id}"
    )

    if not result.data:
        raise NotFoundError(f"Recurring rule {rule_id} not found")


async def get_rule_for_transaction(
    supabase_client: Any,
    user_id: Optional[str],
    transaction_id: str
) -> Optional[Dict[str, Any]]:
    """
    Return the rule a transaction was materialized from.

    Returns:
        The rule row, or None if the transaction does not exist, is a manual
        entry, or its rule is gone.
    """
    user_id = require_user(user_id, "fetch recurring rules")

    transaction = await _fetch_transaction(supabase_client, user_id, transaction_id)
    if not transaction or not transaction.get("recurring_rule_id"):
        return None

    return await get_recurring_rule_by_id(
        supabase_client, user_id, str(transaction["recurring_rule_id"])
    )


# --- Materialization ---

def _occurrence_payload(user_id: str, rule: Dict[str, Any], occurrence: date) -> Dict[str, Any]:
    rule_id = str(rule["id"])
    occurrence_iso = occurrence.isoformat()
    return {
        "transaction_id": occurrence_transaction_id(rule_id, occurrence),
        "user_id": user_id,
        "type": rule.get("type"),
        "amount": rule.get("amount"),
        "currency": rule.get("currency"),
        "category_id": rule.get("category_id"),
        "account_id": rule.get("account_id"),
        "title": rule.get("title"),
        "description": rule.get("description"),
        "transaction_date": occurrence_iso,
        "recurring_rule_id": rule_id,
        "recurrence_occurrence_date": occurrence_iso,
        "is_recurring_skipped": False,
    }


async def _get_skipped_occurrences(
    supabase_client: Any,
    user_id: str,
    rule_ids: List[str],
    window_start: date,
    window_end: date
) -> Dict[str, Set[str]]:
    """Skipped occurrence dates inside the window, grouped by rule id."""
    result = execute_query(
        supabase_client.table(TRANSACTIONS_TABLE)
        .select("recurring_rule_id,recurrence_occurrence_date")
        .eq("user_id", user_id)
        .in_("recurring_rule_id", rule_ids)
        .eq("is_recurring_skipped", True)
        .gte("recurrence_occurrence_date", window_start.isoformat())
        .lte("recurrence_occurrence_date", window_end.isoformat()),
        "Failed to fetch skipped occurrences"
    )

    skipped: Dict[str, Set[str]] = {}
    for row in result.data or []:
        if not row.get("recurrence_occurrence_date"):
            continue
        skipped.setdefault(str(row["recurring_rule_id"]), set()).add(
            to_iso(row["recurrence_occurrence_date"])
        )
    return skipped


async def _advance_last_generated_date(
    supabase_client: Any,
    user_id: str,
    rule: Dict[str, Any],
    latest: date
) -> None:
    """
    Record the latest materialized occurrence on the rule.

    Bookkeeping only; failures are logged and never fail materialization.
    """
    current = parse_optional_date(rule.get("last_generated_date"))
    if current is not None and current >= latest:
        return

    try:
        execute_query(
            supabase_client.table(RULES_TABLE)
            .update({"last_generated_date": latest.isoformat()})
            .eq("id", str(rule["id"]))
            .eq("user_id", user_id),
            f"Failed to record last_generated_date for rule {rule['id']}"
        )
    except StoreError as e:
        logger.warning(f"Could not advance last_generated_date for rule {rule['id']}: {e}")


def _upsert_batch(supabase_client: Any, rule_id: str, payloads: List[Dict[str, Any]]) -> int:
    result = execute_query(
        supabase_client.table(TRANSACTIONS_TABLE).upsert(
            payloads,
            on_conflict=OCCURRENCE_CONFLICT_KEY,
            ignore_duplicates=True,
        ),
        f"Failed to materialize transactions for rule {rule_id}"
    )
    return len(result.data or [])


async def _upsert_occurrences(
    supabase_client: Any,
    rule_id: str,
    payloads: List[Dict[str, Any]]
) -> int:
    """
    Insert occurrence rows, ignoring ones whose occurrence already exists.

    A unique violation the conflict key does not absorb (another row already
    holds the deterministic transaction_id) would reject the whole batch, so
    the batch is retried row by row and only the clashing rows are dropped.
    """
    try:
        return _upsert_batch(supabase_client, rule_id, payloads)
    except StoreError as e:
        if e.code != UNIQUE_VIOLATION:
            raise
        logger.warning(f"Rule {rule_id}: batch hit a unique violation, retrying occurrences one by one")

    inserted = 0
    for payload in payloads:
        try:
            inserted += _upsert_batch(supabase_client, rule_id, [payload])
        except StoreError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
            logger.warning(
                f"Rule {rule_id}: skipping occurrence {payload['recurrence_occurrence_date']}, "
                f"id {payload['transaction_id']} is already taken"
            )
    return inserted


async def materialize_for_range(
    supabase_client: Any,
    user_id: Optional[str],
    start_date: DateLike,
    end_date: DateLike
) -> int:
    """
    Ensure concrete rows exist for every active rule occurrence in a window.

    Steps:
    1. Fetch the user's active rules
    2. Generate each rule's occurrences inside [start_date, end_date]
    3. Drop occurrences already marked skipped
    4. Upsert the rest keyed by (user_id, recurring_rule_id,
       recurrence_occurrence_date), ignoring rows that already exist

    Safe to call repeatedly and concurrently; a second call with the same
    window inserts nothing. Reads do not materialize on their own, so callers
    run this before reading a date range.

    Args:
        supabase_client: Authenticated Supabase client
        user_id: User UUID from auth token
        start_date: Window start (date or YYYY-MM-DD), inclusive
        end_date: Window end (date or YYYY-MM-DD), inclusive

    Returns:
        Number of rows inserted by this call

    Raises:
        UnauthenticatedError: If user_id is missing
        StoreError: If fetching rules or upserting rows fails
    """
    user_id = require_user(user_id, "materialize recurring transactions")
    window_start = parse_date(start_date)
    window_end = parse_date(end_date)

    logger.info(f"Materializing recurring transactions for user {user_id} in [{window_start}, {window_end}]")

    rules_result = execute_query(
        supabase_client.table(RULES_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("is_active", True),
        "Failed to fetch recurring rules"
    )
    rules: List[Dict[str, Any]] = rules_result.data or []

    planned: Dict[str, List[date]] = {}
    rules_by_id: Dict[str, Dict[str, Any]] = {}
    for rule in rules:
        rule_id = str(rule["id"])
        try:
            occurrences = occurrences_for_rule(rule, window_start, window_end)
        except (ValueError, KeyError) as e:
            logger.warning(f"Skipping malformed recurring rule {rule_id}: {e}")
            continue
        if occurrences:
            planned[rule_id] = occurrences
            rules_by_id[rule_id] = rule

    if not planned:
        logger.info(f"No occurrences due for user {user_id} in window")
        return 0

    skipped = await _get_skipped_occurrences(
        supabase_client, user_id, list(planned), window_start, window_end
    )

    created = 0
    for rule_id, occurrences in planned.items():
        skipped_dates = skipped.get(rule_id, set())
        pending = [occ for occ in occurrences if occ.isoformat() not in skipped_dates]
        if not pending:
            continue

        rule = rules_by_id[rule_id]
        payloads = [_occurrence_payload(user_id, rule, occ) for occ in pending]

        inserted = await _upsert_occurrences(supabase_client, rule_id, payloads)
        created += inserted
        logger.debug(f"Rule {rule_id}: {len(pending)} occurrences due, {inserted} inserted")

        await _advance_last_generated_date(supabase_client, user_id, rule, pending[-1])

    logger.info(f"Materialization complete for user {user_id}: {created} transactions created from {len(planned)} rules")
    return created


# --- Scoped edits ---

async def _fetch_transaction(
    supabase_client: Any,
    user_id: str,
    transaction_id: str
) -> Optional[Dict[str, Any]]:
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


async def _get_recurring_transaction(
    supabase_client: Any,
    user_id: str,
    transaction_id: str
) -> Dict[str, Any]:
    transaction = await _fetch_transaction(supabase_client, user_id, transaction_id)
    if not transaction:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    if not transaction.get("recurring_rule_id"):
        raise NotFoundError(f"Transaction {transaction_id} is not a recurring transaction")
    return transaction


async def _apply_rule_update(
    supabase_client: Any,
    user_id: str,
    rule_id: str,
    payload: Dict[str, Any]
) -> Dict[str, Any]:
    """Update a rule, checking the merged schedule still has end >= start."""
    rule = await get_recurring_rule_by_id(supabase_client, user_id, rule_id)
    if rule is None:
        raise NotFoundError(f"Recurring rule {rule_id} not found")

    start = parse_date(payload.get("start_date", rule.get("start_date")))
    end = parse_optional_date(payload["end_date"] if "end_date" in payload else rule.get("end_date"))
    if end is not None and end < start:
        raise InvalidRuleError(f"end_date {end} is before start_date {start}")

    result = execute_query(
        supabase_client.table(RULES_TABLE)
        .update(payload)
        .eq("id", rule_id)
        .eq("user_id", user_id),
        f"Failed to update recurring rule {rule_id}"
    )
    if not result.data:
        raise NotFoundError(f"Recurring rule {rule_id} not found")

    return result.data[0]


def _vacated_marker_id(rule_id: str, occurrence: str) -> str:
    return f"{occurrence_transaction_id(rule_id, occurrence)}_moved"


async def _mark_vacated_occurrence(
    supabase_client: Any,
    user_id: str,
    transaction: Dict[str, Any],
    occurrence: str
) -> None:
    """
    Leave a skipped marker on the date an occurrence was moved away from.

    Without it the next materialization would regenerate the vacated
    occurrence next to the moved row.
    """
    rule_id = str(transaction["recurring_rule_id"])
    marker = {
        "transaction_id": _vacated_marker_id(rule_id, occurrence),
        "user_id": user_id,
        "type": transaction.get("type"),
        "amount": transaction.get("amount"),
        "currency": transaction.get("currency"),
        "category_id": transaction.get("category_id"),
        "account_id": transaction.get("account_id"),
        "title": transaction.get("title"),
        "description": transaction.get("description"),
        "transaction_date": occurrence,
        "recurring_rule_id": rule_id,
        "recurrence_occurrence_date": occurrence,
        "is_recurring_skipped": True,
    }
    execute_query(
        supabase_client.table(TRANSACTIONS_TABLE).upsert(
            marker,
            on_conflict=OCCURRENCE_CONFLICT_KEY,
            ignore_duplicates=True,
        ),
        f"Failed to mark vacated occurrence {occurrence} of rule {rule_id}"
    )


async def _remove_vacated_marker(
    supabase_client: Any,
    user_id: str,
    marker_id: str
) -> None:
    execute_query(
        supabase_client.table(TRANSACTIONS_TABLE)
        .delete()
        .eq("transaction_id", marker_id)
        .eq("user_id", user_id)
        .eq("is_recurring_skipped", True),
        f"Failed to remove vacated-occurrence marker {marker_id}"
    )


async def _update_this_only(
    supabase_client: Any,
    user_id: str,
    transaction: Dict[str, Any],
    edit: ThisOnlyEdit
) -> None:
    transaction_id = str(transaction["transaction_id"])
    rule_id = str(transaction["recurring_rule_id"])
    payload = edit.template_changes()

    vacated: Optional[str] = None
    reclaimed_marker: Optional[Dict[str, Any]] = None
    if edit.transaction_date is not None:
        new_date = edit.transaction_date.isoformat()
        old_date = to_iso(
            transaction.get("recurrence_occurrence_date") or transaction["transaction_date"]
        )
        payload["transaction_date"] = new_date

        if new_date != old_date:
            existing = execute_query(
                supabase_client.table(TRANSACTIONS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("recurring_rule_id", rule_id)
                .eq("recurrence_occurrence_date", new_date)
                .neq("transaction_id", transaction_id)
                .limit(1),
                f"Failed to check occurrence date {new_date} for rule {rule_id}"
            )
            if existing.data:
                occupant = existing.data[0]
                # Moving an occurrence back onto the date it was generated for
                # replaces the marker left there when it moved away
                is_own_marker = (
                    transaction_id == occurrence_transaction_id(rule_id, new_date)
                    and occupant.get("transaction_id") == _vacated_marker_id(rule_id, new_date)
                )
                if not is_own_marker:
                    logger.warning(f"Date conflict moving transaction {transaction_id} to {new_date}")
                    raise DateConflictError(rule_id, new_date)
                reclaimed_marker = occupant

            payload["recurrence_occurrence_date"] = new_date
            vacated = old_date

    if not payload:
        logger.info(f"No changes supplied for transaction {transaction_id}")
        return

    if reclaimed_marker is not None:
        await _remove_vacated_marker(
            supabase_client, user_id, str(reclaimed_marker["transaction_id"])
        )

    try:
        result = execute_query(
            supabase_client.table(TRANSACTIONS_TABLE)
            .update(payload)
            .eq("transaction_id", transaction_id)
            .eq("user_id", user_id),
            f"Failed to update transaction {transaction_id}"
        )
    except StoreError:
        if reclaimed_marker is not None:
            await _mark_vacated_occurrence(
                supabase_client, user_id, reclaimed_marker, str(reclaimed_marker["recurrence_occurrence_date"])
            )
        raise
    if not result.data:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    if vacated is None:
        return

    try:
        await _mark_vacated_occurrence(supabase_client, user_id, transaction, vacated)
    except StoreError:
        # Restore the row so the vacated occurrence is not regenerated next to it
        logger.warning(f"Reverting date move of transaction {transaction_id} back to {vacated}")
        execute_query(
            supabase_client.table(TRANSACTIONS_TABLE)
            .update({key: transaction.get(key) for key in payload})
            .eq("transaction_id", transaction_id)
            .eq("user_id", user_id),
            f"Failed to revert date move of transaction {transaction_id}"
        )
        raise


async def _update_this_and_future(
    supabase_client: Any,
    user_id: str,
    transaction: Dict[str, Any],
    edit: ThisAndFutureEdit
) -> None:
    rule_id = str(transaction["recurring_rule_id"])
    template = edit.template_changes()
    schedule = edit.schedule_changes()

    if not template and not schedule:
        logger.info(f"No changes supplied for rule {rule_id}")
        return

    await _apply_rule_update(supabase_client, user_id, rule_id, {**template, **schedule})

    from_date = to_iso(transaction["transaction_date"])

    def future_rows(query: Any) -> Any:
        return (
            query.eq("recurring_rule_id", rule_id)
            .eq("user_id", user_id)
            .gte("transaction_date", from_date)
            .eq("is_recurring_skipped", False)
        )

    if schedule:
        # Cadence changed: drop future rows, the next materialization regenerates them
        result = execute_query(
            future_rows(supabase_client.table(TRANSACTIONS_TABLE).delete()),
            f"Failed to clear future occurrences of rule {rule_id}"
        )
        logger.info(
            f"Schedule of rule {rule_id} changed; removed {len(result.data or [])} "
            f"occurrences from {from_date}"
        )
    else:
        result = execute_query(
            future_rows(supabase_client.table(TRANSACTIONS_TABLE).update(template)),
            f"Failed to update future occurrences of rule {rule_id}"
        )
        logger.info(f"Updated {len(result.data or [])} occurrences of rule {rule_id} from {from_date}")


async def update_recurring_transaction(
    supabase_client: Any,
    user_id: Optional[str],
    transaction_id: str,
    edit: RecurringEditModel
) -> None:
    """
    Apply an edit to a recurring transaction under the edit's scope.

    Scopes:
    - this-only: change this row only; a transaction_date change moves the
      occurrence (DateConflictError if the rule already has a row on that date)
    - this-and-future: change the rule, then either delete non-skipped rows
      dated on or after this one (schedule changed, they get regenerated) or
      update them in place (template-only change)
    - rule-only: change the rule, leave every materialized row as is

    Args:
        supabase_client: Authenticated Supabase client
        user_id: User UUID from auth token
        transaction_id: Materialized transaction being edited
        edit: ThisOnlyEdit, ThisAndFutureEdit or RuleOnlyEdit
            (see parse_recurring_edit)

    Raises:
        UnauthenticatedError: If user_id is missing
        NotFoundError: If the transaction is missing or not recurring
        DateConflictError: If a this-only move hits an occupied date
        InvalidRuleError: If the resulting rule would end before it starts
        InvalidScopeError: If edit is not one of the scoped edit types
        StoreError: If a store operation fails
    """
    user_id = require_user(user_id, "update recurring transactions")
    transaction = await _get_recurring_transaction(supabase_client, user_id, transaction_id)
    rule_id = str(transaction["recurring_rule_id"])

    logger.info(f"Updating recurring transaction {transaction_id} (rule {rule_id}) with scope {edit.scope}")

    if isinstance(edit, ThisOnlyEdit):
        await _update_this_only(supabase_client, user_id, transaction, edit)
    elif isinstance(edit, ThisAndFutureEdit):
        await _update_this_and_future(supabase_client, user_id, transaction, edit)
    elif isinstance(edit, RuleOnlyEdit):
        payload = {**edit.template_changes(), **edit.schedule_changes()}
        if payload:
            await _apply_rule_update(supabase_client, user_id, rule_id, payload)
    else:
        raise InvalidScopeError(f"Unsupported edit type: {type(edit).__name__}")


async def skip_occurrence(
    supabase_client: Any,
    user_id: Optional[str],
    transaction_id: str
) -> None:
    """
    Permanently exclude one occurrence.

    The row stays (is_recurring_skipped = true) so materialization can see the
    skip and never recreate it; reads hide it.

    Raises:
        NotFoundError: If the transaction is missing or not recurring
    """
    user_id = require_user(user_id, "skip recurring transactions")
    await _get_recurring_transaction(supabase_client, user_id, transaction_id)

    logger.info(f"Skipping recurring occurrence {transaction_id} for user {user_id}")

    result = execute_query(
        supabase_client.table(TRANSACTIONS_TABLE)
        .update({"is_recurring_skipped": True})
        .eq("transaction_id", transaction_id)
        .eq("user_id", user_id),
        f"Failed to skip transaction {transaction_id}"
    )
    if not result.data:
        raise NotFoundError(f"Transaction {transaction_id} not found")
