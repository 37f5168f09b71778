"""
Transaction read and recurring-occurrence endpoints.

Endpoints:
- GET /transactions - Transactions in a date window (materializes recurring first)
- GET /transactions/{transaction_id} - Single transaction
- GET /transactions/{transaction_id}/recurring-rule - Rule behind a transaction
- PATCH /transactions/{transaction_id}/recurrence - Scoped edit of an occurrence
- POST /transactions/{transaction_id}/skip - Skip a single occurrence
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import ValidationError

from ledgerly.auth.dependencies import AuthenticatedUser, get_authenticated_user
from ledgerly.db.client import get_supabase_client
from ledgerly.errors import InvalidScopeError
from ledgerly.routes.errors import check_date_window, invalid_input_exception, to_http_exception
from ledgerly.schemas.recurring_transactions import (
    RecurringRuleLookupResponse,
    RecurringRuleResponse,
    RecurringUpdateRequest,
    RecurringUpdateResponse,
    SkipOccurrenceResponse,
    parse_recurring_edit,
)
from ledgerly.schemas.transactions import TransactionListResponse, TransactionResponse
from ledgerly.services.recurring_transaction_service import (
    get_rule_for_transaction,
    skip_occurrence,
    update_recurring_transaction,
)
from ledgerly.services.transaction_service import (
    get_transaction_by_id,
    get_transactions_in_date_range,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get(
    "",
    response_model=TransactionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List transactions in a date window",
    description="""
    Return manual and recurring transactions dated within
    [start_date, end_date] (inclusive), newest first.

    Recurring occurrences for the window are materialized before the read.
    If materialization fails the read still succeeds with the rows that
    already exist. Skipped occurrences are not returned.
    """
)
async def list_transactions(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    start_date: Annotated[date, Query(description="Window start (YYYY-MM-DD)")],
    end_date: Annotated[date, Query(description="Window end (YYYY-MM-DD)")],
) -> TransactionListResponse:
    """List transactions in a date window."""
    check_date_window(start_date, end_date)

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rows = await get_transactions_in_date_range(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            start_date=start_date,
            end_date=end_date
        )
        transactions = [TransactionResponse.from_row(r) for r in rows]
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve transactions")

    return TransactionListResponse(
        transactions=transactions,
        count=len(transactions),
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat()
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a transaction"
)
async def get_transaction(
    transaction_id: Annotated[str, Path(description="Transaction id")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> TransactionResponse:
    """Get a single transaction."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        row = await get_transaction_by_id(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            transaction_id=transaction_id
        )
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve transaction")

    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "details": f"Transaction {transaction_id} not found"}
        )

    try:
        return TransactionResponse.from_row(row)
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve transaction")


@router.get(
    "/{transaction_id}/recurring-rule",
    response_model=RecurringRuleLookupResponse,
    status_code=status.HTTP_200_OK,
    summary="Get the recurring rule behind a transaction",
    description="recurring_rule is null for manual transactions or unknown ids."
)
async def get_transaction_rule(
    transaction_id: Annotated[str, Path(description="Transaction id")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringRuleLookupResponse:
    """Look up the recurring rule for a transaction."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rule = await get_rule_for_transaction(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            transaction_id=transaction_id
        )
        rule_response = RecurringRuleResponse.from_row(rule) if rule else None
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve recurring rule")

    return RecurringRuleLookupResponse(
        transaction_id=transaction_id,
        recurring_rule=rule_response
    )


@router.patch(
    "/{transaction_id}/recurrence",
    response_model=RecurringUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit a recurring transaction",
    description="""
    Apply changes to a materialized recurring transaction under a scope.

    Scopes:
    - this-only: template fields and transaction_date; changes this row only.
      Moving to a date the rule already occupies returns 409.
    - this-and-future: template and schedule fields; updates the rule and the
      occurrences from this one onwards (deleted and regenerated when the
      schedule changes).
    - rule-only: template and schedule fields; updates the rule only.

    Fields that do not apply to the scope are rejected with 400.
    """
)
async def update_recurring(
    transaction_id: Annotated[str, Path(description="Transaction id")],
    request: RecurringUpdateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringUpdateResponse:
    """Edit a recurring transaction under a scope."""
    logger.info(f"Scoped edit ({request.scope}) of transaction {transaction_id} for user {auth_user.user_id}")

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        edit = parse_recurring_edit(request.scope, request.changes)
    except ValidationError as e:
        raise invalid_input_exception(e)
    except InvalidScopeError as e:
        raise to_http_exception(e, "update_error", "Failed to update recurring transaction")

    try:
        await update_recurring_transaction(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            transaction_id=transaction_id,
            edit=edit
        )
    except Exception as e:
        raise to_http_exception(e, "update_error", "Failed to update recurring transaction")

    return RecurringUpdateResponse(
        status="UPDATED",
        transaction_id=transaction_id,
        scope=request.scope,
        message=f"Recurring transaction updated ({request.scope})"
    )


@router.post(
    "/{transaction_id}/skip",
    response_model=SkipOccurrenceResponse,
    status_code=status.HTTP_200_OK,
    summary="Skip a recurring occurrence",
    description="""
    Permanently exclude this occurrence. The row is kept (hidden from reads)
    so later materialization does not recreate it.
    """
)
async def skip_recurring_occurrence(
    transaction_id: Annotated[str, Path(description="Transaction id")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> SkipOccurrenceResponse:
    """Skip a recurring occurrence."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        await skip_occurrence(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            transaction_id=transaction_id
        )
    except Exception as e:
        raise to_http_exception(e, "skip_error", "Failed to skip recurring occurrence")

    return SkipOccurrenceResponse(
        status="SKIPPED",
        transaction_id=transaction_id,
        message="Occurrence skipped"
    )
