"""
Recurring rule API endpoints.

Endpoints:
- GET /recurring-transactions - List recurring rules
- POST /recurring-transactions - Create a recurring rule
- POST /recurring-transactions/materialize - Materialize occurrences for a window
- GET /recurring-transactions/{rule_id} - Get a single rule
- POST /recurring-transactions/{rule_id}/deactivate - Stop future occurrences
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ledgerly.auth.dependencies import AuthenticatedUser, get_authenticated_user
from ledgerly.db.client import get_supabase_client
from ledgerly.routes.errors import check_date_window, to_http_exception
from ledgerly.schemas.recurring_transactions import (
    MaterializeRequest,
    MaterializeResponse,
    RecurringRuleCreateRequest,
    RecurringRuleCreateResponse,
    RecurringRuleDeactivateResponse,
    RecurringRuleListResponse,
    RecurringRuleResponse,
)
from ledgerly.services.recurring_transaction_service import (
    create_rule,
    deactivate_rule,
    get_all_recurring_rules,
    get_recurring_rule_by_id,
    materialize_for_range,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recurring-transactions", tags=["recurring-transactions"])


@router.get(
    "",
    response_model=RecurringRuleListResponse,
    status_code=status.HTTP_200_OK,
    summary="List recurring rules",
    description="""
    Retrieve the authenticated user's recurring rules, newest first.

    Security:
    - Requires valid Authorization Bearer token
    - RLS ensures users only see their own rules
    """
)
async def list_recurring_rules(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    active_only: Annotated[bool, Query(description="Only return active rules")] = False,
) -> RecurringRuleListResponse:
    """List recurring rules for the authenticated user."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rules = await get_all_recurring_rules(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            active_only=active_only
        )
        responses = [RecurringRuleResponse.from_row(r) for r in rules]
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve recurring rules")

    logger.info(f"Returning {len(responses)} recurring rules for user {auth_user.user_id}")

    return RecurringRuleListResponse(recurring_rules=responses, count=len(responses))


@router.post(
    "",
    response_model=RecurringRuleCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurring rule",
    description="""
    Create a rule that materializes transactions on a daily, weekly, monthly
    or yearly cadence.

    This endpoint:
    - Validates interval >= 1 and end_date >= start_date
    - Does not materialize anything; occurrences appear when a date window
      containing them is read or materialized
    """
)
async def create_recurring_rule(
    request: RecurringRuleCreateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringRuleCreateResponse:
    """Create a recurring rule."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        created = await create_rule(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            rule=request
        )
        rule_response = RecurringRuleResponse.from_row(created)
    except Exception as e:
        raise to_http_exception(e, "create_error", "Failed to create recurring rule")

    return RecurringRuleCreateResponse(
        status="CREATED",
        recurring_rule=rule_response,
        message="Recurring rule created successfully"
    )


@router.post(
    "/materialize",
    response_model=MaterializeResponse,
    status_code=status.HTTP_200_OK,
    summary="Materialize recurring occurrences for a date window",
    description="""
    Create transaction rows for every active rule occurrence inside
    [start_date, end_date] (inclusive).

    Idempotent: existing occurrences (including edited ones) are left
    untouched and skipped occurrences are never recreated. Safe to retry.
    Windows longer than MAX_MATERIALIZE_WINDOW_DAYS are rejected with 400.
    """
)
async def materialize_recurring_transactions(
    request: MaterializeRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> MaterializeResponse:
    """Materialize recurring occurrences in a window."""
    check_date_window(request.start_date, request.end_date)

    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        created = await materialize_for_range(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            start_date=request.start_date,
            end_date=request.end_date
        )
    except Exception as e:
        raise to_http_exception(e, "materialize_error", "Failed to materialize recurring transactions")

    return MaterializeResponse(
        status="MATERIALIZED",
        start_date=request.start_date.isoformat(),
        end_date=request.end_date.isoformat(),
        transactions_created=created,
        message=f"Created {created} transactions from recurring rules"
    )


@router.get(
    "/{rule_id}",
    response_model=RecurringRuleResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a recurring rule"
)
async def get_recurring_rule(
    rule_id: Annotated[str, Path(description="Recurring rule UUID")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringRuleResponse:
    """Get a single recurring rule."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        rule = await get_recurring_rule_by_id(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            rule_id=rule_id
        )
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve recurring rule")

    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "details": f"Recurring rule {rule_id} not found"}
        )

    try:
        return RecurringRuleResponse.from_row(rule)
    except Exception as e:
        raise to_http_exception(e, "fetch_error", "Failed to retrieve recurring rule")


@router.post(
    "/{rule_id}/deactivate",
    response_model=RecurringRuleDeactivateResponse,
    status_code=status.HTTP_200_OK,
    summary="Deactivate a recurring rule",
    description="""
    Stop all future materialization of a rule. Transactions already
    materialized stay in place and remain editable.
    """
)
async def deactivate_recurring_rule(
    rule_id: Annotated[str, Path(description="Recurring rule UUID")],
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> RecurringRuleDeactivateResponse:
    """Deactivate a recurring rule."""
    supabase_client = get_supabase_client(auth_user.access_token)

    try:
        await deactivate_rule(
            supabase_client=supabase_client,
            user_id=auth_user.user_id,
            rule_id=rule_id
        )
    except Exception as e:
        raise to_http_exception(e, "deactivate_error", "Failed to deactivate recurring rule")

    return RecurringRuleDeactivateResponse(
        status="DEACTIVATED",
        recurring_rule_id=rule_id,
        message="Recurring rule deactivated; existing transactions were kept"
    )
