"""
Pydantic schemas for transaction read endpoints.

Transactions are either entered manually or materialized from a recurring
rule; materialized rows carry recurring_rule_id and recurrence_occurrence_date.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class TransactionResponse(BaseModel):
    """A single row of the transactions table."""
    transaction_id: str = Field(..., description="Transaction id")
    user_id: str
    type: Literal["income", "expense"]
    amount: float
    currency: str
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    transaction_date: str = Field(..., description="YYYY-MM-DD")
    recurring_rule_id: Optional[str] = Field(
        None,
        description="Rule this row was materialized from (null for manual entries)"
    )
    recurrence_occurrence_date: Optional[str] = Field(
        None,
        description="Occurrence date this row realizes (YYYY-MM-DD)"
    )
    is_recurring_skipped: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TransactionResponse":
        """Build from a transactions row; a malformed row (e.g. non-numeric amount) raises ValidationError."""
        def _opt(v: Any) -> Optional[str]:
            return str(v) if v is not None else None

        return cls(
            transaction_id=str(row.get("transaction_id", "")),
            user_id=str(row.get("user_id", "")),
            type=row.get("type", "expense"),
            amount=row.get("amount"),
            currency=str(row.get("currency") or ""),
            category_id=_opt(row.get("category_id")),
            account_id=_opt(row.get("account_id")),
            title=str(row.get("title") or ""),
            description=row.get("description"),
            transaction_date=str(row.get("transaction_date", ""))[:10],
            recurring_rule_id=_opt(row.get("recurring_rule_id")),
            recurrence_occurrence_date=_opt(row.get("recurrence_occurrence_date")),
            is_recurring_skipped=bool(row.get("is_recurring_skipped") or False),
            created_at=_opt(row.get("created_at")),
            updated_at=_opt(row.get("updated_at")),
        )


class TransactionListResponse(BaseModel):
    """Transactions inside an inclusive date window."""
    transactions: List[TransactionResponse]
    count: int = Field(..., description="Number of transactions returned")
    start_date: str
    end_date: str
