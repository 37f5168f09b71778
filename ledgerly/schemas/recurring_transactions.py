"""
Pydantic schemas for recurring transaction rules and scoped edits.

A rule is a transaction template (type, amount, currency, category, account,
title, description) plus a schedule (frequency, interval, start/end date).
Edits to a materialized occurrence are a tagged union on `scope`; each variant
only accepts the fields that mean something for that scope.
"""

from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ledgerly.errors import InvalidScopeError

# Type aliases matching DB check constraints
RecurringFrequency = Literal["daily", "weekly", "monthly", "yearly"]
TransactionType = Literal["income", "expense"]
UpdateScope = Literal["this-only", "this-and-future", "rule-only"]

TEMPLATE_FIELDS: Tuple[str, ...] = (
    "type", "amount", "currency", "category_id", "account_id", "title", "description",
)
SCHEDULE_FIELDS: Tuple[str, ...] = ("frequency", "interval", "start_date", "end_date")

SCOPE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "this-only": TEMPLATE_FIELDS + ("transaction_date",),
    "this-and-future": TEMPLATE_FIELDS + SCHEDULE_FIELDS,
    "rule-only": TEMPLATE_FIELDS + SCHEDULE_FIELDS,
}

# Columns that are NOT NULL in the database; an explicit null is rejected
_REQUIRED_TEMPLATE_FIELDS = ("type", "amount", "currency", "title")
_REQUIRED_SCHEDULE_FIELDS = ("frequency", "interval", "start_date")


def _db_value(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _provided(model: BaseModel, names: Tuple[str, ...]) -> Dict[str, Any]:
    return {
        name: _db_value(getattr(model, name))
        for name in names
        if name in model.model_fields_set
    }


def _reject_nulls(model: BaseModel, names: Tuple[str, ...]) -> None:
    for name in names:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


# --- Rule models ---

class RecurringRuleCreateRequest(BaseModel):
    """
    Request body for creating a recurring rule.

    interval defaults to 1, timezone defaults to settings.DEFAULT_RULE_TIMEZONE.
    """
    type: TransactionType = Field(..., description="income or expense")
    amount: float = Field(..., description="Amount per occurrence", gt=0)
    currency: str = Field(..., description="ISO currency code", min_length=1, max_length=10)
    category_id: Optional[str] = Field(None, description="Expense category UUID")
    account_id: Optional[str] = Field(None, description="Account UUID")
    title: str = Field(..., description="Title copied onto each occurrence", min_length=1)
    description: Optional[str] = Field(None, description="Optional note")
    frequency: RecurringFrequency = Field(..., description="daily/weekly/monthly/yearly")
    interval: int = Field(1, description="Repeat every N units of frequency", ge=1)
    start_date: date = Field(..., description="First occurrence (YYYY-MM-DD)")
    end_date: Optional[date] = Field(None, description="Last possible occurrence (YYYY-MM-DD) or null")
    timezone: Optional[str] = Field(None, description="IANA timezone name, stored as metadata")

    @model_validator(mode="after")
    def validate_date_bounds(self) -> "RecurringRuleCreateRequest":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


def _as_str(v: Any) -> str:
    return str(v) if v is not None else ""


def _as_optional_str(v: Any) -> Optional[str]:
    return str(v) if v is not None and v != "" else None


class RecurringRuleResponse(BaseModel):
    """Recurring rule as stored in recurring_transactions."""
    id: str = Field(..., description="Rule UUID")
    user_id: str = Field(..., description="Owner user UUID")
    type: TransactionType
    amount: float
    currency: str
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    frequency: RecurringFrequency
    interval: int = Field(..., ge=1)
    start_date: str = Field(..., description="YYYY-MM-DD")
    end_date: Optional[str] = Field(None, description="YYYY-MM-DD, null = open-ended")
    timezone: str = "UTC"
    is_active: bool = True
    last_generated_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RecurringRuleResponse":
        """Build from a recurring_transactions row; malformed stored values raise ValidationError."""
        return cls(
            id=_as_str(row.get("id")),
            user_id=_as_str(row.get("user_id")),
            type=row.get("type", "expense"),
            amount=row.get("amount"),
            currency=_as_str(row.get("currency")),
            category_id=_as_optional_str(row.get("category_id")),
            account_id=_as_optional_str(row.get("account_id")),
            title=_as_str(row.get("title")),
            description=row.get("description"),
            frequency=row.get("frequency", "monthly"),
            interval=int(row.get("interval") or 1),
            start_date=_as_str(row.get("start_date")),
            end_date=_as_optional_str(row.get("end_date")),
            timezone=row.get("timezone") or "UTC",
            is_active=bool(row.get("is_active", True)),
            last_generated_date=_as_optional_str(row.get("last_generated_date")),
            created_at=_as_optional_str(row.get("created_at")),
            updated_at=_as_optional_str(row.get("updated_at")),
        )


class RecurringRuleListResponse(BaseModel):
    """List of recurring rules."""
    recurring_rules: List[RecurringRuleResponse]
    count: int = Field(..., description="Number of rules returned")


class RecurringRuleCreateResponse(BaseModel):
    status: Literal["CREATED"] = "CREATED"
    recurring_rule: RecurringRuleResponse
    message: str


class RecurringRuleDeactivateResponse(BaseModel):
    status: Literal["DEACTIVATED"] = "DEACTIVATED"
    recurring_rule_id: str
    message: str


class RecurringRuleLookupResponse(BaseModel):
    """Rule behind a transaction; recurring_rule is null for one-off transactions."""
    transaction_id: str
    recurring_rule: Optional[RecurringRuleResponse] = None


# --- Materialization ---

class MaterializeRequest(BaseModel):
    """Inclusive date window to materialize occurrences for."""
    start_date: date = Field(..., description="Window start (YYYY-MM-DD)")
    end_date: date = Field(..., description="Window end (YYYY-MM-DD)")

    @model_validator(mode="after")
    def validate_window(self) -> "MaterializeRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class MaterializeResponse(BaseModel):
    status: Literal["MATERIALIZED"] = "MATERIALIZED"
    start_date: str
    end_date: str
    transactions_created: int = Field(..., description="Rows inserted by this call")
    message: str


# --- Scoped edits ---

class _TemplateChanges(BaseModel):
    """Fields copied from the rule onto every materialized occurrence."""
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=1, max_length=10)
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @model_validator(mode="after")
    def reject_null_template_fields(self):
        _reject_nulls(self, _REQUIRED_TEMPLATE_FIELDS)
        return self

    def template_changes(self) -> Dict[str, Any]:
        """Template fields the caller actually supplied, as DB values."""
        return _provided(self, TEMPLATE_FIELDS)


class _ScheduleChanges(BaseModel):
    """Schedule fields; end_date may be set to null to make the rule open-ended."""
    model_config = ConfigDict(extra="forbid")

    frequency: Optional[RecurringFrequency] = None
    interval: Optional[int] = Field(None, ge=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def reject_null_schedule_fields(self):
        _reject_nulls(self, _REQUIRED_SCHEDULE_FIELDS)
        return self

    def schedule_changes(self) -> Dict[str, Any]:
        return _provided(self, SCHEDULE_FIELDS)


class ThisOnlyEdit(_TemplateChanges):
    """Edit a single occurrence; may move it to another date."""
    scope: Literal["this-only"] = "this-only"
    transaction_date: Optional[date] = None

    @model_validator(mode="after")
    def reject_null_transaction_date(self):
        _reject_nulls(self, ("transaction_date",))
        return self


class ThisAndFutureEdit(_TemplateChanges, _ScheduleChanges):
    """Edit the rule and reconcile occurrences from this one onwards."""
    scope: Literal["this-and-future"] = "this-and-future"


class RuleOnlyEdit(_TemplateChanges, _ScheduleChanges):
    """Edit the rule without touching any materialized occurrence."""
    scope: Literal["rule-only"] = "rule-only"


RecurringEdit = Annotated[
    Union[ThisOnlyEdit, ThisAndFutureEdit, RuleOnlyEdit],
    Field(discriminator="scope"),
]

_recurring_edit_adapter: TypeAdapter = TypeAdapter(RecurringEdit)


def parse_recurring_edit(scope: str, changes: Dict[str, Any]) -> Union[ThisOnlyEdit, ThisAndFutureEdit, RuleOnlyEdit]:
    """
    Build the scope-specific edit from a loose field mapping.

    Raises:
        InvalidScopeError: Unknown scope, or a field that does not apply to it
            (e.g. frequency under this-only, transaction_date under rule-only)
        pydantic.ValidationError: A field value is invalid (e.g. amount <= 0)
    """
    allowed = SCOPE_FIELDS.get(scope)
    if allowed is None:
        raise InvalidScopeError(
            f"Invalid scope: {scope}. Must be one of {', '.join(SCOPE_FIELDS)}"
        )

    rejected = sorted(key for key in changes if key not in allowed)
    if rejected:
        raise InvalidScopeError(
            f"Fields not allowed for scope '{scope}': {', '.join(rejected)}"
        )

    return _recurring_edit_adapter.validate_python({**changes, "scope": scope})


class RecurringUpdateRequest(BaseModel):
    """Request body for editing a recurring transaction under a scope."""
    scope: UpdateScope = Field(..., description="this-only, this-and-future or rule-only")
    changes: Dict[str, Any] = Field(default_factory=dict, description="Fields to change")


class RecurringUpdateResponse(BaseModel):
    status: Literal["UPDATED"] = "UPDATED"
    transaction_id: str
    scope: UpdateScope
    message: str


class SkipOccurrenceResponse(BaseModel):
    status: Literal["SKIPPED"] = "SKIPPED"
    transaction_id: str
    message: str
