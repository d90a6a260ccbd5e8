import enum
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from fintrack.services.schedule import Frequency

_HH_MM = r"^([01]\d|2[0-3]):([0-5]\d)$"


class TransactionType(str, enum.Enum):
    income = "income"
    expense = "expense"


# ─── Recurring definitions ────────────────────────────────────────────────────

class RecurringCreate(BaseModel):
    type: TransactionType
    amount: Decimal = Field(gt=0, decimal_places=2)
    description: str = Field(min_length=1, max_length=200)
    category: str = Field(min_length=1, max_length=100)
    frequency: Frequency = Frequency.monthly
    start_date: datetime
    next_due_date: datetime | None = None   # defaults to one period after start_date
    is_active: bool = True

    @field_validator("description", "category")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class RecurringUpdate(BaseModel):
    type: TransactionType | None = None
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    description: str | None = Field(default=None, min_length=1, max_length=200)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    frequency: Frequency | None = None
    next_due_date: datetime | None = None
    is_active: bool | None = None


class RecurringResponse(BaseModel):
    id: uuid.UUID
    type: str
    amount: Decimal
    description: str
    category: str
    frequency: str
    start_date: datetime | None
    next_due_date: datetime
    is_active: bool
    process_count: int
    last_processed: datetime | None
    last_undone: datetime | None
    has_error: bool
    last_error: str | None
    last_error_date: datetime | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: uuid.UUID
    recurring_id: uuid.UUID | None
    type: str
    amount: Decimal
    category: str
    description: str
    date: datetime
    is_recurring: bool

    model_config = {"from_attributes": True}


# ─── Processing ───────────────────────────────────────────────────────────────

class ProcessedItemResponse(BaseModel):
    recurring: RecurringResponse
    transaction: TransactionResponse

    model_config = {"from_attributes": True}


class ProcessFailureResponse(BaseModel):
    recurring_id: str
    error: str


class BulkProcessRequest(BaseModel):
    recurring_ids: list[str] = Field(min_length=1)
    notify: bool = True


class BulkProcessResponse(BaseModel):
    processed: list[ProcessedItemResponse]
    errors: list[ProcessFailureResponse]


class UpcomingResponse(BaseModel):
    recurring: RecurringResponse
    days_until_due: int


class HistoryEntryResponse(BaseModel):
    id: uuid.UUID
    amount: Decimal
    date: datetime
    description: str


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str]


class UndoRequest(BaseModel):
    transaction_id: str


class UndoResponse(BaseModel):
    success: bool


# ─── Auto-processing settings ─────────────────────────────────────────────────

class AutoProcessingSettingsResponse(BaseModel):
    enabled: bool
    auto_process_income: bool
    auto_process_expenses: bool
    max_amount: Decimal
    require_confirmation: bool
    exclude_categories: list[str]
    processing_time: str | None
    weekends_only: bool
    notify_after_processing: bool

    model_config = {"from_attributes": True}


class AutoProcessingSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    enabled: bool | None = None
    auto_process_income: bool | None = None
    auto_process_expenses: bool | None = None
    max_amount: Decimal | None = Field(default=None, ge=0)
    require_confirmation: bool | None = None
    exclude_categories: list[str] | None = None
    processing_time: str | None = Field(default=None, pattern=_HH_MM)
    weekends_only: bool | None = None
    notify_after_processing: bool | None = None


class AutoProcessingRunResponse(BaseModel):
    processed: list[ProcessedItemResponse]
