import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fintrack.core.config import settings
from fintrack.core.database import get_db
from fintrack.models.recurring import RecurringTransaction
from fintrack.schemas.recurring import (
    BulkProcessRequest,
    BulkProcessResponse,
    HistoryEntryResponse,
    ProcessedItemResponse,
    RecurringCreate,
    RecurringResponse,
    RecurringUpdate,
    UndoRequest,
    UndoResponse,
    UpcomingResponse,
    ValidationResponse,
)
from fintrack.services.schedule import advance
from fintrack.services.stores import definition_from_row, processor_for_session

router = APIRouter(prefix="/recurring", tags=["recurring"])


async def _get_or_404(db: AsyncSession, recurring_id: uuid.UUID) -> RecurringTransaction:
    rec = await db.get(RecurringTransaction, recurring_id)
    if not rec:
        raise HTTPException(status_code=404, detail="Not found")
    return rec


def failure_detail(rec: RecurringTransaction, attempted_at: datetime) -> str:
    """Reason for a failed process call; errors left over from earlier runs are ignored."""
    recorded_at = rec.last_error_date
    if recorded_at is not None and recorded_at.tzinfo is None:
        recorded_at = recorded_at.replace(tzinfo=timezone.utc)
    if rec.has_error and recorded_at is not None and recorded_at >= attempted_at:
        return rec.last_error
    return "Recurring transaction was not processed: not due or in use by another run"


# ─── Definitions ──────────────────────────────

@router.get("/", response_model=list[RecurringResponse])
async def list_recurring(db: AsyncSession = Depends(get_db)):
    """List all recurring definitions, soonest due first."""
    result = await db.execute(
        select(RecurringTransaction).order_by(RecurringTransaction.next_due_date)
    )
    return result.scalars().all()


@router.post("/", response_model=RecurringResponse, status_code=201)
async def create_recurring(
    payload: RecurringCreate,
    db: AsyncSession = Depends(get_db),
):
    rec = RecurringTransaction(
        type=payload.type.value,
        amount=payload.amount,
        description=payload.description,
        category=payload.category,
        frequency=payload.frequency.value,
        start_date=payload.start_date,
        next_due_date=payload.next_due_date or advance(payload.frequency, payload.start_date),
        is_active=payload.is_active,
        process_count=0,
        has_error=False,
    )
    db.add(rec)
    await db.flush()
    await db.refresh(rec)
    return rec


# ─── Views & processing ───────────────────────

@router.get("/due", response_model=list[RecurringResponse])
async def list_due(db: AsyncSession = Depends(get_db)):
    """Active definitions whose next due date has passed."""
    return await db.run_sync(lambda s: processor_for_session(s).due())


@router.get("/upcoming", response_model=list[UpcomingResponse])
async def list_upcoming(
    days: int = Query(default=settings.upcoming_days, ge=0, le=366),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(lambda s: processor_for_session(s).upcoming(days=days))


@router.post("/process-due", response_model=list[ProcessedItemResponse])
async def process_all_due(db: AsyncSession = Depends(get_db)):
    """Process every due definition now, ignoring the auto-processing policy."""
    return await db.run_sync(lambda s: processor_for_session(s).process_all_due())


@router.post("/process-selected", response_model=BulkProcessResponse)
async def process_selected(
    payload: BulkProcessRequest,
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(
        lambda s: processor_for_session(s).process_selected(payload.recurring_ids, notify=payload.notify)
    )


# ─── Single definition ────────────────────────

@router.get("/{recurring_id}", response_model=RecurringResponse)
async def get_recurring(recurring_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await _get_or_404(db, recurring_id)


@router.patch("/{recurring_id}", response_model=RecurringResponse)
async def update_recurring(
    recurring_id: uuid.UUID,
    payload: RecurringUpdate,
    db: AsyncSession = Depends(get_db),
):
    rec = await _get_or_404(db, recurring_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(rec, field, value.value if hasattr(value, "value") else value)

    await db.flush()
    await db.refresh(rec)
    return rec


@router.delete("/{recurring_id}", status_code=204)
async def delete_recurring(recurring_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Delete a definition. Transactions it already produced are kept."""
    rec = await _get_or_404(db, recurring_id)
    await db.delete(rec)


@router.get("/{recurring_id}/validate", response_model=ValidationResponse)
async def validate_recurring(recurring_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    rec = await _get_or_404(db, recurring_id)
    return await db.run_sync(lambda s: processor_for_session(s).validate(definition_from_row(rec)))


@router.post("/{recurring_id}/process", response_model=ProcessedItemResponse)
async def process_recurring(recurring_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    rec = await _get_or_404(db, recurring_id)
    attempted_at = datetime.now(timezone.utc)
    item = await db.run_sync(
        lambda s: processor_for_session(s).process_one(definition_from_row(rec), now=attempted_at)
    )
    if item is None:
        # Keep the recorded error fields; raising below would roll them back
        await db.commit()
        await db.refresh(rec)
        raise HTTPException(status_code=409, detail=failure_detail(rec, attempted_at))
    return item


@router.post("/{recurring_id}/undo", response_model=UndoResponse)
async def undo_recurring(
    recurring_id: uuid.UUID,
    payload: UndoRequest,
    db: AsyncSession = Depends(get_db),
):
    await _get_or_404(db, recurring_id)
    ok = await db.run_sync(
        lambda s: processor_for_session(s).undo(str(recurring_id), payload.transaction_id)
    )
    if not ok:
        raise HTTPException(status_code=409, detail="Transaction cannot be undone for this recurring item")
    return UndoResponse(success=True)


@router.get("/{recurring_id}/history", response_model=list[HistoryEntryResponse])
async def processing_history(
    recurring_id: uuid.UUID,
    limit: int | None = Query(default=None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(lambda s: processor_for_session(s).history(str(recurring_id), limit=limit))
