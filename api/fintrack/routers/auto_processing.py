from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from fintrack.core.database import get_db
from fintrack.schemas.recurring import (
    AutoProcessingRunResponse,
    AutoProcessingSettingsResponse,
    AutoProcessingSettingsUpdate,
)
from fintrack.services.errors import StoreError
from fintrack.services.recurring_processor import AutoProcessingSettings
from fintrack.services.stores import SqlSettingsProvider, processor_for_session

router = APIRouter(prefix="/auto-processing", tags=["auto-processing"])

# Fields where an explicit null is meaningful (null processing_time disables the time gate)
_NULLABLE_FIELDS = {"processing_time"}


@router.get("/settings", response_model=AutoProcessingSettingsResponse)
async def get_settings(db: AsyncSession = Depends(get_db)):
    try:
        return await db.run_sync(lambda s: SqlSettingsProvider(s).load())
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


def settings_changes(payload: AutoProcessingSettingsUpdate) -> dict:
    """Fields the client actually sent; null only counts where it means something."""
    return {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in _NULLABLE_FIELDS
    }


def merge_settings(session: Session, changes: dict) -> AutoProcessingSettings:
    """Apply ``changes`` over the stored policy and save the result."""
    provider = SqlSettingsProvider(session)
    merged = replace(provider.load(), **changes)
    if not provider.save(merged):
        raise StoreError("Could not save auto-processing settings")
    return merged


@router.put("/settings", response_model=AutoProcessingSettingsResponse)
async def update_settings(
    payload: AutoProcessingSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Merge the given fields over the stored policy."""
    changes = settings_changes(payload)
    try:
        return await db.run_sync(lambda s: merge_settings(s, changes))
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.post("/run", response_model=AutoProcessingRunResponse)
async def run_now(db: AsyncSession = Depends(get_db)):
    """Run one unattended tick immediately, with every policy gate applied."""
    processed = await db.run_sync(lambda s: processor_for_session(s).run_auto_processing())
    return {"processed": processed}
