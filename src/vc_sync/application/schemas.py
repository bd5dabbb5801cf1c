"""Pydantic schemas for vc_sync API."""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from src.vc_common.enums import SyncType
from src.vc_transaction.domain.models import SyncStats

MAX_MANUAL_RANGE_DAYS = 30


class ManualSyncRequest(BaseModel):
    sync_type: SyncType
    date_start: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")
    date_end: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")
    card_id: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "ManualSyncRequest":
        start = date.fromisoformat(self.date_start)
        end = date.fromisoformat(self.date_end)
        if start > end:
            raise ValueError("date_start must not be after date_end")
        if (end - start).days > MAX_MANUAL_RANGE_DAYS:
            raise ValueError(f"date range must not exceed {MAX_MANUAL_RANGE_DAYS} days")
        return self


class SyncStatsResponse(BaseModel):
    job: str
    total: int
    inserted: int
    merged: int
    skipped: int
    errors: int

    @classmethod
    def from_stats(cls, job: str, stats: SyncStats) -> "SyncStatsResponse":
        return cls(job=job, **stats.as_dict())
