"""
Serializable job summary models.

These models are the audit view of a finished job: everything in them is
JSON-safe, so they can be logged, stored or returned by a caller's API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from chunk_engine.models.enums import JobStatus
from chunk_engine.models.records import JobReport, RecoveryRecord


class SkipSummary(BaseModel):
    """One skipped item, reduced to JSON-safe fields."""

    model_config = ConfigDict(extra="forbid")

    key: Optional[str] = Field(default=None, description="Logical identity of the item")
    item: str = Field(..., description="repr() of the skipped item")
    error_type: str = Field(..., description="Class name of the final exception")
    error_message: str = Field(..., description="Message of the final exception")
    attempts: int = Field(..., ge=0, description="Process attempts made before the skip")
    recovered_at: datetime

    @classmethod
    def from_record(cls, record: RecoveryRecord) -> "SkipSummary":
        return cls(
            key=None if record.key is None else str(record.key),
            item=repr(record.item),
            error_type=type(record.error).__name__,
            error_message=str(record.error),
            attempts=record.attempts,
            recovered_at=record.recovered_at,
        )


class JobSummary(BaseModel):
    """
    Final status and counters of a chunk job.

    status is completed, completed_with_skips or failed; skipped items are
    listed for audit.
    """

    model_config = ConfigDict(extra="forbid")

    job_id: str
    status: JobStatus
    chunks_committed: int = Field(..., ge=0)
    rollbacks: int = Field(..., ge=0)
    items_read: int = Field(..., ge=0)
    items_written: int = Field(..., ge=0)
    items_filtered: int = Field(..., ge=0)
    skips: list[SkipSummary] = Field(default_factory=list)
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_report(cls, report: JobReport) -> "JobSummary":
        if report.status is None:
            raise ValueError(f"Job {report.job_id} has not finished")
        return cls(
            job_id=report.job_id,
            status=report.status,
            chunks_committed=report.chunks_committed,
            rollbacks=report.rollbacks,
            items_read=report.items_read,
            items_written=report.items_written,
            items_filtered=report.items_filtered,
            skips=[SkipSummary.from_record(r) for r in report.skips],
            error_type=type(report.error).__name__ if report.error else None,
            error_message=str(report.error) if report.error else None,
            started_at=report.started_at,
            finished_at=report.finished_at,
        )
