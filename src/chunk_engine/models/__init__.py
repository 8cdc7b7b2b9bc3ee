"""
Data models for the Chunk Engine.

Includes:
- Enums (RepeatStatus, Decision, Propagation, TransactionOutcome, RetryMode, JobStatus)
- Runtime records (CompletionDecision, RecoveryRecord, JobReport)
- Pydantic summaries (JobSummary, SkipSummary)
"""

from chunk_engine.models.enums import (
    Decision,
    JobStatus,
    Propagation,
    RepeatStatus,
    RetryMode,
    TransactionOutcome,
)
from chunk_engine.models.records import CompletionDecision, JobReport, RecoveryRecord
from chunk_engine.models.summary import JobSummary, SkipSummary

__all__ = [
    # Enums
    "Decision",
    "JobStatus",
    "Propagation",
    "RepeatStatus",
    "RetryMode",
    "TransactionOutcome",
    # Runtime records
    "CompletionDecision",
    "JobReport",
    "RecoveryRecord",
    # Summaries
    "JobSummary",
    "SkipSummary",
]
