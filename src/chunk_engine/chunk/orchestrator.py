"""
Chunk orchestrator.

Composes the repeat, transaction and retry layers into a chunk-oriented
job:

    outer RepeatEngine(ExceptionTolerant(Exhaustion))
      TransactionBoundary(REQUIRED)                 one chunk
        inner RepeatEngine(Count(chunk_size))
          RetryEngine                                one item: read, process
        ItemWriter.apply per output

A chunk commits only when every item it drew was processed or skipped. An
unrecovered failure rolls the chunk back; the outer loop then restarts from
wherever the reader resumes, until the input is exhausted or the failures
become critical or too many in a row.

Usage:
    boundary = TransactionBoundary(ResourcelessTransactionManager())
    reader = QueueItemReader(items, boundary)
    writer = ListItemWriter(boundary)
    report = ChunkOrchestrator(reader, writer, boundary, processor=handle).run()
"""

import dataclasses
import itertools
import threading
import time
import uuid
from collections.abc import Callable, Hashable
from concurrent.futures import Executor
from typing import Any, TYPE_CHECKING

import structlog

from chunk_engine.chunk.interfaces import EXHAUSTED, ItemProcessor, ItemReader, ItemWriter, RecoveryListener
from chunk_engine.chunk.model import Chunk
from chunk_engine.exceptions import ConfigurationError, SynchronizationError
from chunk_engine.models.enums import Propagation, RepeatStatus, RetryMode
from chunk_engine.models.records import JobReport
from chunk_engine.monitoring.metrics import (
    chunk_duration_seconds,
    chunks_total,
    items_total,
    rollbacks_total,
)
from chunk_engine.repeat.engine import RepeatEngine
from chunk_engine.repeat.policies import (
    CountCompletionPolicy,
    ExceptionTolerantCompletionPolicy,
    ExhaustionCompletionPolicy,
)
from chunk_engine.retry.classifier import ExceptionClassifier
from chunk_engine.retry.context import InMemoryRetryContextStore, RetryContextStore
from chunk_engine.retry.engine import RetryEngine
from chunk_engine.retry.policy import RetryPolicy
from chunk_engine.retry.results import Processed
from chunk_engine.transaction.boundary import TransactionBoundary, TransactionStatus

if TYPE_CHECKING:
    from chunk_engine.config import Settings

logger = structlog.get_logger(__name__)

KeyGenerator = Callable[[Any], Hashable]


def _identity(item: Any) -> Any:
    return item


class ChunkOrchestrator:
    """
    Runs a read-process-write job in transactional chunks.

    Attributes:
        reader: Input collaborator
        writer: Output collaborator
        boundary: Transaction boundary of the chunk resource
        processor: Process step (identity when omitted); ``None`` results
            are filtered
        recovery_listener: Notified once per skipped item after commit
        chunk_size: Items drawn per chunk transaction
        retry_policy: Attempt budget and failure classification
        retry_mode: STATEFUL (rollback per failed attempt) or STATELESS
            (in-place retries inside savepoints)
        retry_store: Keyed retry contexts for stateful mode
        key_generator: Logical identity of an item (stateful mode)
        critical: Classifier of job-fatal failures
        max_outer_attempts: Consecutive failed chunks before the job fails
        item_propagation: Propagation of the process step; unset means
            NESTED for stateless retry when available, REQUIRED otherwise
        skip_enabled: Exhausted items are skipped and recorded; when False
            exhaustion fails the chunk with RetryExhausted
        recover_on_final_failure: Stateful mode recovers in the attempt that
            exhausts the item (requires NESTED item propagation)
        chunk_concurrency: Chunks in flight, each in its own transaction
        item_concurrency: Items in flight within one chunk transaction
    """

    def __init__(
        self,
        reader: ItemReader,
        writer: ItemWriter,
        boundary: TransactionBoundary,
        *,
        processor: ItemProcessor | Callable[[Any], Any] | None = None,
        recovery_listener: RecoveryListener | None = None,
        chunk_size: int = 10,
        retry_policy: RetryPolicy | None = None,
        retry_mode: RetryMode = RetryMode.STATEFUL,
        retry_store: RetryContextStore | None = None,
        key_generator: KeyGenerator | None = None,
        critical: ExceptionClassifier | None = None,
        max_outer_attempts: int = 10,
        item_propagation: Propagation | None = None,
        skip_enabled: bool = True,
        recover_on_final_failure: bool = False,
        chunk_concurrency: int = 1,
        item_concurrency: int = 1,
        executor: Executor | None = None,
    ):
        if chunk_size < 1:
            raise ConfigurationError("chunk_size must be >= 1", {"chunk_size": chunk_size})
        if max_outer_attempts < 1:
            raise ConfigurationError(
                "max_outer_attempts must be >= 1", {"max_outer_attempts": max_outer_attempts}
            )

        self.reader = reader
        self.writer = writer
        self.boundary = boundary
        self.recovery_listener = recovery_listener
        self.chunk_size = chunk_size
        self.retry_mode = RetryMode(retry_mode)
        self.critical = critical or ExceptionClassifier.always(False)
        self.key_generator = key_generator or _identity
        self.max_outer_attempts = max_outer_attempts
        self.skip_enabled = skip_enabled
        self.recover_on_final_failure = recover_on_final_failure
        self.chunk_concurrency = chunk_concurrency
        self.item_concurrency = item_concurrency
        self.executor = executor

        if processor is None:
            self._process: Callable[[Any], Any] = _identity
        elif hasattr(processor, "process"):
            self._process = processor.process
        else:
            self._process = processor

        policy = retry_policy or RetryPolicy()
        if critical is not None:
            # Critical failures must bypass retry and recovery as well
            policy = dataclasses.replace(policy, fatal=policy.fatal | critical)
        self.retry_policy = policy

        if item_propagation is None:
            if self.retry_mode is RetryMode.STATELESS and boundary.supports(Propagation.NESTED):
                item_propagation = Propagation.NESTED
            else:
                item_propagation = Propagation.REQUIRED
        self.item_propagation = Propagation(item_propagation)

        if self.retry_mode is RetryMode.STATEFUL and retry_store is None:
            retry_store = InMemoryRetryContextStore()
        self.retry_store = retry_store

        self._validate()

        self.retry_engine = RetryEngine(
            policy=self.retry_policy,
            store=self.retry_store,
            boundary=boundary,
            recover_on_final_failure=recover_on_final_failure,
        )
        self._chunk_numbers = itertools.count(1)
        self._numbers_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        reader: ItemReader,
        writer: ItemWriter,
        boundary: TransactionBoundary,
        **overrides: Any,
    ) -> "ChunkOrchestrator":
        """
        Build an orchestrator from Settings.

        Keyword overrides win over settings (e.g. ``processor``,
        ``recovery_listener``, ``critical``, ``retry_policy``).
        """
        from chunk_engine.persistence.retry_store import build_retry_context_store

        retry_mode = RetryMode(settings.RETRY_MODE)
        options: dict[str, Any] = {
            "chunk_size": settings.CHUNK_SIZE,
            "retry_mode": retry_mode,
            "max_outer_attempts": settings.MAX_OUTER_ATTEMPTS,
            "item_propagation": (
                Propagation(settings.ITEM_PROPAGATION) if settings.ITEM_PROPAGATION else None
            ),
            "recover_on_final_failure": settings.RECOVER_ON_FINAL_FAILURE,
            "chunk_concurrency": settings.CHUNK_CONCURRENCY,
            "item_concurrency": settings.ITEM_CONCURRENCY,
        }
        options.update(overrides)
        if options.get("retry_policy") is None:
            options["retry_policy"] = RetryPolicy.from_settings(settings)
        if options.get("retry_store") is None and options["retry_mode"] == RetryMode.STATEFUL:
            options["retry_store"] = build_retry_context_store(settings)
        return cls(reader, writer, boundary, **options)

    def _validate(self) -> None:
        """
        Reject combinations that cannot honour the retry semantics.

        Raises:
            TransactionConfigurationError: NESTED item propagation without
                savepoint support
            ConfigurationError: Any other unsafe combination
        """
        self.boundary.validate(self.item_propagation)
        details = {
            "retry_mode": self.retry_mode.value,
            "item_propagation": self.item_propagation.value,
        }

        if (
            self.retry_mode is RetryMode.STATELESS
            and self.skip_enabled
            and self.item_propagation is not Propagation.NESTED
        ):
            # Failed attempts of a skipped item would commit with the chunk
            raise ConfigurationError(
                "Stateless retry with recovery needs NESTED item propagation "
                "on a transaction manager with savepoints",
                details,
            )

        if self.recover_on_final_failure and (
            self.retry_mode is not RetryMode.STATEFUL
            or self.item_propagation is not Propagation.NESTED
        ):
            raise ConfigurationError(
                "recover_on_final_failure needs stateful retry with NESTED item propagation",
                details,
            )

        if (
            self.retry_mode is RetryMode.STATEFUL
            and self.skip_enabled
            and self.max_outer_attempts <= self.retry_policy.max_attempts
        ):
            raise ConfigurationError(
                "max_outer_attempts must exceed max_attempts or items can never be recovered",
                {
                    **details,
                    "max_outer_attempts": self.max_outer_attempts,
                    "max_attempts": self.retry_policy.max_attempts,
                },
            )

        if (
            self.retry_mode is RetryMode.STATEFUL
            and self.retry_policy.immediate.can_match
            and self.item_propagation is not Propagation.NESTED
        ):
            raise ConfigurationError(
                "Immediate in-place retries need NESTED item propagation",
                details,
            )

    def run(self) -> JobReport:
        """
        Run the job until the input is exhausted or the job fails.

        Returns:
            JobReport with status COMPLETED, COMPLETED_WITH_SKIPS or FAILED
            (the failure is kept in ``report.error``)
        """
        report = JobReport(job_id=uuid.uuid4().hex)
        structlog.contextvars.bind_contextvars(job_id=report.job_id)
        logger.info(
            "Job started",
            extra={
                "chunk_size": self.chunk_size,
                "retry_mode": self.retry_mode.value,
                "item_propagation": self.item_propagation.value,
                "max_attempts": self.retry_policy.max_attempts,
                "max_outer_attempts": self.max_outer_attempts,
            },
        )

        outer = RepeatEngine(
            ExceptionTolerantCompletionPolicy(
                ExhaustionCompletionPolicy(),
                critical=self.critical,
                max_consecutive_failures=self.max_outer_attempts,
            ),
            concurrency=self.chunk_concurrency,
            executor=self.executor,
            name="chunk-outer",
        )

        try:
            result = outer.run(lambda state: self._run_chunk(report))
        except Exception as error:
            report.finish(error)
            logger.error(
                "Job failed",
                extra={
                    "error_type": type(error).__name__,
                    "chunks_committed": report.chunks_committed,
                    "rollbacks": report.rollbacks,
                    "skips": len(report.skips),
                },
                exc_info=True,
            )
        else:
            report.finish()
            logger.info(
                "Job finished",
                extra={
                    "status": report.status.value,
                    "chunks_committed": report.chunks_committed,
                    "rollbacks": report.rollbacks,
                    "restarts": result.restarts,
                    "items_written": report.items_written,
                    "skips": len(report.skips),
                },
            )
        finally:
            structlog.contextvars.unbind_contextvars("job_id")
        return report

    # ------------------------------------------------------------------
    # Chunk
    # ------------------------------------------------------------------

    def _next_chunk_number(self) -> int:
        with self._numbers_lock:
            return next(self._chunk_numbers)

    def _run_chunk(self, report: JobReport) -> RepeatStatus:
        chunk = Chunk(number=self._next_chunk_number(), max_size=self.chunk_size)
        structlog.contextvars.bind_contextvars(chunk_number=chunk.number)
        started = time.monotonic()

        def block(status: TransactionStatus) -> None:
            status.register_synchronization(
                on_commit=lambda: self._on_commit(chunk, report),
                on_rollback=lambda: report.increment("rollbacks"),
            )
            inner = RepeatEngine(
                CountCompletionPolicy(self.chunk_size),
                concurrency=self.item_concurrency,
                name="chunk-inner",
            )
            inner.run(lambda state: self._run_item(chunk))
            for output in chunk.outputs:
                self.writer.apply(output)

        try:
            self.boundary.run(block, Propagation.REQUIRED)
        except SynchronizationError as error:
            if not error.committed:
                self._record_rollback(chunk, error, started)
                raise
            # The chunk is durable; only a callback such as the recovery listener failed
            logger.error(
                "Chunk committed but a commit callback failed",
                extra={
                    "items_read": chunk.items_read,
                    "error_type": type(error.error).__name__,
                },
                exc_info=True,
            )
        except Exception as error:
            self._record_rollback(chunk, error, started)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("chunk_number")

        chunks_total.labels(outcome="committed").inc()
        chunk_duration_seconds.labels(outcome="committed").observe(time.monotonic() - started)
        logger.debug(
            "Chunk committed",
            extra={
                "chunk_number": chunk.number,
                "written": len(chunk),
                "filtered": chunk.filtered,
                "skipped": len(chunk.skips),
                "exhausted": chunk.exhausted,
            },
        )
        return RepeatStatus.FINISHED if chunk.exhausted else RepeatStatus.CONTINUABLE

    def _record_rollback(self, chunk: Chunk, error: BaseException, started: float) -> None:
        chunks_total.labels(outcome="rolled_back").inc()
        rollbacks_total.labels(reason=type(error).__name__).inc()
        chunk_duration_seconds.labels(outcome="rolled_back").observe(time.monotonic() - started)
        logger.warning(
            "Chunk rolled back",
            extra={
                "items_read": chunk.items_read,
                "error_type": type(error).__name__,
            },
        )

    def _on_commit(self, chunk: Chunk, report: JobReport) -> None:
        written = len(chunk)
        if chunk.items_read:
            report.increment("chunks_committed")
        report.increment("items_read", chunk.items_read)
        report.increment("items_written", written)
        report.increment("items_filtered", chunk.filtered)
        report.add_skips(chunk.skips)

        items_total.labels(result="written").inc(written)
        items_total.labels(result="filtered").inc(chunk.filtered)
        items_total.labels(result="skipped").inc(len(chunk.skips))

        if self.recovery_listener is None:
            return
        failures = []
        for record in chunk.skips:
            try:
                self.recovery_listener.notify(record)
            except Exception as error:
                failures.append(error)
        if failures:
            # Every record is offered once; the first failure is reported
            raise failures[0]

    # ------------------------------------------------------------------
    # Item
    # ------------------------------------------------------------------

    def _run_item(self, chunk: Chunk) -> RepeatStatus:
        item = self.reader.read()
        if item is EXHAUSTED:
            chunk.exhausted = True
            return RepeatStatus.FINISHED

        sequence = chunk.mark_read()
        recovery = chunk.add_skip if self.skip_enabled else None
        key = self.key_generator(item) if self.retry_mode is RetryMode.STATEFUL else None

        result = self.retry_engine.execute(
            lambda: self._process_item(item),
            recovery,
            key=key,
            item=item,
        )
        if isinstance(result, Processed):
            if result.value is None:
                chunk.mark_filtered()
            else:
                chunk.add_output(sequence, result.value)
        return RepeatStatus.CONTINUABLE

    def _process_item(self, item: Any) -> Any:
        if self.item_propagation is Propagation.NESTED:
            return self.boundary.call(lambda status: self._process(item), Propagation.NESTED)
        return self._process(item)
