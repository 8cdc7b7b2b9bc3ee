"""
Retry engine with stateless and stateful modes.

Stateless mode retries an action in place (tenacity loop) and runs the
recovery action in-line once attempts are exhausted. Stateful mode runs
one attempt per invocation, records failures in a keyed RetryContextStore
and re-raises so the enclosing transaction rolls back; a later invocation
with the same key either retries or, once exhausted, recovers.

Usage:
    engine = RetryEngine(policy, store=InMemoryRetryContextStore(), boundary=boundary)
    result = engine.execute(lambda: process(item), notify_skip, key=item.id, item=item)
    if isinstance(result, Recovered):
        ...
"""

import time
from collections.abc import Callable
from typing import Any, Hashable, TYPE_CHECKING

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from chunk_engine.exceptions import ConfigurationError
from chunk_engine.models.records import RecoveryRecord
from chunk_engine.monitoring.metrics import recoveries_total, retry_attempts_total
from chunk_engine.retry.context import RetryContext, RetryContextStore, context_error
from chunk_engine.retry.exceptions import RecoveryFailedError, RetryExhausted
from chunk_engine.retry.policy import BackoffConfig, RetryPolicy
from chunk_engine.retry.results import Processed, Recovered, RetryResult

if TYPE_CHECKING:
    from chunk_engine.transaction.boundary import TransactionBoundary

logger = structlog.get_logger(__name__)

RecoveryAction = Callable[[RecoveryRecord], Any]


class RetryEngine:
    """
    Executes a unit of work under a RetryPolicy.

    Attributes:
        policy: Default policy when ``execute`` is not given one
        store: Keyed retry context store (required for stateful mode)
        boundary: Transaction boundary used to defer context removal after
            recovery until the enclosing transaction commits
        recover_on_final_failure: Stateful mode recovers in the same
            invocation as the exhausting failure instead of waiting for the
            next presentation. Only safe when the attempt ran in a savepoint.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        store: RetryContextStore | None = None,
        boundary: "TransactionBoundary | None" = None,
        recover_on_final_failure: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.store = store
        self.boundary = boundary
        self.recover_on_final_failure = recover_on_final_failure
        self._sleep = sleep

    def execute(
        self,
        action: Callable[[], Any],
        recovery: RecoveryAction | None = None,
        policy: RetryPolicy | None = None,
        *,
        key: Hashable | None = None,
        item: Any = None,
    ) -> RetryResult:
        """
        Run ``action`` under the retry policy.

        Stateful mode is selected by passing ``key``.

        Args:
            action: Unit of work; its return value becomes ``Processed.value``
            recovery: Called with the RecoveryRecord once attempts are exhausted
            policy: Overrides the engine's default policy
            key: Logical identity of the item (stateful mode)
            item: Item carried into the RecoveryRecord

        Returns:
            Processed or Recovered

        Raises:
            RetryExhausted: Attempts exhausted and no recovery configured
            RecoveryFailedError: The recovery action failed
            Exception: Stateful attempt failed (rethrown for rollback), or
                the failure is fatal / not skippable
        """
        policy = policy or self.policy
        if key is None:
            return self._execute_stateless(action, recovery, policy, item)
        if self.store is None:
            raise ConfigurationError("Stateful retry requires a RetryContextStore")
        return self._execute_stateful(action, recovery, policy, key, item)

    # ------------------------------------------------------------------
    # Stateless
    # ------------------------------------------------------------------

    def _execute_stateless(
        self,
        action: Callable[[], Any],
        recovery: RecoveryAction | None,
        policy: RetryPolicy,
        item: Any,
    ) -> RetryResult:
        context = RetryContext(key=None)
        attempts = 0

        def attempt_action() -> Any:
            nonlocal attempts
            attempts += 1
            return action()

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=self._wait(policy.backoff),
            retry=retry_if_exception(policy.is_retryable),
            before_sleep=self._log_stateless_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    value = attempt_action()
        except Exception as error:
            context.attempts = attempts - 1
            context.register_error(error)
            context.exhausted = True
            retry_attempts_total.labels(mode="stateless", success="false").inc()

            if policy.fatal.classify(error) or not policy.is_skippable(error):
                raise
            if recovery is None:
                logger.error(
                    "Stateless retry exhausted without recovery",
                    extra={"attempts": attempts, "error_type": type(error).__name__},
                )
                raise RetryExhausted(context, error) from error
            return self._recover(context, recovery, item, error)

        retry_attempts_total.labels(mode="stateless", success="true").inc()
        return Processed(value=value, attempts=attempts)

    @staticmethod
    def _wait(backoff: BackoffConfig):
        if backoff.initial == 0:
            return wait_none()
        return wait_exponential(
            multiplier=backoff.initial,
            exp_base=backoff.multiplier,
            max=backoff.maximum,
        )

    @staticmethod
    def _log_stateless_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            f"Retrying in place (attempt {retry_state.attempt_number + 1})",
            extra={
                "attempt": retry_state.attempt_number,
                "error_type": type(error).__name__ if error else None,
                "sleep_seconds": retry_state.next_action.sleep if retry_state.next_action else 0,
            },
        )

    # ------------------------------------------------------------------
    # Stateful
    # ------------------------------------------------------------------

    def _execute_stateful(
        self,
        action: Callable[[], Any],
        recovery: RecoveryAction | None,
        policy: RetryPolicy,
        key: Hashable,
        item: Any,
    ) -> RetryResult:
        with self.store.lock(key):
            context = self.store.get(key)

            if context is not None and not policy.can_retry(context):
                # Exhausted on an earlier presentation: recover instead of processing
                return self._recover_exhausted(context, recovery, item)

            if context is None:
                context = RetryContext(key=key)

            while True:
                try:
                    value = action()
                except Exception as error:
                    if policy.fatal.classify(error):
                        raise

                    context.register_error(error)
                    retry_attempts_total.labels(mode="stateful", success="false").inc()

                    if not policy.can_retry(context):
                        if not policy.is_skippable(error):
                            # Never recoverable; next presentation starts over
                            self.store.remove(key)
                            raise
                        context.exhausted = True

                    if not context.exhausted and policy.immediate.classify(error):
                        logger.info(
                            "Retrying in place after immediately retryable failure",
                            extra={
                                "key": repr(key),
                                "attempts": context.attempts,
                                "error_type": type(error).__name__,
                            },
                        )
                        continue

                    self.store.put(context)

                    if context.exhausted and self.recover_on_final_failure and recovery is not None:
                        return self._recover_exhausted(context, recovery, item)

                    logger.warning(
                        f"Stateful attempt {context.attempts}/{policy.max_attempts} failed",
                        extra={
                            "key": repr(key),
                            "attempts": context.attempts,
                            "exhausted": context.exhausted,
                            "error_type": type(error).__name__,
                        },
                    )
                    raise

                if context.attempts:
                    self.store.remove(key)
                retry_attempts_total.labels(mode="stateful", success="true").inc()
                return Processed(value=value, attempts=context.attempts + 1)

    def _recover_exhausted(
        self,
        context: RetryContext,
        recovery: RecoveryAction | None,
        item: Any,
    ) -> RetryResult:
        error = context_error(context)
        if recovery is None:
            logger.error(
                "Stateful retry exhausted without recovery",
                extra={"key": repr(context.key), "attempts": context.attempts},
            )
            raise RetryExhausted(context, error) from error
        result = self._recover(context, recovery, item, error)
        self._after_commit(lambda: self.store.remove(context.key))
        return result

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _recover(
        self,
        context: RetryContext,
        recovery: RecoveryAction,
        item: Any,
        error: BaseException,
    ) -> Recovered:
        record = RecoveryRecord(
            item=item,
            key=context.key,
            error=error,
            attempts=context.attempts,
        )
        try:
            recovery(record)
        except Exception as exc:
            logger.error(
                "Recovery action failed",
                extra={"key": repr(context.key), "error_type": type(exc).__name__},
                exc_info=True,
            )
            raise RecoveryFailedError(context.key, exc) from exc

        recoveries_total.labels(reason=type(error).__name__).inc()
        logger.warning(
            "Item recovered after exhausting retries",
            extra={
                "key": repr(context.key),
                "attempts": context.attempts,
                "error_type": type(error).__name__,
            },
        )
        return Recovered(record=record)

    def _after_commit(self, callback: Callable[[], None]) -> None:
        if self.boundary is None:
            callback()
        else:
            self.boundary.after_commit(callback)
