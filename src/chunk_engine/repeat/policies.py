"""
Completion policies for the Repeat Engine.

A completion policy decides, after every iteration, whether the loop
continues, stops normally, or stops exceptionally. Policies keep their
per-loop state in a RepeatState created by ``start``.

Policy Variants:
    - CountCompletionPolicy: stop after N iterations (chunk size)
    - ExhaustionCompletionPolicy: stop when the body reports FINISHED
    - TimeoutCompletionPolicy: stop once elapsed time reaches a limit
    - CompositeCompletionPolicy: stop when any delegate stops
    - ExceptionTolerantCompletionPolicy: tolerate not-critical failures,
      restarting the loop from the input's own position
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import structlog

from chunk_engine.exceptions import CriticalFailure, OuterRetryLimitExceeded
from chunk_engine.models.enums import Decision, RepeatStatus
from chunk_engine.models.records import (
    CONTINUE,
    STOP_NORMAL,
    CompletionDecision,
    stop_exceptional,
)
from chunk_engine.retry.classifier import ExceptionClassifier

logger = structlog.get_logger(__name__)

Outcome = RepeatStatus | BaseException


@dataclass
class RepeatState:
    """
    Per-loop state shared by the engine and its policy.

    Attributes:
        iteration_count: Number of finished iterations (failed ones included)
        started_at: Clock reading when the loop started
        consecutive_failures: Tolerated failures since the last success
        children: Delegate states of a composite policy
    """

    iteration_count: int = 0
    started_at: float = field(default_factory=time.monotonic)
    consecutive_failures: int = 0
    children: list["RepeatState"] = field(default_factory=list)


class CompletionPolicy(ABC):
    """Base class for completion policies."""

    def start(self) -> RepeatState:
        return RepeatState()

    @abstractmethod
    def evaluate(self, state: RepeatState, outcome: Outcome) -> CompletionDecision:
        ...

    def can_dispatch(self, state: RepeatState, in_flight: int) -> bool:
        """Whether a concurrent engine may start another iteration."""
        return True


class _SimpleCompletionPolicy(CompletionPolicy):
    """Stops exceptionally on any failure and normally on FINISHED."""

    def evaluate(self, state: RepeatState, outcome: Outcome) -> CompletionDecision:
        if isinstance(outcome, BaseException):
            return stop_exceptional(outcome)
        if outcome is RepeatStatus.FINISHED or self.is_complete(state):
            return STOP_NORMAL
        return CONTINUE

    def is_complete(self, state: RepeatState) -> bool:
        return False


class ExhaustionCompletionPolicy(_SimpleCompletionPolicy):
    """Stop when the body reports that its input is exhausted."""


class CountCompletionPolicy(_SimpleCompletionPolicy):
    """Stop after ``count`` iterations."""

    def __init__(self, count: int):
        if count < 1:
            raise ValueError("count must be >= 1")
        self.count = count

    def is_complete(self, state: RepeatState) -> bool:
        return state.iteration_count >= self.count

    def can_dispatch(self, state: RepeatState, in_flight: int) -> bool:
        return state.iteration_count + in_flight < self.count


class TimeoutCompletionPolicy(_SimpleCompletionPolicy):
    """Stop once ``timeout`` seconds have elapsed since the loop started."""

    def __init__(self, timeout: float, clock: Callable[[], float] = time.monotonic):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.timeout = timeout
        self.clock = clock

    def start(self) -> RepeatState:
        return RepeatState(started_at=self.clock())

    def is_complete(self, state: RepeatState) -> bool:
        return self.clock() - state.started_at >= self.timeout

    def can_dispatch(self, state: RepeatState, in_flight: int) -> bool:
        return not self.is_complete(state)


class CompositeCompletionPolicy(CompletionPolicy):
    """
    Stop as soon as any delegate stops.

    An exceptional stop from any delegate wins over a normal one.
    """

    def __init__(self, policies: Sequence[CompletionPolicy]):
        if not policies:
            raise ValueError("CompositeCompletionPolicy needs at least one policy")
        self.policies = list(policies)

    def start(self) -> RepeatState:
        return RepeatState(children=[policy.start() for policy in self.policies])

    def _delegates(self, state: RepeatState):
        for policy, child in zip(self.policies, state.children):
            child.iteration_count = state.iteration_count
            yield policy, child

    def evaluate(self, state: RepeatState, outcome: Outcome) -> CompletionDecision:
        result = CONTINUE
        for policy, child in self._delegates(state):
            decision = policy.evaluate(child, outcome)
            if decision.decision is Decision.STOP_EXCEPTIONAL:
                return decision
            if decision.is_complete:
                result = decision
        return result

    def can_dispatch(self, state: RepeatState, in_flight: int) -> bool:
        return all(policy.can_dispatch(child, in_flight) for policy, child in self._delegates(state))


class ExceptionTolerantCompletionPolicy(CompletionPolicy):
    """
    Tolerate not-critical failures up to a consecutive limit.

    Failures classified as critical (or already wrapped in CriticalFailure)
    stop the loop and propagate unconditionally. Not-critical failures
    abandon the iteration and the loop continues; where the next iteration
    resumes is up to the input collaborator. A successful iteration resets
    the consecutive failure count.

    Attributes:
        delegate: Policy deciding normal completion
        critical: Classifier; True means the failure is fatal to the job
        max_consecutive_failures: Failures in a row that stop the loop
    """

    def __init__(
        self,
        delegate: CompletionPolicy,
        critical: ExceptionClassifier | None = None,
        max_consecutive_failures: int = 10,
    ):
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self.delegate = delegate
        self.critical = critical or ExceptionClassifier.always(False)
        self.max_consecutive_failures = max_consecutive_failures

    def start(self) -> RepeatState:
        return self.delegate.start()

    def evaluate(self, state: RepeatState, outcome: Outcome) -> CompletionDecision:
        """
        Classify one iteration outcome.

        RepeatEngine only reports ``Exception`` subclasses; other
        BaseExceptions (KeyboardInterrupt, SystemExit) propagate from its
        workers directly. Callers that drive the policy themselves may pass
        one, and it is always treated as critical.
        """
        if not isinstance(outcome, BaseException):
            state.consecutive_failures = 0
            return self.delegate.evaluate(state, outcome)

        if isinstance(outcome, CriticalFailure):
            return stop_exceptional(outcome)

        if not isinstance(outcome, Exception) or self.critical.classify(outcome):
            failure = CriticalFailure(outcome)
            failure.__cause__ = outcome
            logger.error(
                "Critical failure, stopping loop",
                extra={"error_type": type(outcome).__name__},
            )
            return stop_exceptional(failure)

        state.consecutive_failures += 1
        if state.consecutive_failures >= self.max_consecutive_failures:
            limit = OuterRetryLimitExceeded(state.consecutive_failures, outcome)
            limit.__cause__ = outcome
            logger.error(
                f"Giving up after {state.consecutive_failures} consecutive failures",
                extra={
                    "failures": state.consecutive_failures,
                    "error_type": type(outcome).__name__,
                },
            )
            return stop_exceptional(limit)

        logger.warning(
            f"Tolerated failure {state.consecutive_failures}/{self.max_consecutive_failures}, restarting",
            extra={
                "failures": state.consecutive_failures,
                "error_type": type(outcome).__name__,
            },
        )
        return CompletionDecision(Decision.CONTINUE, error=outcome, restarted=True)

    def can_dispatch(self, state: RepeatState, in_flight: int) -> bool:
        return self.delegate.can_dispatch(state, in_flight)
