"""
Repeat engine.

Runs a body repeatedly under a CompletionPolicy, either sequentially or by
dispatching iterations to a thread pool. Repeat engines nest: the chunk
orchestrator runs an inner count-bounded loop inside a transaction inside
an outer exhaustion-bounded loop.

Concurrent iterations run in a copy of the dispatching context, so
structlog context variables and the active transaction of a
TransactionBoundary are visible to the workers. A boundary wrapped around
a concurrent engine therefore shares one transaction among all workers; a
boundary inside the body gives every iteration its own.

In concurrent mode a normal stop stays provisional while a tolerated
failure can still arrive: an abandoned iteration may hand its input back
after a sibling saw the input exhausted, so dispatch resumes until an
iteration started after the last failure confirms the stop.
"""

import contextvars
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

import structlog

from chunk_engine.models.enums import Decision, RepeatStatus
from chunk_engine.models.records import CompletionDecision
from chunk_engine.repeat.policies import CompletionPolicy, Outcome, RepeatState

logger = structlog.get_logger(__name__)

RepeatBody = Callable[[RepeatState], RepeatStatus | None]


@dataclass(frozen=True)
class RepeatResult:
    """
    Summary of a finished loop.

    Attributes:
        iterations: Iterations that finished (tolerated failures included)
        restarts: Iterations abandoned after a tolerated failure
        decision: Final decision of the completion policy
    """

    iterations: int
    restarts: int
    decision: CompletionDecision


class RepeatEngine:
    """
    Runs a body until its completion policy says stop.

    Attributes:
        policy: Completion policy consulted after every iteration
        concurrency: Maximum iterations in flight; 1 means sequential
        executor: Worker pool for concurrent mode (a private
            ThreadPoolExecutor is created per run when omitted)
        name: Label used in logs and worker thread names
    """

    def __init__(
        self,
        policy: CompletionPolicy,
        concurrency: int = 1,
        executor: Executor | None = None,
        name: str = "repeat",
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.policy = policy
        self.concurrency = concurrency
        self.executor = executor
        self.name = name

    def run(self, body: RepeatBody) -> RepeatResult:
        """
        Run ``body`` until the policy stops the loop.

        Raises:
            Exception: The error of a STOP_EXCEPTIONAL decision (in
                concurrent mode, after all in-flight iterations finish)
        """
        state = self.policy.start()
        if self.concurrency > 1:
            return self._run_concurrent(body, state)
        return self._run_sequential(body, state)

    def _run_sequential(self, body: RepeatBody, state: RepeatState) -> RepeatResult:
        restarts = 0
        while True:
            decision = self._evaluate(state, self._invoke(body, state))
            if decision.restarted:
                restarts += 1
            if decision.decision is Decision.STOP_EXCEPTIONAL:
                raise decision.error
            if decision.is_complete:
                return RepeatResult(state.iteration_count, restarts, decision)

    def _run_concurrent(self, body: RepeatBody, state: RepeatState) -> RepeatResult:
        owns_executor = self.executor is None
        executor = self.executor or ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix=self.name
        )
        in_flight: set[Future] = set()
        # Restarts seen when each iteration was dispatched
        dispatched_at: dict[Future, int] = {}
        stopped: CompletionDecision | None = None
        restarts = 0

        try:
            while True:
                while (
                    stopped is None
                    and len(in_flight) < self.concurrency
                    and self.policy.can_dispatch(state, len(in_flight))
                ):
                    context = contextvars.copy_context()
                    future = executor.submit(context.run, self._invoke, body, state)
                    dispatched_at[future] = restarts
                    in_flight.add(future)

                if not in_flight:
                    break

                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    decision = self._evaluate(state, future.result())
                    started_after = dispatched_at.pop(future)
                    if decision.restarted:
                        restarts += 1
                        if stopped is not None and stopped.decision is Decision.STOP_NORMAL:
                            # The abandoned iteration may have handed input back
                            # after another one saw it exhausted
                            stopped = None
                    if decision.decision is Decision.STOP_EXCEPTIONAL:
                        if stopped is None or stopped.decision is not Decision.STOP_EXCEPTIONAL:
                            stopped = decision
                    elif decision.is_complete and stopped is None:
                        if restarts > started_after:
                            # Input may have been handed back while this iteration ran
                            continue
                        stopped = decision
        finally:
            if owns_executor:
                executor.shutdown(wait=True)

        if stopped is None:
            # Dispatch stopped by can_dispatch and every iteration continued
            stopped = CompletionDecision(Decision.STOP_NORMAL)
        logger.debug(
            "Concurrent loop finished",
            extra={"loop": self.name, "iterations": state.iteration_count, "decision": stopped.decision.value},
        )
        if stopped.decision is Decision.STOP_EXCEPTIONAL:
            raise stopped.error
        return RepeatResult(state.iteration_count, restarts, stopped)

    @staticmethod
    def _invoke(body: RepeatBody, state: RepeatState) -> Outcome:
        try:
            status = body(state)
        except Exception as error:
            return error
        return RepeatStatus.CONTINUABLE if status is None else RepeatStatus(status)

    def _evaluate(self, state: RepeatState, outcome: Outcome) -> CompletionDecision:
        state.iteration_count += 1
        return self.policy.evaluate(state, outcome)
