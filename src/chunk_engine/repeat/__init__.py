"""
Repeat engine and completion policies.

Usage:
    >>> from chunk_engine.repeat import RepeatEngine, CountCompletionPolicy
    >>> result = RepeatEngine(CountCompletionPolicy(5)).run(lambda state: step())
"""

from chunk_engine.repeat.engine import RepeatEngine, RepeatResult
from chunk_engine.repeat.policies import (
    CompletionPolicy,
    CompositeCompletionPolicy,
    CountCompletionPolicy,
    ExceptionTolerantCompletionPolicy,
    ExhaustionCompletionPolicy,
    RepeatState,
    TimeoutCompletionPolicy,
)

__all__ = [
    "RepeatEngine",
    "RepeatResult",
    "RepeatState",
    "CompletionPolicy",
    "CompositeCompletionPolicy",
    "CountCompletionPolicy",
    "ExceptionTolerantCompletionPolicy",
    "ExhaustionCompletionPolicy",
    "TimeoutCompletionPolicy",
]
