"""
Exception classification.

An ExceptionClassifier maps a failure to a boolean verdict (critical or
not, retryable or not, skippable or not) from a mapping of exception
types. The most specific type in the exception's MRO wins; types not
covered fall back to the classifier's default.
"""

import importlib
from collections.abc import Iterator, Mapping


class ExceptionClassifier:
    """
    Type-based binary classifier for exceptions.

    Attributes:
        mapping: Exception type -> verdict
        default: Verdict for exceptions not covered by the mapping
        traverse_causes: Also inspect the ``__cause__`` chain when the
            exception itself is not covered
    """

    def __init__(
        self,
        mapping: Mapping[type[BaseException], bool] | None = None,
        default: bool = False,
        traverse_causes: bool = False,
    ):
        self.mapping: dict[type[BaseException], bool] = dict(mapping or {})
        self.default = default
        self.traverse_causes = traverse_causes

        for exc_type in self.mapping:
            if not (isinstance(exc_type, type) and issubclass(exc_type, BaseException)):
                raise TypeError(f"Classifier keys must be exception types, got {exc_type!r}")

    @classmethod
    def always(cls, verdict: bool) -> "ExceptionClassifier":
        """Classifier that returns the same verdict for every exception."""
        return cls(default=verdict)

    @classmethod
    def from_names(
        cls,
        mapping: Mapping[str, bool],
        default: bool = False,
        traverse_causes: bool = False,
    ) -> "ExceptionClassifier":
        """
        Build a classifier from dotted exception names.

        Bare names resolve against builtins, e.g.
        ``{"TimeoutError": True, "sqlalchemy.exc.OperationalError": True}``.

        Raises:
            ImportError: If a module cannot be imported
            AttributeError: If the module has no such attribute
        """
        return cls(
            {_resolve(name): verdict for name, verdict in mapping.items()},
            default=default,
            traverse_causes=traverse_causes,
        )

    def classify(self, error: BaseException) -> bool:
        for candidate in self._candidates(error):
            verdict = self._lookup(type(candidate))
            if verdict is not None:
                return verdict
        return self.default

    __call__ = classify

    def _candidates(self, error: BaseException) -> Iterator[BaseException]:
        yield error
        if not self.traverse_causes:
            return
        seen = {id(error)}
        cause = error.__cause__
        while cause is not None and id(cause) not in seen:
            seen.add(id(cause))
            yield cause
            cause = cause.__cause__

    def _lookup(self, exc_type: type[BaseException]) -> bool | None:
        for klass in exc_type.__mro__:
            if klass in self.mapping:
                return self.mapping[klass]
        return None

    @property
    def can_match(self) -> bool:
        """False when no exception can ever be classified True."""
        return self.default or any(self.mapping.values())

    def __or__(self, other: "ExceptionClassifier") -> "ExceptionClassifier":
        return _UnionClassifier(self, other)

    def __repr__(self) -> str:
        names = {t.__name__: v for t, v in self.mapping.items()}
        return f"ExceptionClassifier({names}, default={self.default})"


def _resolve(name: str) -> type[BaseException]:
    module_name, _, attr = name.rpartition(".")
    module = importlib.import_module(module_name or "builtins")
    exc_type = getattr(module, attr)
    if not (isinstance(exc_type, type) and issubclass(exc_type, BaseException)):
        raise TypeError(f"{name} is not an exception type")
    return exc_type


class _UnionClassifier(ExceptionClassifier):
    """True when any of its parts classifies the exception as True."""

    def __init__(self, *parts: ExceptionClassifier):
        super().__init__()
        self.parts = parts

    def classify(self, error: BaseException) -> bool:
        return any(part.classify(error) for part in self.parts)

    __call__ = classify

    @property
    def can_match(self) -> bool:
        return any(part.can_match for part in self.parts)

    def __repr__(self) -> str:
        return " | ".join(repr(part) for part in self.parts)
