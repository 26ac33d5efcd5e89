"""Detection of row-level-security / authorization-policy violations.

Data-access errors are opaque (PostgREST payloads, psycopg exceptions, plain
dicts), so classification is a heuristic: a known SQLSTATE / PostgREST code, or
a message containing one of a few known substrings. Both false negatives
(unrecognized backends) and false positives (an unrelated message mentioning
"policy") are possible and accepted.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from nutrilog.observability.registry import MetricRegistry


T = TypeVar("T")
R = TypeVar("R")

_log = structlog.get_logger("authz")

_CODE_FIELDS = ("code", "sqlstate", "pgcode")


class Operation(str, Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class AccessContext:
    table: str
    operation: Operation
    user_id: str | None = None
    role: str | None = None

    def __post_init__(self) -> None:
        # Accept plain strings like "INSERT"; reject anything outside the enum.
        object.__setattr__(self, "operation", Operation(self.operation))


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    data: T | None = None
    error: Any = None


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def error_code(error: Any) -> str | None:
    for name in _CODE_FIELDS:
        value = _field(error, name)
        if value:
            return str(value)
    return None


def error_message(error: Any) -> str:
    message = _field(error, "message")
    if isinstance(message, str) and message:
        return message
    if isinstance(error, BaseException):
        return str(error)
    return ""


@dataclass(frozen=True)
class ViolationRules:
    """Replaceable classification predicate; extend ``codes``/``substrings`` for other stores."""

    codes: frozenset[str] = frozenset({"42501", "PGRST301"})  # insufficient_privilege, PostgREST RLS
    substrings: tuple[str, ...] = ("row-level security", "policy", "permission denied")

    def __call__(self, error: Any) -> bool:
        if error is None or isinstance(error, (str, bytes, int, float, bool)):
            return False
        if error_code(error) in self.codes:
            return True
        message = error_message(error)
        return any(s in message for s in self.substrings)


class ViolationDetector:
    def __init__(self, registry: MetricRegistry, rules: Callable[[Any], bool] | None = None) -> None:
        self._registry = registry
        self._rules = rules if rules is not None else ViolationRules()

    def is_violation(self, error: Any) -> bool:
        try:
            return bool(self._rules(error))
        except Exception:
            _log.exception("authz_classification_failed")
            return False

    def record_violation(self, error: Any, context: AccessContext) -> None:
        if not self.is_violation(error):
            return

        try:
            _log.warning(
                "authz_violation_detected",
                table=context.table,
                operation=context.operation.value,
                user_id=context.user_id,
                role=context.role,
                error_code=error_code(error),
                error=error_message(error) or str(error),
            )
            self._registry.counter(
                "authz_violation_total",
                "Total number of row-level security policy violations",
                {
                    "table": context.table,
                    "operation": context.operation.value,
                    "role": context.role or "unknown",
                },
            )
        except Exception:
            # Recording is a side effect; it never replaces the caller's result.
            _log.exception("authz_violation_record_failed", table=context.table)

    def _observe(self, result: Any, context: AccessContext) -> None:
        error = _field(result, "error")
        if error is not None:
            self.record_violation(error, context)

    def with_tracking(self, call: Callable[[], R], context: AccessContext) -> R:
        """Run ``call`` and return its ``{data, error}`` result untouched.

        If ``call`` raises, the exception propagates exactly as it would without
        the wrapper.
        """

        result = call()
        try:
            self._observe(result, context)
        except Exception:
            _log.exception("authz_observe_failed", table=context.table)
        return result

    async def with_tracking_async(self, query: Awaitable[R], context: AccessContext) -> R:
        result = await query
        try:
            self._observe(result, context)
        except Exception:
            _log.exception("authz_observe_failed", table=context.table)
        return result
