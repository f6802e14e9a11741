"""Ordered fallback evaluation: try strategies in turn, first accepted result wins."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AllStrategiesFailedError(Exception):
    """Raised when no strategy produced an accepted result."""

    def __init__(self, failures: list[tuple[str, Exception | None]]) -> None:
        self.failures = failures
        detail = "; ".join(f"{name}: {exc}" if exc else f"{name}: rejected result" for name, exc in failures)
        super().__init__(f"All {len(failures)} strategies failed ({detail})")


def _accept_any(_: object) -> bool:
    return True


async def first_success(
    strategies: Sequence[tuple[str, Callable[[], Awaitable[T]]]],
    *,
    accept: Callable[[T], bool] = _accept_any,
) -> tuple[str, T]:
    """Run named strategies in order and return the first accepted ``(name, result)``.

    A strategy fails when it raises or when ``accept`` rejects its result; the
    next one is then tried. Only ``Exception`` subclasses are treated as failures.

    Raises:
        AllStrategiesFailedError: If every strategy failed (also for an empty list).
    """
    failures: list[tuple[str, Exception | None]] = []
    for name, strategy in strategies:
        try:
            result = await strategy()
        except Exception as exc:
            logger.info("Strategy '%s' failed: %s", name, exc)
            failures.append((name, exc))
            continue
        if accept(result):
            return name, result
        logger.info("Strategy '%s' returned an unusable result", name)
        failures.append((name, None))
    raise AllStrategiesFailedError(failures)
