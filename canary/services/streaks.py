from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from canary.db.models import Status

# Number of most recent results considered when computing streaks.
STREAK_WINDOW = 5


@dataclass(frozen=True)
class Streak:
    leading_failures: int
    leading_successes: int


def count_leading(statuses: Iterable[Status], target: Status) -> int:
    count = 0
    for status in statuses:
        if status != target:
            break
        count += 1
    return count


def analyze(statuses: Sequence[Status]) -> Streak:
    """Compute consecutive DOWN/UP runs from a newest-first history.

    Only the first ``STREAK_WINDOW`` entries are considered. At most one of
    the two counts is non-zero.
    """
    window = list(statuses[:STREAK_WINDOW])
    return Streak(
        leading_failures=count_leading(window, Status.DOWN),
        leading_successes=count_leading(window, Status.UP),
    )
