from typing import List, Optional, Sequence

from utils.exceptions import InvalidConfigurationError


def build_schedule(n_predictors: int, step: int = 3, fine_threshold: int = 10) -> List[int]:
    """
    Coarse steps of `step` from n_predictors while above `fine_threshold`, then
    every size from fine_threshold down to 1.

    e.g. 21 -> [21, 18, 15, 12, 10, 9, ..., 1]
    """
    if n_predictors < 1:
        raise InvalidConfigurationError(f"Need at least one predictor, got {n_predictors}")
    if step < 1:
        raise InvalidConfigurationError(f"Schedule step must be >= 1, got {step}")

    coarse = list(range(n_predictors, fine_threshold, -step))
    fine = list(range(min(fine_threshold, n_predictors), 0, -1))
    return coarse + fine


def validate_schedule(schedule: Sequence[int], n_available: Optional[int] = None) -> List[int]:
    """
    Strictly decreasing, all entries >= 1 and, when n_available is given, a first
    entry no larger than the available predictor count.
    """
    schedule = [int(s) for s in schedule]
    if not schedule:
        raise InvalidConfigurationError("Subset schedule is empty.")
    if any(b >= a for a, b in zip(schedule, schedule[1:])):
        raise InvalidConfigurationError(f"Subset schedule must be strictly decreasing: {schedule}")
    if schedule[-1] < 1:
        raise InvalidConfigurationError(f"Subset schedule entries must be >= 1: {schedule}")
    if n_available is not None and schedule[0] > n_available:
        raise InvalidConfigurationError(
            f"First schedule entry {schedule[0]} exceeds the {n_available} available predictors."
        )
    return schedule
