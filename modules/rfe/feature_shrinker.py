from typing import List, Tuple

import numpy as np
import pandas as pd

from utils.exceptions import InsufficientFeaturesError


def select_top_features(importance: pd.Series, current_features: List[str], k: int) -> Tuple[List[str], List[str]]:
    """
    Keep the k most important of `current_features`.

    Ranking is by descending importance; ties keep the current column order.
    Returns (kept, dropped), both in the current column order.
    """
    if k > len(current_features):
        raise InsufficientFeaturesError(
            f"Cannot keep {k} features: only {len(current_features)} available."
        )
    values = importance.reindex(current_features).fillna(0.0).to_numpy(dtype=float)
    order = np.argsort(-values, kind='stable')
    keep = set(current_features[i] for i in order[:k])

    kept = [f for f in current_features if f in keep]
    dropped = [f for f in current_features if f not in keep]
    return kept, dropped


def elimination_rank(step: int, schedule_length: int) -> int:
    """Rank assigned to features dropped at 1-based step `step`."""
    return schedule_length - step + 1


def elimination_records(features: List[str], step: int, schedule_length: int) -> List[dict]:
    rank = elimination_rank(step, schedule_length)
    return [{'var': f, 'rank': rank} for f in features]
