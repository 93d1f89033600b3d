"""
Evaluation Module
=================

Responsibility:
- Regression metrics (RMSE, MAE, squared-correlation R-squared).
- Train / Test / Null-baseline performance records for each RFE step.
"""

from .performance import (
    compute_metrics,
    mae,
    get_baseline_performance,
    rmse,
    rsquared,
    get_test_performance,
    get_train_performance,
)

__all__ = [
    'compute_metrics',
    'mae',
    'get_baseline_performance',
    'rmse',
    'rsquared',
    'get_test_performance',
    'get_train_performance',
]
