"""
Regression performance helpers for the RFE engine.

R-squared follows the resampling convention of squaring the Pearson correlation
between observations and predictions, so it is undefined (NaN) when either
side is constant.
"""
import numpy as np
import pandas as pd
from typing import Dict, Optional

from utils import constants


def rmse(actual, predicted) -> float:
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    return float(np.sqrt(np.mean((actual - predicted) ** 2)))


def mae(actual, predicted) -> float:
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    return float(np.mean(np.abs(actual - predicted)))


def rsquared(actual, predicted) -> float:
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if len(actual) < 2 or np.std(actual) == 0 or np.std(predicted) == 0:
        return float('nan')
    return float(np.corrcoef(actual, predicted)[0, 1] ** 2)


def compute_metrics(actual, predicted) -> Dict[str, float]:
    """RMSE, MAE and R-squared keyed by their table names."""
    return {
        constants.RMSE: rmse(actual, predicted),
        constants.MAE: mae(actual, predicted),
        constants.RSQUARED: rsquared(actual, predicted),
    }


def performance_record(eval_type: str, metrics: Dict[str, float]) -> Dict[str, float]:
    return {'Type': eval_type, **{m: float(metrics.get(m, np.nan)) for m in constants.METRICS}}


def get_train_performance(fit_result) -> Dict[str, float]:
    """Internal cross-validated performance of the selected configuration."""
    return performance_record(constants.TRAIN, fit_result.train_performance)


def get_test_performance(trainer, fit_result, test_df: pd.DataFrame, response: str) -> Dict[str, float]:
    """Refit model scored against the untouched holdout rows."""
    predictions = trainer.predict(fit_result.model, test_df)
    return performance_record(constants.TEST, compute_metrics(test_df[response].to_numpy(), predictions))


def get_baseline_performance(fit_result, train_df: pd.DataFrame, response: str,
                     mode: str = "internal_folds",
                     test_df: Optional[pd.DataFrame] = None) -> Dict[str, float]:
    """
    Performance of predicting the training mean.

    'internal_folds' re-uses the trainer's fold index: each fold's training rows
    supply the mean, its out-of-fold rows are scored. 'holdout' scores the mean of
    the whole training partition against the resample's holdout rows.
    """
    y = train_df[response].to_numpy(dtype=float)

    if mode == "holdout":
        if test_df is None:
            raise ValueError("Holdout null baseline requires the holdout table.")
        obs = test_df[response].to_numpy(dtype=float)
        preds = np.full(len(obs), y.mean())
        return performance_record(constants.NULL, compute_metrics(obs, preds))

    if mode != "internal_folds":
        raise ValueError(f"Unknown null baseline mode: {mode}")

    obs_parts, pred_parts = [], []
    for train_pos, out_pos in fit_result.folds:
        obs_parts.append(y[out_pos])
        pred_parts.append(np.full(len(out_pos), y[train_pos].mean()))

    obs = np.concatenate(obs_parts)
    preds = np.concatenate(pred_parts)
    return performance_record(constants.NULL, compute_metrics(obs, preds))
