import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from modules.data_manager.feature_schema import FeatureSchema


@dataclass
class TrainedModel:
    """Fitted preprocessing + estimator together with the columns it was fit on."""
    pipeline: Any
    encoded_columns: List[str]
    schema: FeatureSchema


@dataclass
class FitResult:
    """
    Everything the RFE engine needs from one trainer fit.

    oof_predictions holds the held-out predictions of the selected configuration
    (columns: row, obs, pred, fold, repeat). folds lists the (train, out) row
    positions of every internal resample, in the order they were evaluated.
    """
    model: TrainedModel
    best_params: Dict[str, Any]
    oof_predictions: pd.DataFrame
    train_performance: Dict[str, float]
    importance: pd.Series
    folds: List[Tuple[np.ndarray, np.ndarray]] = field(default_factory=list)
    encoded_columns: List[str] = field(default_factory=list)


class ModelTrainer(abc.ABC):
    """
    Capability required by the RFE engine: train with internal CV, predict,
    and report importances over the encoded feature columns.
    """

    @abc.abstractmethod
    def build_grid(self, n_predictors: int) -> List[Dict[str, Any]]:
        """Hyperparameter configurations to evaluate for a given predictor count."""
        raise NotImplementedError

    @abc.abstractmethod
    def fit(self, train_df: pd.DataFrame, response: str, grid: List[Dict[str, Any]],
            cv_folds: int, cv_repeats: int = 1, seed: Optional[int] = None,
            n_jobs: int = 1) -> FitResult:
        raise NotImplementedError

    @abc.abstractmethod
    def predict(self, model: TrainedModel, df: pd.DataFrame) -> np.ndarray:
        raise NotImplementedError
