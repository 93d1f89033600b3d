import logging
import math
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.inspection import permutation_importance
from sklearn.model_selection import KFold, RepeatedKFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from modules.data_manager.feature_schema import FeatureSchema
from modules.evaluation_engine.performance import compute_metrics
from modules.model_factory import ModelFactory
from modules.model_trainer.base import FitResult, ModelTrainer, TrainedModel
from utils.exceptions import TrainerError
from utils import constants

IMPORTANCE_MODES = ('permutation', 'impurity')


def encode_features(df: pd.DataFrame, schema: FeatureSchema) -> pd.DataFrame:
    """
    One-hot encode the schema's categorical columns (every declared level kept),
    numeric columns pass through as float.
    """
    features = [c for c in df.columns if c in schema.predictors]
    X = df[features]
    categorical = [c for c in features if schema.is_categorical(c)]
    if categorical:
        X = pd.get_dummies(X, columns=categorical, prefix_sep=constants.DUMMY_SEPARATOR, dtype=float)
    return X.astype(float)


def build_pipeline(params: Dict[str, Any], n_columns: int, seed: Optional[int]) -> Pipeline:
    """Center/scale ahead of the forest; mtry is capped at the encoded column count."""
    params = dict(params)
    split_rule = params.pop('split_rule', 'variance')
    if 'mtry' in params:
        params['mtry'] = int(min(params['mtry'], n_columns))
    params.setdefault('random_state', seed)
    params.setdefault('n_jobs', 1)
    return Pipeline([
        ('scaler', StandardScaler()),
        ('model', ModelFactory.create(split_rule, params)),
    ])


def _evaluate_fold(params, X, y, train_idx, out_idx, seed):
    pipeline = build_pipeline(params, X.shape[1], seed)
    pipeline.fit(X[train_idx], y[train_idx])
    return pipeline.predict(X[out_idx])


class RandomForestTrainer(ModelTrainer):
    """
    Random-forest learner with an internal k-fold grid search.

    Every (configuration, fold) pair is evaluated independently with joblib; the
    configuration with the lowest mean fold RMSE is refit on the full table and
    its importances are reported over the encoded columns.
    """

    def __init__(self, schema: FeatureSchema, num_trees: int = 150,
                 importance: str = 'permutation', permutation_repeats: int = 5,
                 split_rules: Sequence[str] = ('variance',),
                 min_node_sizes: Sequence[int] = (5,),
                 max_mtry: int = 200, n_grid_points: int = 6,
                 logger: Optional[logging.Logger] = None):
        if importance not in IMPORTANCE_MODES:
            raise ValueError(f"Unknown importance mode: {importance}. Available: {list(IMPORTANCE_MODES)}")
        self.schema = schema
        self.num_trees = num_trees
        self.importance = importance
        self.permutation_repeats = permutation_repeats
        self.split_rules = list(split_rules)
        self.min_node_sizes = list(min_node_sizes)
        self.max_mtry = max_mtry
        self.n_grid_points = n_grid_points
        self.logger = logger or logging.getLogger(__name__)

    def build_grid(self, n_predictors: int) -> List[Dict[str, Any]]:
        """
        mtry = unique(ceil(linspace(ceil(0.1 n), ceil(0.66 n), 6))) without values
        >= max_mtry, crossed with the configured split rules and node sizes.
        """
        if n_predictors < 1:
            raise TrainerError(f"Cannot build a grid for {n_predictors} predictors.")

        low, high = math.ceil(0.1 * n_predictors), math.ceil(0.66 * n_predictors)
        candidates = np.unique(np.ceil(np.linspace(low, high, self.n_grid_points)).astype(int))
        mtry_values = [int(m) for m in candidates if m < self.max_mtry]
        if not mtry_values:
            mtry_values = [self.max_mtry - 1]
            self.logger.warning(f"All mtry candidates >= {self.max_mtry}; using mtry={mtry_values[0]}.")

        return [
            {'mtry': m, 'split_rule': rule, 'min_node_size': node}
            for m in mtry_values
            for rule in self.split_rules
            for node in self.min_node_sizes
        ]

    def _splitter(self, cv_folds: int, cv_repeats: int, seed: Optional[int]):
        if cv_repeats > 1:
            return RepeatedKFold(n_splits=cv_folds, n_repeats=cv_repeats, random_state=seed)
        return KFold(n_splits=cv_folds, shuffle=True, random_state=seed)

    def fit(self, train_df: pd.DataFrame, response: str, grid: List[Dict[str, Any]],
            cv_folds: int, cv_repeats: int = 1, seed: Optional[int] = None,
            n_jobs: int = 1) -> FitResult:
        if not grid:
            raise TrainerError("Empty hyperparameter grid.")

        features = [c for c in train_df.columns if c != response]
        schema = self.schema.restrict(features)
        try:
            X_df = encode_features(train_df, schema)
            encoded_columns = X_df.columns.tolist()
            X = X_df.to_numpy()
            y = train_df[response].to_numpy(dtype=float)

            folds = list(self._splitter(cv_folds, cv_repeats, seed).split(X))
            configs = [{**params, 'num_trees': self.num_trees} for params in grid]

            start_time = time.time()
            fold_predictions = Parallel(n_jobs=n_jobs)(
                delayed(_evaluate_fold)(params, X, y, train_idx, out_idx, seed)
                for params in configs
                for train_idx, out_idx in folds
            )

            n_folds = len(folds)
            summaries = []
            for c, params in enumerate(configs):
                preds = fold_predictions[c * n_folds:(c + 1) * n_folds]
                fold_metrics = pd.DataFrame([
                    compute_metrics(y[out_idx], pred) for (_, out_idx), pred in zip(folds, preds)
                ])
                summaries.append(fold_metrics.mean(skipna=True).to_dict())

            best = int(np.argmin([s[constants.RMSE] for s in summaries]))
            best_params = dict(grid[best])
            self.logger.debug(
                f"Grid of {len(grid)} x {n_folds} folds evaluated in {time.time() - start_time:.2f}s; "
                f"best {best_params} (RMSE={summaries[best][constants.RMSE]:.4f})"
            )

            oof_frames = []
            for f, ((_, out_idx), pred) in enumerate(zip(folds, fold_predictions[best * n_folds:(best + 1) * n_folds])):
                oof_frames.append(pd.DataFrame({
                    'row': out_idx,
                    'obs': y[out_idx],
                    'pred': pred,
                    'fold': f % cv_folds + 1,
                    'repeat': f // cv_folds + 1,
                }))
            oof_predictions = pd.concat(oof_frames, ignore_index=True)

            pipeline = build_pipeline(configs[best], X.shape[1], seed)
            pipeline.fit(X, y)
            importance = self._importance(pipeline, X, y, seed, n_jobs)
        except TrainerError:
            raise
        except Exception as e:
            raise TrainerError(f"Random forest fit failed on {len(features)} predictors: {e}") from e

        return FitResult(
            model=TrainedModel(pipeline=pipeline, encoded_columns=encoded_columns, schema=schema),
            best_params=best_params,
            oof_predictions=oof_predictions,
            train_performance={m: float(summaries[best][m]) for m in constants.METRICS},
            importance=pd.Series(importance, index=encoded_columns, dtype=float),
            folds=[(np.asarray(tr), np.asarray(out)) for tr, out in folds],
            encoded_columns=encoded_columns,
        )

    def _importance(self, pipeline: Pipeline, X: np.ndarray, y: np.ndarray,
                    seed: Optional[int], n_jobs: int) -> np.ndarray:
        if self.importance == 'impurity':
            return pipeline.named_steps['model'].feature_importances_
        result = permutation_importance(
            pipeline, X, y,
            n_repeats=self.permutation_repeats,
            random_state=seed,
            scoring='neg_mean_squared_error',
            n_jobs=n_jobs,
        )
        return result.importances_mean

    def predict(self, model: TrainedModel, df: pd.DataFrame) -> np.ndarray:
        X = encode_features(df, model.schema).reindex(columns=model.encoded_columns, fill_value=0.0)
        return model.pipeline.predict(X.to_numpy())
