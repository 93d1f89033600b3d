import gc
import logging
import time
from typing import Any, Dict, Optional

import joblib
import numpy as np
import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.data_manager.feature_schema import FeatureSchema
from modules.model_trainer import ModelTrainer, RandomForestTrainer
from utils.error_handling import handle_engine_errors
from utils.exceptions import InsufficientFeaturesError
from utils.file_io import save_dataframe, write_json_atomic
from utils import constants


def summarize_predictions(oof_predictions: pd.DataFrame) -> pd.DataFrame:
    """Per-row mean and sd of the held-out predictions across CV repeats."""
    summary = oof_predictions.groupby('row', sort=True).agg(
        obs=('obs', 'first'),
        mean_pred=('pred', 'mean'),
        sd_pred=('pred', 'std'),
    )
    return summary.reset_index()


class FinalModelEngine(BaseEngine):
    """
    Fits the final model on the top-ranked features of the last RFE run.

    Improvements over a single fit:
    - Repeated k-fold grid search over mtry, split rule and node size.
    - Out-of-fold prediction summary (mean/sd per row) for honest evaluation.
    - Model + metadata persisted for reuse.
    """

    def __init__(self, config: dict, logger: logging.Logger, trainer: Optional[ModelTrainer] = None):
        super().__init__(config, logger)
        self.final_config = config.get('final_model', {})
        self.trainer = trainer

    def _get_engine_directory_name(self) -> str:
        return constants.FINAL_MODEL_DIR

    def _build_trainer(self, schema: FeatureSchema) -> ModelTrainer:
        model_cfg = self.config.get('model', {})
        return RandomForestTrainer(
            schema,
            num_trees=self.final_config.get('num_trees', model_cfg.get('num_trees', 150)),
            importance='impurity',
            split_rules=self.final_config.get('splitrule', ['variance', 'extratrees']),
            min_node_sizes=self.final_config.get('min_node_size', [1, 3, 5, 10]),
            max_mtry=model_cfg.get('max_mtry', 200),
            logger=self.logger,
        )

    @handle_engine_errors("Final Model")
    def execute(self, data: pd.DataFrame, rank_table: pd.DataFrame, schema: FeatureSchema) -> Dict[str, Any]:
        """
        Args:
            data: Modelling table of the last RFE run.
            rank_table: RankTable of that run (most important first).
            schema: Schema of `data`.

        Returns:
            Summary with the selected features, best parameters, CV performance and r.
        """
        top_k = self.final_config.get('top_k', 20)
        features = [v for v in rank_table['var'] if v in schema.predictors][:top_k]
        if not features:
            raise InsufficientFeaturesError("Rank table contains no predictors of the modelling table.")
        if len(features) < top_k:
            self.logger.warning(f"Only {len(features)} ranked features available (top_k={top_k}).")

        final_schema = schema.restrict(features)
        table = data[[schema.response] + [c for c in data.columns if c in final_schema.predictors]]
        trainer = self.trainer or self._build_trainer(final_schema)

        grid = trainer.build_grid(len(features))
        cv_folds = self.final_config.get('cv_folds', 10)
        cv_repeats = self.final_config.get('cv_repeats', 5)
        seed = self.config.get('_internal_seeds', {}).get('cv', 0)
        n_jobs = self.config.get('execution', {}).get('n_jobs', 1)

        self.logger.info(
            f"Final model: {len(features)} features, {len(grid)} configs, {cv_folds}-fold CV x {cv_repeats}"
        )
        start_time = time.time()
        fit = trainer.fit(table, schema.response, grid, cv_folds=cv_folds, cv_repeats=cv_repeats,
                          seed=seed, n_jobs=n_jobs)
        duration = time.time() - start_time

        predobs = summarize_predictions(fit.oof_predictions)
        r = float(np.corrcoef(predobs['obs'], predobs['mean_pred'])[0, 1]) if len(predobs) > 1 else float('nan')
        self.logger.info(f"Final model trained in {duration:.2f}s | best={fit.best_params} | r={r:.4f}")

        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_dataframe(predobs, self.output_dir / constants.FINAL_PREDOBS_FILE, excel_copy=excel_copy)
        joblib.dump(fit.model, self.output_dir / constants.FINAL_MODEL_FILE)

        summary = {
            'features': features,
            'best_params': fit.best_params,
            'cv_performance': fit.train_performance,
            'r': r,
            'n_rows': len(table),
            'training_time_sec': duration,
            'timestamp': time.strftime("%Y-%m-%d %H:%M:%S"),
        }
        write_json_atomic(summary, self.output_dir / constants.FINAL_MODEL_METADATA_FILE)

        del table
        gc.collect()
        return summary
