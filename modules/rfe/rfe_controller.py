import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import pandas as pd

from modules.data_manager.feature_schema import FeatureSchema
from modules.model_trainer import ModelTrainer, RandomForestTrainer
from modules.resampling_engine import ResamplingEngine
from modules.rfe.correlation_pruner import CorrelationPruner
from modules.rfe.result_tidying import save_tidy_output, tidy_rfe_output
from modules.rfe.rfe_engine import RFEEngine
from utils.worker_pool import WorkerPool
from utils import constants


@dataclass
class RunOutcome:
    name: str
    run_dir: Path
    data: pd.DataFrame
    schema: FeatureSchema
    performance_table: pd.DataFrame
    rank_table: pd.DataFrame
    dropped: List[str]


class RFEController:
    """
    Orchestrates the configured sequence of RFE runs.

    Each run: partitions -> resampled RFE -> tidy tables -> correlation pruning
    (when the run has a threshold). The pruned table feeds the next run.
    Checkpointed resamples are skipped, so rerunning the controller on the
    same results directory resumes where it stopped.
    """

    def __init__(self, config: dict, logger: logging.Logger, pool: WorkerPool,
                 trainer_factory: Optional[Callable[[FeatureSchema], ModelTrainer]] = None):
        self.config = config
        self.logger = logger
        self.pool = pool
        self.base_dir = Path(config.get('outputs', {}).get('base_results_dir', 'results'))
        self.excel_copy = config.get("outputs", {}).get("save_excel_copy", False)
        self.runs = config.get('runs', [])
        self.trainer_factory = trainer_factory or self._default_trainer

    def _default_trainer(self, schema: FeatureSchema) -> ModelTrainer:
        model_cfg = self.config.get('model', {})
        return RandomForestTrainer(
            schema,
            num_trees=model_cfg.get('num_trees', 150),
            importance=model_cfg.get('importance', 'permutation'),
            permutation_repeats=model_cfg.get('permutation_repeats', 5),
            min_node_sizes=[model_cfg.get('min_node_size', 5)],
            max_mtry=model_cfg.get('max_mtry', 200),
            logger=self.logger,
        )

    def _run_config(self, run_dir: Path) -> dict:
        run_config = copy.deepcopy(self.config)
        run_config.setdefault('outputs', {})['base_results_dir'] = str(run_dir)
        return run_config

    def run_single(self, name: str, data: pd.DataFrame, schema: FeatureSchema,
                   threshold: Optional[float]) -> RunOutcome:
        run_dir = self.base_dir / name
        run_config = self._run_config(run_dir)

        self.logger.info(f"\n{'=' * 60}")
        self.logger.info(f"STARTING {name.upper()} | Predictors: {len(schema.predictors)} | Rows: {len(data)}")
        self.logger.info(f"{'=' * 60}")

        partitions = ResamplingEngine(run_config, self.logger).execute(data, schema.response)

        trainer = self.trainer_factory(schema)
        store = RFEEngine(run_config, self.logger, trainer, self.pool).execute(data, schema, partitions)

        performance_table, rank_table = tidy_rfe_output(store.load_all())
        save_tidy_output(performance_table, rank_table, run_dir / constants.RUN_TIDY_RESULTS_DIR,
                         excel_copy=self.excel_copy, logger=self.logger)

        dropped: List[str] = []
        if threshold is not None:
            result = CorrelationPruner(run_config, self.logger).execute(data, rank_table, schema, threshold)
            data, schema, dropped = result.data, result.schema, result.dropped

        return RunOutcome(name=name, run_dir=run_dir, data=data, schema=schema,
                          performance_table=performance_table, rank_table=rank_table, dropped=dropped)

    def run(self, data: pd.DataFrame, schema: FeatureSchema) -> List[RunOutcome]:
        """
        Execute every configured run in order.

        Returns:
            One outcome per run. The outcome's data/schema are the table handed to
            the next run (pruned when the run has a threshold).
        """
        outcomes = []
        for run in self.runs:
            outcome = self.run_single(run['name'], data, schema, run.get('correlation_threshold'))
            outcomes.append(outcome)
            data, schema = outcome.data, outcome.schema
        self.logger.info(f"All {len(outcomes)} RFE run(s) completed.")
        return outcomes
