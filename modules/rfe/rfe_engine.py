"""
RFE Engine.

Runs recursive feature elimination inside every outer resample:

    for each resample i (independent, parallel):
        table = training partition i
        for j, size in enumerate(schedule):
            fit trainer with internal CV on table
            record Train / Test / Null performance
            if not last step: keep the top schedule[j+1] features, rank the rest
            else: rank all remaining features 1
        write checkpoint i

Completed resamples are found through the checkpoint store and skipped, so a
crashed job is resumed by simply running it again.
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.data_manager.feature_schema import FeatureSchema
from modules.evaluation_engine.performance import (
    get_baseline_performance,
    get_test_performance,
    get_train_performance,
)
from modules.model_trainer.base import ModelTrainer
from modules.rfe.checkpoint_store import CheckpointStore, ResampleCheckpoint
from modules.rfe.feature_shrinker import elimination_records, select_top_features
from modules.rfe.importance_aggregator import aggregate_importance
from modules.rfe.subset_schedule import build_schedule, validate_schedule
from utils.error_handling import handle_engine_errors
from utils.exceptions import InsufficientFeaturesError, RFEPipelineError, ResampleFailedError
from utils.worker_pool import WorkerPool
from utils import constants

logger = logging.getLogger(__name__)


@dataclass
class ResampleTask:
    index: int
    train_df: pd.DataFrame
    test_df: pd.DataFrame
    seed: int
    inner_jobs: int = 1


@dataclass
class StepState:
    """Input of one inner iteration: the current table and its predictors."""
    step: int
    table: pd.DataFrame
    features: List[str]


@dataclass
class RFESettings:
    schedule: List[int]
    cv_folds: int = 7
    cv_repeats: int = 1
    null_baseline: str = "internal_folds"


def run_step(state: StepState, task: ResampleTask, trainer: ModelTrainer,
             schema: FeatureSchema, settings: RFESettings) -> Tuple[Dict[str, Any], Optional[StepState]]:
    """
    One inner iteration. Returns the step's records and the state for the next
    step (None after the last schedule entry).
    """
    schedule = settings.schedule
    size = schedule[state.step - 1]
    n_current = len(state.features)
    if size > n_current:
        raise InsufficientFeaturesError(
            f"Schedule step {state.step} requests {size} features but only {n_current} are available."
        )

    response = schema.response
    grid = trainer.build_grid(n_current)
    fit = trainer.fit(
        state.table, response, grid,
        cv_folds=settings.cv_folds,
        cv_repeats=settings.cv_repeats,
        seed=task.seed,
        n_jobs=task.inner_jobs,
    )

    label = {'subset_size': size, 'n_predictors': n_current}
    records = {
        'train': {**label, **get_train_performance(fit)},
        'test': {**label, **get_test_performance(trainer, fit, task.test_df, response)},
        'null': {**label, **get_baseline_performance(
            fit, state.table, response, mode=settings.null_baseline, test_df=task.test_df)},
    }

    if state.step == len(schedule):
        records['ranks'] = elimination_records(state.features, state.step, len(schedule))
        return records, None

    importance = aggregate_importance(fit.importance, schema.restrict(state.features))
    kept, dropped = select_top_features(importance, state.features, schedule[state.step])
    records['ranks'] = elimination_records(dropped, state.step, len(schedule))
    next_state = StepState(step=state.step + 1, table=state.table[[response] + kept], features=kept)
    return records, next_state


def run_resample(task: ResampleTask, trainer: ModelTrainer, schema: FeatureSchema,
                 settings: RFESettings, store: CheckpointStore) -> Tuple[int, Optional[str]]:
    """
    Full inner loop for one outer resample, ending with its checkpoint.

    Returns (index, None) on success or (index, reason) when the resample failed;
    a failed resample writes nothing.
    """
    start_time = time.time()
    features = [c for c in task.train_df.columns if c in schema.predictors]
    state = StepState(step=1, table=task.train_df[[schema.response] + features], features=features)
    checkpoint = ResampleCheckpoint(index=task.index, schedule=list(settings.schedule))

    try:
        while state is not None:
            records, state = run_step(state, task, trainer, schema, settings)
            checkpoint.ranks.extend(records['ranks'])
            checkpoint.train_performance.append(records['train'])
            checkpoint.test_performance.append(records['test'])
            checkpoint.null_performance.append(records['null'])
            checkpoint.n_predictors.append(records['train']['n_predictors'])
    except RFEPipelineError as e:
        logger.error(f"Resample {task.index} failed: {e}")
        return task.index, str(e)

    store.write(checkpoint)
    logger.info(f"Resample {task.index} completed in {time.time() - start_time:.1f}s.")
    return task.index, None


class RFEEngine(BaseEngine):
    """
    Outer resampling loop of the RFE run. Writes one checkpoint per resample
    into the run's checkpoint directory.
    """

    def __init__(self, config: dict, logger: logging.Logger, trainer: ModelTrainer, pool: WorkerPool):
        super().__init__(config, logger)
        self.trainer = trainer
        self.pool = pool
        self.rfe_config = config.get('rfe', {})
        self.store = CheckpointStore(self.output_dir, logger)

    def _get_engine_directory_name(self) -> str:
        return constants.RUN_CHECKPOINTS_DIR

    def resolve_schedule(self, n_predictors: int) -> List[int]:
        """Configured schedule, or the default one built from the predictor count."""
        schedule = self.rfe_config.get('schedule')
        if not schedule:
            schedule = build_schedule(
                n_predictors,
                step=self.rfe_config.get('schedule_step', 3),
                fine_threshold=self.rfe_config.get('fine_threshold', 10),
            )
        schedule = validate_schedule(schedule)
        if schedule[0] < n_predictors:
            self.logger.warning(
                f"First schedule entry ({schedule[0]}) is below the {n_predictors} available predictors; "
                f"step 1 trains on all predictors and is labelled subset_size={schedule[0]}."
            )
        return schedule

    @handle_engine_errors("RFE")
    def execute(self, data: pd.DataFrame, schema: FeatureSchema,
                partitions: List[np.ndarray]) -> CheckpointStore:
        """
        Run every resample that has no checkpoint yet.

        Raises:
            ResampleFailedError: after all resamples finished, if any of them failed.
        """
        schedule = self.resolve_schedule(len(schema.predictors))
        settings = RFESettings(
            schedule=schedule,
            cv_folds=self.rfe_config.get('cv_folds', 7),
            cv_repeats=self.rfe_config.get('cv_repeats', 1),
            null_baseline=self.rfe_config.get('null_baseline', 'internal_folds'),
        )
        model_seed = self.config.get('_internal_seeds', {}).get('model', 0)

        completed = set(self.store.completed_indices())
        pending = [i for i in range(1, len(partitions) + 1) if i not in completed]
        if completed:
            self.logger.info(f"Found {len(completed)} completed resample(s); skipping {sorted(completed)}.")
        if not pending:
            self.logger.info("All resamples already completed.")
            return self.store

        self.logger.info(
            f"Running {len(pending)} resample(s) | schedule={schedule} | "
            f"{settings.cv_folds}-fold internal CV x {settings.cv_repeats}"
        )

        inner_jobs = self.pool.inner_jobs(len(pending))
        positions = np.arange(len(data))
        tasks = []
        for i in pending:
            train_rows = partitions[i - 1]
            test_rows = np.setdiff1d(positions, train_rows)
            tasks.append(ResampleTask(
                index=i,
                train_df=data.iloc[train_rows].reset_index(drop=True),
                test_df=data.iloc[test_rows].reset_index(drop=True),
                seed=model_seed + i,
                inner_jobs=inner_jobs,
            ))

        worker = functools.partial(run_resample, trainer=self.trainer, schema=schema,
                                   settings=settings, store=self.store)
        results = self.pool.map(worker, tasks)

        failures = {index: reason for index, reason in results if reason is not None}
        self.logger.info(f"RFE finished: {len(results) - len(failures)} succeeded, {len(failures)} failed.")
        if failures:
            raise ResampleFailedError(failures)
        return self.store
