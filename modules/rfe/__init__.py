"""
Recursive Feature Elimination (RFE) Module.

This package contains the resampled RFE pipeline:
- RFEEngine: outer resamples x inner subset-shrinking iterations, checkpointed.
- CheckpointStore: per-resample bundles and the completion manifest.
- Importance aggregation, feature shrinking and the subset schedule.
- Result tidying into rank and performance tables.
- CorrelationPruner: redundancy removal between runs.
- RFEController: the configured sequence of runs.
"""

from .rfe_engine import RFEEngine, RFESettings, ResampleTask, StepState, run_resample, run_step
from .checkpoint_store import CheckpointStore, ResampleCheckpoint, file_lock
from .importance_aggregator import aggregate_importance
from .feature_shrinker import elimination_rank, elimination_records, select_top_features
from .subset_schedule import build_schedule, validate_schedule
from .result_tidying import build_performance_table, build_rank_table, save_tidy_output, tidy_rfe_output
from .correlation_pruner import CorrelationPruner, PruningResult
from .rfe_controller import RFEController, RunOutcome

__all__ = [
    'RFEEngine',
    'RFESettings',
    'ResampleTask',
    'StepState',
    'run_resample',
    'run_step',
    'CheckpointStore',
    'ResampleCheckpoint',
    'file_lock',
    'aggregate_importance',
    'elimination_rank',
    'elimination_records',
    'select_top_features',
    'build_schedule',
    'validate_schedule',
    'build_performance_table',
    'build_rank_table',
    'save_tidy_output',
    'tidy_rfe_output',
    'CorrelationPruner',
    'PruningResult',
    'RFEController',
    'RunOutcome',
]
