"""
ResamplingEngine for the RFE pipeline.

Generates the outer resamples: a fixed number of stratified train/holdout
partitions of the modelling table. The continuous response is binned into
quantile groups and every partition preserves the per-group proportions, so
each outer resample sees the full range of the response.
"""
import pandas as pd
import numpy as np
import logging
from typing import List
from sklearn.model_selection import StratifiedShuffleSplit, ShuffleSplit

from modules.base.base_engine import BaseEngine
from utils.error_handling import handle_engine_errors
from utils.exceptions import InvalidConfigurationError
from utils.file_io import save_dataframe
from utils import constants

logger = logging.getLogger(__name__)

# A stratum needs one row on each side of the split.
MIN_SAMPLES_PER_STRATUM = 2


def validate_partition_parameters(p: float, times: int, groups: int) -> None:
    if not (0.0 < p < 1.0):
        raise InvalidConfigurationError(f"p must be between 0 and 1 (exclusive), got {p}")
    if times < 1:
        raise InvalidConfigurationError(f"times must be >= 1, got {times}")
    if groups < 2:
        raise InvalidConfigurationError(f"groups must be >= 2, got {groups}")


def stratification_bins(response, groups: int) -> np.ndarray:
    """Quantile bins of the response; duplicate edges collapse into fewer groups."""
    y = pd.Series(np.asarray(response, dtype=float))
    try:
        bins = pd.qcut(y, q=groups, labels=False, duplicates='drop')
    except ValueError:
        logger.warning("Quantile binning failed (likely constant response). Using a single stratum.")
        return np.zeros(len(y), dtype=int)
    return bins.fillna(-1).astype(int).to_numpy()


def create_partitions(response, p: float, times: int, groups: int, seed: int) -> List[np.ndarray]:
    """
    Create `times` stratified training partitions of size ~ p * N.

    Args:
        response: Response values, one per row of the modelling table.
        p: Fraction of rows in each training partition.
        times: Number of partitions (outer resamples).
        groups: Number of quantile groups used for stratification.
        seed: Random seed; identical inputs give identical partitions.

    Returns:
        One sorted array of training row positions per partition. The holdout
        set of a partition is its complement.
    """
    validate_partition_parameters(p, times, groups)

    bins = stratification_bins(response, groups)
    n_rows = len(bins)

    counts = pd.Series(bins).value_counts()
    rare_bins = counts[counts < MIN_SAMPLES_PER_STRATUM].index
    rare_mask = np.isin(bins, rare_bins)
    strat_pos = np.flatnonzero(~rare_mask)
    rare_pos = np.flatnonzero(rare_mask)

    if len(rare_pos):
        logger.warning(
            f"{len(rare_pos)} rows belong to strata with < {MIN_SAMPLES_PER_STRATUM} members. "
            "They are placed in every training partition."
        )

    if len(strat_pos) == 0:
        strat_pos, rare_pos = np.arange(n_rows), np.array([], dtype=int)

    try:
        splitter = StratifiedShuffleSplit(n_splits=times, train_size=p, random_state=seed)
        splits = list(splitter.split(np.zeros(len(strat_pos)), bins[strat_pos]))
    except ValueError as e:
        logger.warning(f"Stratified partitioning failed: {e}. Falling back to random partitions.")
        splitter = ShuffleSplit(n_splits=times, train_size=p, random_state=seed)
        splits = list(splitter.split(np.zeros(len(strat_pos))))

    return [np.sort(np.concatenate([strat_pos[train_idx], rare_pos])).astype(int) for train_idx, _ in splits]


class ResamplingEngine(BaseEngine):
    """
    Creates and persists the partition index for one RFE run.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.resampling_config = config.get('resampling', {})

    def _get_engine_directory_name(self) -> str:
        return constants.RUN_PARTITIONS_DIR

    @handle_engine_errors("Resampling")
    def execute(self, df: pd.DataFrame, response: str) -> List[np.ndarray]:
        """
        Build the outer resamples for `df` and save the partition index.

        Returns:
            List of training row-position arrays; list position i holds resample i + 1.
        """
        p = self.resampling_config.get('p', 0.8)
        times = self.resampling_config.get('times', 30)
        groups = self.resampling_config.get('groups', 9)
        seed = self.config.get('_internal_seeds', {}).get('partition', self.resampling_config.get('seed', 123))

        self.logger.info(f"Creating {times} partitions (p={p}, groups={groups}, seed={seed})...")
        partitions = create_partitions(df[response].to_numpy(), p=p, times=times, groups=groups, seed=seed)

        index_df = pd.concat(
            [pd.DataFrame({'resample': i + 1, 'row': rows}) for i, rows in enumerate(partitions)],
            ignore_index=True,
        )
        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_dataframe(index_df, self.output_dir / constants.PARTITION_INDEX_FILE, excel_copy=excel_copy, index=False)

        sizes = [len(rows) for rows in partitions]
        self.logger.info(f"Partitions saved: {len(partitions)} x ~{int(np.mean(sizes))} training rows of {len(df)}.")
        return partitions
