import logging
from pathlib import Path
from typing import List, Tuple

import numpy as np
import pandas as pd

from modules.rfe.checkpoint_store import ResampleCheckpoint
from utils.file_io import save_dataframe
from utils import constants

PERFORMANCE_COLUMNS = ['subset_size', 'Type', 'metric', 'mean', 'sd', 'se', 'n']


def summarize(values: pd.DataFrame) -> pd.DataFrame:
    """Row-wise mean, sd (ddof=1), se and non-missing count."""
    n = values.notna().sum(axis=1)
    sd = values.std(axis=1, ddof=1, skipna=True)
    return pd.DataFrame({
        'mean': values.mean(axis=1, skipna=True),
        'sd': sd,
        'se': sd / np.sqrt(n.where(n > 0)),
        'n': n.astype(int),
    })


def build_rank_table(checkpoints: List[ResampleCheckpoint]) -> pd.DataFrame:
    """
    Outer join of the per-resample ranks on `var`, with one Resample<i> column
    per resample, sorted ascending by mean rank (most important first).
    """
    rank_table = None
    for cp in sorted(checkpoints, key=lambda c: c.index):
        ranks = pd.DataFrame(cp.ranks, columns=['var', 'rank']).rename(columns={'rank': f"Resample{cp.index}"})
        rank_table = ranks if rank_table is None else rank_table.merge(ranks, on='var', how='outer', sort=False)

    if rank_table is None:
        return pd.DataFrame(columns=['var', 'mean', 'sd', 'se', 'n'])

    resample_cols = [c for c in rank_table.columns if c != 'var']
    stats = summarize(rank_table[resample_cols].astype(float))
    rank_table = pd.concat([rank_table[['var']], stats, rank_table[resample_cols]], axis=1)
    return rank_table.sort_values('mean', kind='stable').reset_index(drop=True)


def _long_metrics(records: List[dict], index: int) -> pd.DataFrame:
    df = pd.DataFrame(records)
    df = df.melt(
        id_vars=['subset_size', 'Type'],
        value_vars=constants.METRICS,
        var_name='metric',
        value_name='value',
    )
    df['resample'] = index
    return df


def build_performance_table(checkpoints: List[ResampleCheckpoint]) -> pd.DataFrame:
    """
    Mean / sd / se per (subset_size, Type, metric) across resamples. The null
    baseline is constant within a resample: it is reduced to one value per
    resample and summarised under subset_size 0.
    """
    frames = []
    for cp in checkpoints:
        for records in (cp.train_performance, cp.test_performance, cp.null_performance):
            if records:
                frames.append(_long_metrics(records, cp.index))
    if not frames:
        return pd.DataFrame(columns=PERFORMANCE_COLUMNS)

    long_df = pd.concat(frames, ignore_index=True)
    long_df['value'] = long_df['value'].astype(float)

    null_df = long_df[long_df['Type'] == constants.NULL]
    null_table = pd.DataFrame(columns=PERFORMANCE_COLUMNS)
    if not null_df.empty:
        per_resample = (
            null_df.groupby(['metric', 'resample'])['value'].mean()
            .unstack('resample')
            .reindex([m for m in constants.METRICS if m in set(null_df['metric'])])
        )
        null_stats = summarize(per_resample)
        null_table = pd.DataFrame({
            'subset_size': constants.NULL_SUBSET_SIZE,
            'Type': constants.NULL,
            'metric': null_stats.index.to_list(),
            'mean': null_stats['mean'].to_numpy(),
            'sd': null_stats['sd'].to_numpy(),
            'se': null_stats['se'].to_numpy(),
            'n': null_stats['n'].to_numpy(),
        }, columns=PERFORMANCE_COLUMNS)

    model_df = long_df[long_df['Type'] != constants.NULL]
    wide = model_df.pivot_table(
        index=['subset_size', 'Type', 'metric'],
        columns='resample',
        values='value',
        aggfunc='first',
        dropna=False,
    )
    model_table = pd.concat([wide.index.to_frame(index=False), summarize(wide).reset_index(drop=True)], axis=1)
    model_table = model_table.sort_values(['subset_size', 'Type', 'metric'], ascending=[False, True, True], kind='stable')

    performance = pd.concat([null_table, model_table[PERFORMANCE_COLUMNS]], ignore_index=True)
    performance['subset_size'] = performance['subset_size'].astype(int)
    performance['n'] = performance['n'].astype(int)
    return performance


def tidy_rfe_output(checkpoints: List[ResampleCheckpoint]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Turn per-resample checkpoints into (performance_table, rank_table)."""
    return build_performance_table(checkpoints), build_rank_table(checkpoints)


def save_tidy_output(performance_table: pd.DataFrame, rank_table: pd.DataFrame, output_dir: Path,
                     excel_copy: bool = False, logger: logging.Logger = None) -> None:
    logger = logger or logging.getLogger(__name__)
    output_dir = Path(output_dir)
    save_dataframe(performance_table, output_dir / constants.PERFORMANCE_TABLE_FILE, excel_copy=excel_copy)
    save_dataframe(rank_table, output_dir / constants.RANK_TABLE_FILE, excel_copy=excel_copy)
    logger.info(f"Tidy results saved to {output_dir} ({len(rank_table)} features ranked).")
