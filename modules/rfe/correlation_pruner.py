from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.data_manager.feature_schema import FeatureSchema
from utils.error_handling import handle_engine_errors
from utils.file_io import save_dataframe, write_json_atomic
from utils import constants


@dataclass
class PruningResult:
    pairs: pd.DataFrame
    dropped: List[str]
    data: pd.DataFrame
    schema: FeatureSchema


class CorrelationPruner(BaseEngine):
    """
    Removes redundancy between RFE runs.

    For every pair of numeric features whose absolute Pearson correlation
    exceeds the threshold, the member with the worse (larger) mean rank is
    dropped. Categorical features are never pruned.
    """

    def _get_engine_directory_name(self) -> str:
        return constants.RUN_CORRELATION_DIR

    @staticmethod
    def correlated_pairs(data: pd.DataFrame, rank_table: pd.DataFrame, schema: FeatureSchema,
                         threshold: float) -> pd.DataFrame:
        """
        Pairs (var1, var2) with |r| > threshold, var1 ranked before var2 in the
        rank table, ordered by |r| descending.
        """
        ranked = [v for v in rank_table['var'] if v in schema.numeric and v in data.columns]
        columns = ['var1', 'var2', 'correlation', 'mean_rank1', 'mean_rank2']
        if len(ranked) < 2:
            return pd.DataFrame(columns=columns)

        corr = data[ranked].astype(float).corr(method='pearson').to_numpy()
        mean_rank = rank_table.set_index('var')['mean']

        rows = []
        for a in range(len(ranked)):
            for b in range(a + 1, len(ranked)):
                r = corr[a, b]
                if np.isfinite(r) and abs(r) > threshold:
                    rows.append({
                        'var1': ranked[a],
                        'var2': ranked[b],
                        'correlation': float(r),
                        'mean_rank1': float(mean_rank[ranked[a]]),
                        'mean_rank2': float(mean_rank[ranked[b]]),
                    })

        pairs = pd.DataFrame(rows, columns=columns)
        if pairs.empty:
            return pairs
        order = np.argsort(-pairs['correlation'].abs().to_numpy(), kind='stable')
        return pairs.iloc[order].reset_index(drop=True)

    @classmethod
    def prune(cls, data: pd.DataFrame, rank_table: pd.DataFrame, schema: FeatureSchema,
              threshold: float) -> PruningResult:
        pairs = cls.correlated_pairs(data, rank_table, schema, threshold)

        dropped: List[str] = []
        for row in pairs.itertuples(index=False):
            loser = row.var2 if row.mean_rank2 > row.mean_rank1 else row.var1
            if loser not in dropped:
                dropped.append(loser)

        remaining = [c for c in schema.predictors if c not in dropped]
        reduced_schema = schema.restrict(remaining)
        keep_columns = [schema.response] + [c for c in data.columns if c in reduced_schema.predictors]
        return PruningResult(pairs=pairs, dropped=dropped, data=data[keep_columns], schema=reduced_schema)

    @handle_engine_errors("Correlation Pruning")
    def execute(self, data: pd.DataFrame, rank_table: pd.DataFrame, schema: FeatureSchema,
                threshold: Optional[float]) -> PruningResult:
        """Prune and persist pairs, drop list and the reduced dataset."""
        self.logger.info(f"Correlation pruning with |r| > {threshold}...")
        result = self.prune(data, rank_table, schema, threshold)

        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_dataframe(result.pairs, self.output_dir / constants.CORRELATION_PAIRS_FILE, excel_copy=excel_copy)
        save_dataframe(result.data, self.output_dir / constants.REDUCED_DATA_FILE)
        write_json_atomic(
            {'threshold': threshold, 'dropped': result.dropped, 'schema': result.schema.to_dict()},
            self.output_dir / constants.DROPPED_FEATURES_FILE,
        )

        self.logger.info(
            f"{len(result.pairs)} correlated pair(s); dropped {len(result.dropped)} feature(s): {result.dropped}"
        )
        return result
