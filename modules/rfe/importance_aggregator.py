import logging
from typing import Optional

import pandas as pd

from modules.data_manager.feature_schema import FeatureSchema
from utils import constants

logger = logging.getLogger(__name__)


def _owning_feature(column: str, schema: FeatureSchema, sep: str) -> Optional[str]:
    """Original feature an encoded column belongs to."""
    if column in schema.numeric or column in schema.categorical:
        return column
    feature, found, _ = column.partition(sep)
    if found and feature in schema.categorical:
        return feature
    return None


def aggregate_importance(importance: pd.Series, schema: FeatureSchema,
                         sep: str = constants.DUMMY_SEPARATOR) -> pd.Series:
    """
    Collapse encoded-column importances to one value per original predictor.

    Numeric columns pass through; the dummy columns of a categorical feature
    (`<feature><sep><level>`) are summed. The result is indexed by exactly
    `schema.predictors`, with 0.0 for predictors that received no importance.
    """
    owners = {}
    for column in importance.index:
        owner = _owning_feature(column, schema, sep)
        if owner is None:
            logger.warning(f"Importance column '{column}' matches no predictor; ignored.")
            continue
        owners[column] = owner

    if not owners:
        return pd.Series(0.0, index=schema.predictors, dtype=float)

    mapped = importance.loc[list(owners)].groupby(pd.Index(list(owners.values())), sort=False).sum()
    return mapped.reindex(schema.predictors, fill_value=0.0).astype(float)
