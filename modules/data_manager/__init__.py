"""
Data Manager Module
===================

Responsibility:
- Loading of the modelling table (Parquet, CSV, Excel).
- Explicit per-column schema: response, numeric and categorical predictors.
- Complete-case filtering ahead of resampling.
- Persistence of validated data for downstream consumption.
"""

from .data_manager import DataManager
from .feature_schema import FeatureSchema

__all__ = ['DataManager', 'FeatureSchema']
