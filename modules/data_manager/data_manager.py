import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import Tuple, Optional

from modules.data_manager.feature_schema import FeatureSchema
from utils.exceptions import DataValidationError
from utils.file_io import save_dataframe
from utils.error_handling import handle_engine_errors
from utils import constants

class DataManager:
    """
    Manages loading, validation, and preparation of the modelling table.

    Responsibilities:
    - Load the dataset file (Parquet, CSV, Excel).
    - Declare the per-column schema (response, numeric, categorical) from config.
    - Exclude incomplete rows so every downstream stage sees a complete-case table.
    - Persist the validated table and column statistics.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.data: Optional[pd.DataFrame] = None
        self.schema: Optional[FeatureSchema] = None
        self.base_dir = Path(self.config.get('outputs', {}).get('base_results_dir', 'results'))

    @handle_engine_errors("Data Management")
    def execute(self, run_id: str) -> Tuple[pd.DataFrame, FeatureSchema]:
        """
        Execute complete data loading and validation workflow.

        Args:
            run_id: Unique identifier for the run.

        Returns:
            The validated complete-case table and its declared schema.
        """
        self.logger.info("Starting Data Manager execution...")

        output_dir = self.base_dir / constants.DATA_INTEGRITY_DIR
        output_dir.mkdir(parents=True, exist_ok=True)

        self.load_data()
        self.validate_columns()
        self.declare_schema()
        stats_df = self.column_stats()
        self.drop_incomplete_rows()

        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_path = output_dir / "validated_data.parquet"
        save_dataframe(self.data, save_path, excel_copy=excel_copy, index=False)
        self.logger.info(f"Saved validated data to {save_path}")

        save_dataframe(stats_df, output_dir / "column_stats.parquet", excel_copy=excel_copy, index=False)

        return self.data, self.schema

    def load_data(self) -> pd.DataFrame:
        """Load data from the file path specified in config."""
        file_path = Path(self.config['data']['file_path'])

        if not file_path.exists():
            raise DataValidationError(f"Data file not found: {file_path}")

        self.logger.info(f"Loading data from {file_path}")

        ext = file_path.suffix.lower()
        try:
            if ext == '.xlsx':
                self.data = pd.read_excel(file_path)
            elif ext == '.csv':
                self.data = pd.read_csv(file_path)
            elif ext == '.parquet':
                self.data = pd.read_parquet(file_path)
            else:
                raise DataValidationError(f"Unsupported file extension: {ext}")
        except DataValidationError:
            raise
        except Exception as e:
            raise DataValidationError(f"Failed to load data: {str(e)}")

        if self.data.empty:
            raise DataValidationError("Loaded dataframe is empty.")

        drop_cols = [c for c in self.config['data'].get('drop_columns', []) if c in self.data.columns]
        if drop_cols:
            self.data = self.data.drop(columns=drop_cols)

        self.logger.info(f"Data loaded successfully. Shape: {self.data.shape}")
        return self.data

    def validate_columns(self) -> None:
        """Ensure the response and all declared predictors exist and no name contains the dummy separator."""
        if self.data is None or self.data.empty:
            raise DataValidationError("Dataframe is empty or None.")

        data_cfg = self.config['data']
        required = [data_cfg['response']] + data_cfg.get('categorical', []) + data_cfg.get('numeric', [])

        missing = [col for col in required if col not in self.data.columns]
        if missing:
            raise DataValidationError(f"Missing required columns in dataset: {missing}")

        reserved = [str(col) for col in self.data.columns if constants.DUMMY_SEPARATOR in str(col)]
        if reserved:
            raise DataValidationError(
                f"Column names may not contain '{constants.DUMMY_SEPARATOR}': {reserved}"
            )

    def declare_schema(self) -> FeatureSchema:
        """
        Build the FeatureSchema and coerce column types accordingly.
        Numeric predictors default to every non-categorical column when not listed.
        """
        data_cfg = self.config['data']
        response = data_cfg['response']
        categorical = list(data_cfg.get('categorical', []))
        numeric = data_cfg.get('numeric')
        if not numeric:
            numeric = [c for c in self.data.columns if c != response and c not in categorical]

        overlap = set(numeric) & set(categorical)
        if overlap:
            raise DataValidationError(f"Columns declared both numeric and categorical: {sorted(overlap)}")

        self.data = self.data[[response] + [c for c in self.data.columns if c in set(numeric) | set(categorical)]].copy()

        try:
            self.data[response] = pd.to_numeric(self.data[response])
            for col in numeric:
                self.data[col] = pd.to_numeric(self.data[col]).astype('float64')
        except (ValueError, TypeError) as e:
            raise DataValidationError(f"Non-numeric values in a numeric column: {e}")

        for col in categorical:
            # Fixed level set across every partition, so dummy encodings line up.
            levels = sorted(self.data[col].dropna().astype(str).unique())
            self.data[col] = pd.Categorical(self.data[col].astype('string'), categories=levels)

        ordered_numeric = [c for c in self.data.columns if c in set(numeric)]
        ordered_categorical = [c for c in self.data.columns if c in set(categorical)]
        self.schema = FeatureSchema(response=response, numeric=ordered_numeric, categorical=ordered_categorical)
        self.logger.info(
            f"Schema declared: response='{response}', {len(ordered_numeric)} numeric, "
            f"{len(ordered_categorical)} categorical predictors."
        )
        return self.schema

    def column_stats(self) -> pd.DataFrame:
        """Missing/infinite counts and ranges for every column."""
        stats = []
        for col in self.data.columns:
            nan_count = int(self.data[col].isna().sum())
            row = {'column': col, 'nan_count': nan_count, 'inf_count': 0,
                   'min': np.nan, 'max': np.nan, 'mean': np.nan}
            if pd.api.types.is_numeric_dtype(self.data[col]):
                inf_count = int(np.isinf(self.data[col]).sum())
                row.update({
                    'inf_count': inf_count,
                    'min': self.data[col].min(),
                    'max': self.data[col].max(),
                    'mean': self.data[col].mean(),
                })
                if inf_count > 0:
                    self.logger.warning(f"Column '{col}' contains {inf_count} infinite values.")
            if nan_count > 0:
                self.logger.warning(f"Column '{col}' contains {nan_count} missing values.")
            stats.append(row)

        return pd.DataFrame(stats)

    def drop_incomplete_rows(self) -> pd.DataFrame:
        """Keep complete cases only (infinite values count as missing)."""
        numeric_cols = self.data.select_dtypes(include=[np.number]).columns
        finite = ~np.isinf(self.data[numeric_cols]).any(axis=1)
        complete = self.data.notna().all(axis=1) & finite

        n_dropped = int((~complete).sum())
        if n_dropped:
            self.logger.warning(f"Dropping {n_dropped} incomplete rows ({n_dropped / len(self.data) * 100:.1f}%).")

        self.data = self.data[complete].reset_index(drop=True)
        if self.data.empty:
            raise DataValidationError("No complete rows left after excluding missing values.")
        return self.data
