import pytest
import pandas as pd
import numpy as np
import logging
from unittest.mock import MagicMock

from modules.data_manager import DataManager, FeatureSchema
from utils.exceptions import DataValidationError
from utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def sample_dataframe():
    return pd.DataFrame({
        'y': [1.0, 2.0, 3.0, 4.0, 5.0],
        'x1': [0.1, 0.2, np.nan, 0.4, 0.5],
        'site': ['b', 'a', 'b', 'a', 'c'],
        'x2': [1, 2, 3, 4, np.inf],
        'extra_col': [9, 9, 9, 9, 9],
    })


@pytest.fixture
def base_config(tmp_path, sample_dataframe):
    path = tmp_path / "data.csv"
    sample_dataframe.to_csv(path, index=False)
    return {
        "data": {
            "file_path": str(path),
            "response": "y",
            "categorical": ["site"],
            "drop_columns": ["extra_col"],
        },
        "outputs": {"base_results_dir": str(tmp_path / "results")},
    }


class TestDataManager:

    def test_execute_returns_complete_cases_and_schema(self, base_config, mock_logger, tmp_path):
        data, schema = DataManager(base_config, mock_logger).execute("run")

        assert schema == FeatureSchema(response='y', numeric=['x1', 'x2'], categorical=['site'])
        assert list(data.columns) == ['y', 'x1', 'site', 'x2']
        # NaN in row 2 and inf in row 4 are excluded
        assert data['y'].tolist() == [1.0, 2.0, 4.0]
        assert data['x2'].dtype == 'float64'

        out_dir = tmp_path / "results" / constants.DATA_INTEGRITY_DIR
        assert (out_dir / "validated_data.parquet").exists()
        assert (out_dir / "column_stats.parquet").exists()

    def test_categorical_levels_fixed_from_full_table(self, base_config, mock_logger):
        data, _ = DataManager(base_config, mock_logger).execute("run")
        # 'c' only occurs in a dropped row but stays a declared level
        assert list(data['site'].cat.categories) == ['a', 'b', 'c']

    def test_explicit_numeric_list(self, base_config, mock_logger):
        base_config['data']['numeric'] = ['x2']
        _, schema = DataManager(base_config, mock_logger).execute("run")
        assert schema.predictors == ['x2', 'site']

    def test_missing_file(self, base_config, mock_logger):
        base_config['data']['file_path'] = "does/not/exist.csv"
        with pytest.raises(DataValidationError, match="not found"):
            DataManager(base_config, mock_logger).load_data()

    def test_unsupported_extension(self, base_config, mock_logger, tmp_path):
        path = tmp_path / "data.txt"
        path.write_text("y\n1\n")
        base_config['data']['file_path'] = str(path)
        with pytest.raises(DataValidationError, match="Unsupported"):
            DataManager(base_config, mock_logger).load_data()

    def test_missing_declared_column(self, base_config, mock_logger):
        base_config['data']['categorical'] = ['region']
        with pytest.raises(DataValidationError, match="Missing required columns"):
            DataManager(base_config, mock_logger).execute("run")

    def test_overlapping_declarations(self, base_config, mock_logger):
        base_config['data']['numeric'] = ['x1', 'site']
        with pytest.raises(DataValidationError, match="both numeric and categorical"):
            DataManager(base_config, mock_logger).execute("run")

    def test_reserved_separator_in_column_name(self, tmp_path, base_config, mock_logger):
        path = tmp_path / "reserved.csv"
        pd.DataFrame({'y': [1.0, 2.0], 'x1': [0.1, 0.2], 'site==a': [1, 0], 'site': ['a', 'b']}).to_csv(path, index=False)
        base_config['data']['file_path'] = str(path)
        with pytest.raises(DataValidationError, match="may not contain"):
            DataManager(base_config, mock_logger).execute("run")

    def test_non_numeric_predictor(self, base_config, mock_logger):
        base_config['data']['categorical'] = []
        with pytest.raises(DataValidationError, match="Non-numeric"):
            DataManager(base_config, mock_logger).execute("run")

    def test_all_rows_incomplete(self, tmp_path, base_config, mock_logger):
        path = tmp_path / "empty.csv"
        pd.DataFrame({'y': [1.0, np.nan], 'x1': [np.nan, 1.0], 'site': ['a', 'b']}).to_csv(path, index=False)
        base_config['data']['file_path'] = str(path)
        with pytest.raises(DataValidationError, match="No complete rows"):
            DataManager(base_config, mock_logger).execute("run")


class TestFeatureSchema:

    def test_restrict_keeps_schema_order(self):
        schema = FeatureSchema(response='y', numeric=['a', 'b', 'c'], categorical=['d'])
        restricted = schema.restrict(['d', 'c', 'a'])
        assert restricted.numeric == ['a', 'c']
        assert restricted.categorical == ['d']
        assert restricted.predictors == ['a', 'c', 'd']

    def test_dict_round_trip(self):
        schema = FeatureSchema(response='y', numeric=['a'], categorical=['d'])
        assert FeatureSchema.from_dict(schema.to_dict()) == schema
