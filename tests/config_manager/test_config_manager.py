import pytest
import json
from pathlib import Path
from unittest.mock import patch

from modules.config_manager.config_manager import ConfigurationManager, DEFAULT_RUNS
from utils.exceptions import InvalidConfigurationError
from utils import constants

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "config" / "schema.json"


@pytest.fixture
def valid_config(tmp_path):
    return {
        "data": {"file_path": "data/model_data.parquet", "response": "y", "categorical": ["site"]},
        "resampling": {"p": 0.8, "times": 5, "groups": 5, "seed": 123},
        "rfe": {"cv_folds": 5},
        "outputs": {"base_results_dir": str(tmp_path / "results")},
        "execution": {"n_jobs": 1},
    }


@pytest.fixture
def write_config(tmp_path):
    def _write(config):
        path = tmp_path / "config.json"
        with open(path, 'w') as f:
            json.dump(config, f)
        return ConfigurationManager(str(path), str(SCHEMA_PATH))
    return _write


def test_load_and_validate_success(write_config, valid_config):
    config = write_config(valid_config).load_and_validate()
    assert config['_internal_seeds'] == {'partition': 123, 'cv': 1123, 'model': 2123}
    assert config['runs'] == DEFAULT_RUNS
    assert 'max_memory_mb' in config['resources']


def test_missing_file_raises(tmp_path):
    cm = ConfigurationManager(str(tmp_path / "nope.json"), str(SCHEMA_PATH))
    with pytest.raises(InvalidConfigurationError, match="File not found"):
        cm.load_and_validate()


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(InvalidConfigurationError, match="Invalid JSON"):
        ConfigurationManager(str(path), str(SCHEMA_PATH)).load_and_validate()


def test_schema_violation_raises(write_config, valid_config):
    valid_config['rfe']['null_baseline'] = "everything"
    with pytest.raises(InvalidConfigurationError, match="Schema validation failed"):
        write_config(valid_config).load_and_validate()


@pytest.mark.parametrize("section, key, value, message", [
    ("resampling", "p", 1.0, "resampling.p"),
    ("resampling", "p", 0.0, "resampling.p"),
    ("resampling", "times", 0, "resampling.times"),
    ("resampling", "groups", 1, "resampling.groups"),
    ("rfe", "cv_folds", 1, "rfe.cv_folds"),
    ("rfe", "schedule", [5, 5, 1], "strictly decreasing"),
    ("rfe", "schedule", [5, 3, 0], ">= 1"),
    ("execution", "n_jobs", 0, "n_jobs"),
    ("execution", "n_jobs", -2, "n_jobs"),
])
def test_logical_bounds(write_config, valid_config, section, key, value, message):
    valid_config[section][key] = value
    with pytest.raises(InvalidConfigurationError, match=message):
        write_config(valid_config).load_and_validate()


def test_response_cannot_be_categorical(write_config, valid_config):
    valid_config['data']['categorical'] = ['y']
    with pytest.raises(InvalidConfigurationError, match="response"):
        write_config(valid_config).load_and_validate()


@pytest.mark.parametrize("threshold", [0.0, 1.0, 1.5])
def test_correlation_threshold_bounds(write_config, valid_config, threshold):
    valid_config['runs'] = [{'name': 'run0', 'correlation_threshold': threshold}]
    with pytest.raises(InvalidConfigurationError, match="correlation_threshold"):
        write_config(valid_config).load_and_validate()


def test_duplicate_run_names(write_config, valid_config):
    valid_config['runs'] = [{'name': 'a'}, {'name': 'a'}]
    with pytest.raises(InvalidConfigurationError, match="unique"):
        write_config(valid_config).load_and_validate()


def test_final_grid_limit(write_config, valid_config):
    valid_config['resources'] = {'max_grid_configs': 10}
    with pytest.raises(InvalidConfigurationError, match="safety limit"):
        write_config(valid_config).load_and_validate()


def test_final_grid_ignored_when_disabled(write_config, valid_config):
    valid_config['resources'] = {'max_grid_configs': 10}
    valid_config['final_model'] = {'enabled': False}
    write_config(valid_config).load_and_validate()


def test_n_jobs_above_cpu_count_only_warns(write_config, valid_config):
    valid_config['execution']['n_jobs'] = 64
    cm = write_config(valid_config)
    with patch("modules.config_manager.config_manager.psutil.cpu_count", return_value=4):
        with patch.object(cm.logger, "warning") as warning:
            cm.load_and_validate()
    assert any("exceeds" in str(c) for c in warning.call_args_list)


def test_save_artifacts(write_config, valid_config, tmp_path):
    cm = write_config(valid_config)
    cm.load_and_validate()
    cm.generate_run_id()
    cm.save_artifacts(str(tmp_path / "out"))

    config_dir = tmp_path / "out" / constants.CONFIG_DIR
    assert (config_dir / constants.CONFIG_USED_FILE).exists()
    assert len((config_dir / constants.CONFIG_HASH_FILE).read_text()) == 64
    with open(config_dir / constants.RUN_METADATA_FILE) as f:
        assert json.load(f)['run_id'] == cm.run_id


def test_shipped_config_is_valid(tmp_path):
    shipped = SCHEMA_PATH.parent / "config.json"
    cm = ConfigurationManager(str(shipped), str(SCHEMA_PATH))
    config = cm.load_and_validate()
    assert [r['name'] for r in config['runs']] == ['run0', 'run1', 'run2']
