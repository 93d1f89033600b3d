import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil  # Required for memory awareness
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from sklearn.model_selection import ParameterGrid

from modules.rfe.subset_schedule import validate_schedule
from utils.exceptions import InvalidConfigurationError
from utils.file_io import write_json_atomic
from utils import constants

DEFAULT_RUNS = [
    {'name': 'run0', 'correlation_threshold': 0.925},
    {'name': 'run1', 'correlation_threshold': 0.85},
    {'name': 'run2', 'correlation_threshold': None},
]


class ConfigurationManager:
    """
    Manages configuration loading, validation, and access for the RFE pipeline.
    Acts as the single source of truth and safety guard for the pipeline.

    - Structural validation against config/schema.json.
    - Logical bounds (resampling, schedule, thresholds, parallelism).
    - Resource limits (final grid size, memory).
    - Deterministic seed propagation.
    """

    # Default Resource Limits (Safety Guardrails)
    DEFAULT_MAX_GRID_CONFIGS = 500
    # Largest number of distinct mtry values the default grid policy produces
    MAX_MTRY_CANDIDATES = 6

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Loads config, validates schema/logic/resources, applies defaults and
        propagates seeds.

        Raises:
            InvalidConfigurationError: If any validation step fails.
        """
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        self._validate_schema()
        self._apply_defaults()
        self._validate_logic()
        self._validate_resources()
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """Timestamp-based run identifier (YYYYMMDD_HHMMSS) used for directory naming."""
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save config_used.json, config_hash.txt and run_metadata.json to the run
        directory for reproducibility.
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        write_json_atomic(self.config, config_dir / constants.CONFIG_USED_FILE)

        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()
        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'cpu_count': psutil.cpu_count(logical=True),
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }
        write_json_atomic(metadata, config_dir / constants.RUN_METADATA_FILE)

    def _load_json(self, path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            raise InvalidConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise InvalidConfigurationError(f"Schema validation failed: {e.message}")

    def _apply_defaults(self) -> None:
        if not self.config.get('runs'):
            self.config['runs'] = [dict(run) for run in DEFAULT_RUNS]

    def _validate_logic(self) -> None:
        """Logical validation of the sections the schema cannot express."""
        # --- Data Section ---
        data = self.config.get('data', {})
        for key in ['file_path', 'response']:
            if not data.get(key):
                raise InvalidConfigurationError(f"Data '{key}' must be specified and non-empty.")
        if data['response'] in data.get('categorical', []):
            raise InvalidConfigurationError("The response column cannot be declared categorical.")

        # --- Resampling Section ---
        resampling = self.config.get('resampling', {})
        p = resampling.get('p', 0.8)
        if not (0.0 < p < 1.0):
            raise InvalidConfigurationError(f"resampling.p must be between 0 and 1 (exclusive), got {p}")
        if resampling.get('times', 30) < 1:
            raise InvalidConfigurationError(f"resampling.times must be >= 1, got {resampling.get('times')}")
        if resampling.get('groups', 9) < 2:
            raise InvalidConfigurationError(f"resampling.groups must be >= 2, got {resampling.get('groups')}")
        if resampling.get('seed', 123) < 0:
            raise InvalidConfigurationError("resampling.seed must be non-negative.")

        # --- RFE Section ---
        rfe = self.config.get('rfe', {})
        if rfe.get('cv_folds', 7) < 2:
            raise InvalidConfigurationError(f"rfe.cv_folds must be >= 2, got {rfe.get('cv_folds')}.")
        if rfe.get('cv_repeats', 1) < 1:
            raise InvalidConfigurationError(f"rfe.cv_repeats must be >= 1, got {rfe.get('cv_repeats')}.")
        if rfe.get('schedule'):
            validate_schedule(rfe['schedule'])

        # --- Runs ---
        names = [run['name'] for run in self.config['runs']]
        if len(set(names)) != len(names):
            raise InvalidConfigurationError(f"Run names must be unique, got {names}")
        for run in self.config['runs']:
            threshold = run.get('correlation_threshold')
            if threshold is not None and not (0.0 < threshold < 1.0):
                raise InvalidConfigurationError(
                    f"Run '{run['name']}': correlation_threshold must be in (0, 1), got {threshold}"
                )

        # --- Final Model ---
        final = self.config.get('final_model', {})
        if final.get('enabled', True):
            if final.get('top_k', 20) < 1:
                raise InvalidConfigurationError("final_model.top_k must be >= 1.")
            if final.get('cv_folds', 10) < 2:
                raise InvalidConfigurationError("final_model.cv_folds must be >= 2.")

        # --- Execution ---
        n_jobs = self.config.get('execution', {}).get('n_jobs', 1)
        if n_jobs == 0 or n_jobs < -1:
            raise InvalidConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")
        cpu_count = psutil.cpu_count(logical=True) or 1
        if n_jobs > cpu_count:
            self.logger.warning(f"execution.n_jobs ({n_jobs}) exceeds the {cpu_count} available CPUs.")

    def _validate_resources(self) -> None:
        """Final grid size and memory checks."""
        resources = self.config.get('resources', {})

        final = self.config.get('final_model', {})
        if final.get('enabled', True):
            grid = ParameterGrid({
                'mtry': list(range(self.MAX_MTRY_CANDIDATES)),
                'split_rule': final.get('splitrule', ['variance', 'extratrees']),
                'min_node_size': final.get('min_node_size', [1, 3, 5, 10]),
            })
            max_configs = resources.get('max_grid_configs', self.DEFAULT_MAX_GRID_CONFIGS)
            if len(grid) > max_configs:
                raise InvalidConfigurationError(
                    f"Final model grid ({len(grid)} configurations) exceeds the safety limit ({max_configs}). "
                    "Reduce the grid or increase 'resources.max_grid_configs'."
                )
            self.logger.info(f"Final model grid validated: up to {len(grid)} combinations (Limit: {max_configs})")

        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        safe_ram_limit = int(system_ram_mb * 0.8)
        config_max_ram = resources.get('max_memory_mb', safe_ram_limit)
        if config_max_ram > system_ram_mb:
            self.logger.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

        self.config.setdefault('resources', {})
        self.config['resources']['max_memory_mb'] = config_max_ram

    def _propagate_seeds(self) -> None:
        """
        Propagate the master seed with non-overlapping offsets:
        partitions, internal CV and forests.
        """
        master_seed = self.config.get('resampling', {}).get('seed', 123)

        self.config['_internal_seeds'] = {
            'partition': master_seed,
            'cv': master_seed + 1000,
            'model': master_seed + 2000,
        }
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
