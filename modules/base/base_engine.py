import abc
import logging
from pathlib import Path
from typing import Dict, Any


class BaseEngine(abc.ABC):
    """
    Abstract base class for the pipeline engines.

    Provides:
    - Configuration and logger attachment.
    - One output directory per engine under `outputs.base_results_dir`.
      For per-run engines the caller points `base_results_dir` at the run directory.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger):
        self.config = config
        self.logger = logger
        self.base_dir = Path(self.config.get('outputs', {}).get('base_results_dir', 'results'))
        self.engine_dir_name = self._get_engine_directory_name()
        self.output_dir = self.base_dir / self.engine_dir_name

        self._setup_directories()

    @abc.abstractmethod
    def _get_engine_directory_name(self) -> str:
        """
        Directory name for the engine's output, e.g. '02_Checkpoints'.
        """
        raise NotImplementedError("Subclasses must implement _get_engine_directory_name.")

    def _setup_directories(self):
        if self.config.get('outputs', {}).get('skip_dir_creation', False):
            return

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Output directory for {self.__class__.__name__}: {self.output_dir}")

    @abc.abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """
        Main execution method for the engine.
        """
        pass
