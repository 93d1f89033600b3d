import contextlib
import json
import logging
import shutil
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List

from utils.file_io import write_json_atomic
from utils import constants


@contextlib.contextmanager
def file_lock(lock_file: Path, timeout: int = 60, poll_interval: float = 0.1):
    """
    Cross-process lock using a directory next to `lock_file` (mkdir is atomic).
    """
    lock_dir = lock_file.parent / (lock_file.name + ".lock")
    start_time = time.time()

    while True:
        try:
            lock_dir.mkdir(exist_ok=False)
            break
        except FileExistsError:
            if time.time() - start_time > timeout:
                logging.warning(f"Lock timeout expired for {lock_file}. Forcing release.")
                try:
                    shutil.rmtree(lock_dir)
                except OSError:
                    pass
            time.sleep(poll_interval)

    try:
        yield
    finally:
        try:
            shutil.rmtree(lock_dir)
        except OSError:
            pass


@dataclass
class ResampleCheckpoint:
    """
    Output of one completed outer resample.

    ranks: [{'var', 'rank'}]; *_performance: one record per schedule step with
    'subset_size', 'n_predictors', 'Type' and the metrics; n_predictors: the
    predictor count actually trained at each step.
    """
    index: int
    schedule: List[int]
    ranks: List[dict] = field(default_factory=list)
    train_performance: List[dict] = field(default_factory=list)
    test_performance: List[dict] = field(default_factory=list)
    null_performance: List[dict] = field(default_factory=list)
    n_predictors: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "ResampleCheckpoint":
        return cls(**payload)


class CheckpointStore:
    """
    Per-resample checkpoint files plus a manifest of completed indices.

    A resample counts as complete only when it is listed in the manifest and
    its checkpoint file exists. Checkpoints are never overwritten.
    """

    def __init__(self, directory: Path, logger: logging.Logger = None):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.manifest_path = self.directory / constants.CHECKPOINT_MANIFEST_FILE
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, index: int) -> Path:
        return self.directory / constants.CHECKPOINT_FILE_TEMPLATE.format(index=index)

    def _read_manifest(self) -> Dict[str, object]:
        if not self.manifest_path.exists():
            return {'completed': []}
        with open(self.manifest_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def completed_indices(self) -> List[int]:
        listed = self._read_manifest().get('completed', [])
        return sorted(int(i) for i in listed if self.path_for(int(i)).exists())

    def exists(self, index: int) -> bool:
        return index in self.completed_indices()

    def write(self, checkpoint: ResampleCheckpoint) -> Path:
        path = self.path_for(checkpoint.index)
        with file_lock(self.manifest_path):
            if path.exists():
                raise FileExistsError(f"Checkpoint for resample {checkpoint.index} already exists: {path}")
            write_json_atomic(checkpoint.to_dict(), path)

            manifest = self._read_manifest()
            completed = set(int(i) for i in manifest.get('completed', []))
            completed.add(int(checkpoint.index))
            manifest['completed'] = sorted(completed)
            write_json_atomic(manifest, self.manifest_path)

        self.logger.debug(f"Checkpoint written: {path.name}")
        return path

    def load(self, index: int) -> ResampleCheckpoint:
        path = self.path_for(index)
        if not path.exists():
            raise FileNotFoundError(f"No checkpoint for resample {index}: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            return ResampleCheckpoint.from_dict(json.load(f))

    def load_all(self) -> List[ResampleCheckpoint]:
        return [self.load(i) for i in self.completed_indices()]
