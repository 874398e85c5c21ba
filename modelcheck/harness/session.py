# modelcheck/harness/session.py
from __future__ import annotations

"""
TestSession（ONE test run）

- Mutable configuration aggregate + runtime state of one test case
- Never shared between runs
- Context manager: its temp directory is removed on EVERY exit path

SessionConfig is the YAML form of the configuration part (CLI `run`).
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import pyarrow as pa
import yaml
from pydantic import BaseModel, Field

from modelcheck import logs
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.config.training_config import (
    DeploymentConfig,
    EvaluationOptions,
    SyntheticDatasetOptions,
    Task,
    TrainingConfig,
)
from modelcheck.dataset.dataspec import DataSpec
from modelcheck.dataset.partitioner import DEFAULT_MAX_DUPLICATION
from modelcheck.evaluation.evaluator import EvaluationResult
from modelcheck.model.model import Model
from modelcheck.utils.errors import ConfigurationError
from modelcheck.utils.filesystem import FileSystem


class SessionConfig(BaseModel):
    """
    Configuration part of a TestSession (see TestSession for the semantics).
    """

    training: TrainingConfig = Field(default_factory=TrainingConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)

    # dataset
    dataset_root_directory: Optional[str] = None
    dataset_filename: Optional[str] = None
    dataset_test_filename: Optional[str] = None
    synthetic_dataset: Optional[SyntheticDatasetOptions] = None
    guide_filename: Optional[str] = None

    # partition
    split_train_ratio: float = Field(default=0.5, gt=0.0, lt=1.0)
    inject_random_noise: bool = False
    pass_validation_dataset: bool = False
    emulate_weight_with_duplication: bool = False
    max_duplication: int = Field(default=DEFAULT_MAX_DUPLICATION, ge=1)
    seed: int = 1234

    # training
    change_random_seed: bool = False
    pass_training_dataset_as_path: bool = False
    num_shards: int = Field(default=3, ge=1)
    dataset_sampling: float = Field(default=1.0, gt=0.0, le=1.0)
    preferred_format: str = "csv"
    interrupt_training_after: Optional[float] = Field(default=None, gt=0.0)
    show_full_model_structure: bool = False

    # checks
    check_model: bool = True
    check_serialization: bool = True
    check_golden_model: bool = True
    golden_model_name: Optional[str] = None

    # evaluation
    evaluation_options: EvaluationOptions = Field(default_factory=EvaluationOptions)
    evaluation_override_task: Optional[Task] = None

    @classmethod
    def load(cls, path: str | Path) -> "SessionConfig":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"[Session] session file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        return cls(**raw)


@dataclass
class TestSession:
    """
    Flags:
    - check_model:             False => no engine / serialization check at all
    - check_serialization:     bytes + directory round-trip
    - check_golden_model:      compare with <golden_dir>/<golden_model_name>
                               (also requires HarnessConfig.check_gold)
    - inject_random_noise:     permuted split (seed)
    - change_random_seed:      learner seed drawn at random
    - pass_training_dataset_as_path: shard datasets, trainer gets typed paths
    - dataset_sampling:        fraction of training rows kept when sharding;
                               only applies with pass_training_dataset_as_path
    - guide_filename:          YAML {column: semantic}, merged under training.column_guide
    """

    # pytest: not a test class
    __test__ = False

    harness: HarnessConfig

    training: TrainingConfig = field(default_factory=TrainingConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)

    dataset_root_directory: Optional[str] = None
    dataset_filename: Optional[str] = None
    dataset_test_filename: Optional[str] = None
    synthetic_dataset: Optional[SyntheticDatasetOptions] = None
    guide_filename: Optional[str] = None

    split_train_ratio: float = 0.5
    inject_random_noise: bool = False
    pass_validation_dataset: bool = False
    emulate_weight_with_duplication: bool = False
    max_duplication: int = DEFAULT_MAX_DUPLICATION
    seed: int = 1234

    change_random_seed: bool = False
    pass_training_dataset_as_path: bool = False
    num_shards: int = 3
    dataset_sampling: float = 1.0
    preferred_format: str = "csv"
    interrupt_training_after: Optional[float] = None
    show_full_model_structure: bool = False

    check_model: bool = True
    check_serialization: bool = True
    check_golden_model: bool = True
    golden_model_name: Optional[str] = None

    evaluation_options: EvaluationOptions = field(default_factory=EvaluationOptions)
    evaluation_override_task: Optional[Task] = None

    # ---------------- runtime state ----------------
    dataspec: Optional[DataSpec] = None
    train_dataset: Optional[pa.Table] = None
    valid_dataset: Optional[pa.Table] = None
    test_dataset: Optional[pa.Table] = None
    model: Optional[Model] = None
    training_duration: Optional[float] = None
    evaluation: Optional[EvaluationResult] = None
    tmp_dir: Optional[Path] = None

    @classmethod
    def from_config(cls, cfg: SessionConfig, harness: HarnessConfig) -> "TestSession":
        known = {f.name for f in fields(cls)}
        values = {name: getattr(cfg, name) for name in type(cfg).model_fields if name in known}
        return cls(harness=harness, **values)

    # ------------------------------------------------------------------
    # Temp dir lifecycle
    # ------------------------------------------------------------------
    def ensure_tmp_dir(self) -> Path:
        if self.tmp_dir is None:
            self.tmp_dir = FileSystem.make_temp_dir(self.harness.tmp_root, prefix="modelcheck_session_")
            logs.debug(f"[Session] tmp dir {self.tmp_dir}")
        return self.tmp_dir

    def close(self) -> None:
        if self.tmp_dir is not None:
            FileSystem.remove(self.tmp_dir)
            logs.debug(f"[Session] removed tmp dir {self.tmp_dir}")
            self.tmp_dir = None

    def __enter__(self) -> "TestSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
