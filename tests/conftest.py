# tests/conftest.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import numpy as np
import pyarrow as pa
import pytest
from loguru import logger

from modelcheck.config.harness_config import HarnessConfig
from modelcheck.config.training_config import SyntheticDatasetOptions, Task, TrainingConfig
from modelcheck.dataset.synthetic import generate_synthetic_dataset
from modelcheck.harness.session import TestSession


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)  # or sys.stderr
    yield


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    """
    Process-scoped config, built once (defaults, no env / yaml).
    """
    return HarnessConfig()


@pytest.fixture
def make_harness_config(tmp_path: Path) -> Callable[..., HarnessConfig]:
    """
    HarnessConfig whose every directory lives under tmp_path.

    Usage:
        cfg = make_harness_config(check_gold=True)
    """

    def _make(**overrides: Any) -> HarnessConfig:
        values = dict(
            golden_dir=str(tmp_path / "golden"),
            tmp_root=str(tmp_path / "tmp"),
            dataset_root=str(tmp_path / "dataset"),
        )
        values.update(overrides)
        return HarnessConfig(**values)

    return _make


# ============================================================
# Tables
# ============================================================
@pytest.fixture
def tiny_binary_table() -> pa.Table:
    """
    10 rows, 2 numerical features, binary label.
    """
    x1 = [0.1, 0.9, 0.2, 0.8, 0.3, 0.7, 0.4, 0.6, 0.15, 0.85]
    x2 = [0.2, 0.7, 0.1, 0.9, 0.4, 0.6, 0.3, 0.8, 0.05, 0.95]
    label = [int(a + b > 1.0) for a, b in zip(x1, x2)]
    return pa.table({"x1": x1, "x2": x2, "LABEL": label})


@pytest.fixture
def classification_table() -> pa.Table:
    """
    3 classes, numerical + categorical columns, 10% missing cells.
    """
    options = SyntheticDatasetOptions(
        num_examples=240, num_numerical=4, num_categorical=2, num_classes=3, missing_ratio=0.1, seed=7
    )
    return generate_synthetic_dataset(options, task=Task.CLASSIFICATION)


@pytest.fixture
def binary_table() -> pa.Table:
    options = SyntheticDatasetOptions(num_examples=200, num_numerical=4, num_categorical=1, seed=11)
    return generate_synthetic_dataset(options, task=Task.CLASSIFICATION)


@pytest.fixture
def regression_table() -> pa.Table:
    options = SyntheticDatasetOptions(
        num_examples=200, num_numerical=4, num_categorical=1, missing_ratio=0.05, noise=1.0, seed=3
    )
    return generate_synthetic_dataset(options, task=Task.REGRESSION)


@pytest.fixture
def ranking_table() -> pa.Table:
    options = SyntheticDatasetOptions(num_examples=200, num_numerical=4, num_categorical=1, seed=5)
    return generate_synthetic_dataset(options, task=Task.RANKING)


@pytest.fixture
def id_table() -> pa.Table:
    """
    100 rows, unique `id` column (sharding / partition bookkeeping).
    """
    rng = np.random.default_rng(0)
    return pa.table({
        "id": np.arange(100, dtype=np.int64),
        "x": rng.normal(size=100),
        "c": pa.array([f"v{i % 4}" for i in range(100)]),
        "LABEL": pa.array([f"c{i % 2}" for i in range(100)]),
    })


# ============================================================
# Sessions
# ============================================================
@pytest.fixture
def make_session(make_harness_config):
    """
    Factory fixture for TestSession (synthetic dataset by default).

    Usage:
        with make_session(learner="random_forest", hyperparameters={...}) as s:
            ...
    """

    def _make(
        *,
        learner: str = "decision_tree",
        task: Task = Task.CLASSIFICATION,
        hyperparameters: dict | None = None,
        harness: HarnessConfig | None = None,
        synthetic: SyntheticDatasetOptions | None = None,
        **fields: Any,
    ) -> TestSession:
        training = TrainingConfig(
            learner=learner,
            task=task,
            hyperparameters=hyperparameters or {},
            ranking_group="GROUP" if task == Task.RANKING else None,
        )
        if "synthetic_dataset" not in fields and "dataset_filename" not in fields:
            fields["synthetic_dataset"] = synthetic or SyntheticDatasetOptions(
                num_examples=300, num_numerical=4, num_categorical=1, seed=21
            )
        return TestSession(harness=harness or make_harness_config(), training=training, **fields)

    return _make
