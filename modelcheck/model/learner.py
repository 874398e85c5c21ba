# modelcheck/model/learner.py
from __future__ import annotations

"""
Learners (FINAL)

A Learner = (sklearn estimator family, task semantics, cancellation strategy).

IMPORTANT:
- Learners are resolved by NAME through the registry below.
- Each learner declares its predefined hyper-parameter templates;
  the sweep tester relies on their exact COUNT.

Cancellation strategies:
- "chunked": forests grow with warm_start, the cancel event is polled
             between chunks of trees
- "monitor": gradient boosting polls the cancel event through the
             sklearn `monitor` callback after every stage
- "none":    single fit call, cancel event only checked before it

A cancelled training ALWAYS returns a valid (partially trained) model.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc
from sklearn.ensemble import (
    ExtraTreesClassifier,
    ExtraTreesRegressor,
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from modelcheck import logs
from modelcheck.config.training_config import DeploymentConfig, Task, TrainingConfig
from modelcheck.dataset.dataspec import DataSpec, OOV_INDEX, Semantic
from modelcheck.dataset.sharding import load_sharded_dataset
from modelcheck.model.model import SklearnModel, iter_trees
from modelcheck.utils.errors import ConfigurationError, TrainingError

# trees added per warm_start round for chunked learners
FOREST_CHUNK_SIZE = 5

ALL_TASKS: FrozenSet[Task] = frozenset(Task)


@dataclass(frozen=True)
class HyperParameterTemplate:
    name: str
    version: int
    parameters: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    @property
    def key(self) -> str:
        return f"{self.name}@v{self.version}"


@dataclass(frozen=True)
class LearnerSpec:
    name: str
    tasks: FrozenSet[Task]
    factory: Callable[[Task, Dict[str, Any], DeploymentConfig, int], Any]
    cancellation: str = "none"
    templates: Tuple[HyperParameterTemplate, ...] = ()


# ======================================================================
# Estimator factories
# ======================================================================
def _decision_tree(task: Task, hp: Dict[str, Any], dep: DeploymentConfig, seed: int):
    cls = DecisionTreeClassifier if task == Task.CLASSIFICATION else DecisionTreeRegressor
    return cls(random_state=seed, **hp)


def _random_forest(task: Task, hp: Dict[str, Any], dep: DeploymentConfig, seed: int):
    cls = RandomForestClassifier if task == Task.CLASSIFICATION else RandomForestRegressor
    return cls(random_state=seed, n_jobs=dep.num_threads, **hp)


def _extra_trees(task: Task, hp: Dict[str, Any], dep: DeploymentConfig, seed: int):
    cls = ExtraTreesClassifier if task == Task.CLASSIFICATION else ExtraTreesRegressor
    return cls(random_state=seed, n_jobs=dep.num_threads, **hp)


def _gradient_boosted_trees(task: Task, hp: Dict[str, Any], dep: DeploymentConfig, seed: int):
    cls = GradientBoostingClassifier if task == Task.CLASSIFICATION else GradientBoostingRegressor
    return cls(random_state=seed, **hp)


def _linear(task: Task, hp: Dict[str, Any], dep: DeploymentConfig, seed: int):
    hp = dict(hp)
    # "regularization" is the task-independent knob of the linear templates
    reg = hp.pop("regularization", None)
    if task == Task.CLASSIFICATION:
        if reg is not None:
            hp["C"] = 1.0 / reg
        hp.setdefault("max_iter", 1000)
        return LogisticRegression(random_state=seed, **hp)
    if reg is not None:
        hp["alpha"] = reg
    return Ridge(**hp)


_LEARNER_REGISTRY: Dict[str, LearnerSpec] = {
    "decision_tree": LearnerSpec(
        name="decision_tree",
        tasks=ALL_TASKS,
        factory=_decision_tree,
        templates=(
            HyperParameterTemplate("shallow", 1, {"max_depth": 6, "min_samples_leaf": 5}),
            HyperParameterTemplate("deep", 1, {"max_depth": None, "min_samples_leaf": 1}),
        ),
    ),
    "random_forest": LearnerSpec(
        name="random_forest",
        tasks=ALL_TASKS,
        factory=_random_forest,
        cancellation="chunked",
        templates=(
            HyperParameterTemplate(
                "benchmark_rank1", 1,
                {"n_estimators": 100, "max_features": "sqrt", "min_samples_leaf": 1},
            ),
            HyperParameterTemplate("small", 1, {"n_estimators": 30, "max_depth": 8}),
        ),
    ),
    "extra_trees": LearnerSpec(
        name="extra_trees",
        tasks=ALL_TASKS,
        factory=_extra_trees,
        cancellation="chunked",
        templates=(
            HyperParameterTemplate("benchmark_rank1", 1, {"n_estimators": 100, "min_samples_leaf": 2}),
        ),
    ),
    "gradient_boosted_trees": LearnerSpec(
        name="gradient_boosted_trees",
        tasks=ALL_TASKS,
        factory=_gradient_boosted_trees,
        cancellation="monitor",
        templates=(
            HyperParameterTemplate(
                "benchmark_rank1", 1,
                {"n_estimators": 100, "learning_rate": 0.1, "max_depth": 6, "subsample": 0.8},
            ),
            HyperParameterTemplate(
                "better_default", 1,
                {"n_estimators": 100, "learning_rate": 0.1, "max_depth": 3},
            ),
        ),
    ),
    "linear": LearnerSpec(
        name="linear",
        tasks=ALL_TASKS,
        factory=_linear,
        templates=(
            HyperParameterTemplate("l2_strong", 1, {"regularization": 10.0}),
            HyperParameterTemplate("l2_weak", 1, {"regularization": 0.1}),
        ),
    ),
}


def available_learners() -> List[str]:
    return sorted(_LEARNER_REGISTRY)


def get_learner_spec(name: str) -> LearnerSpec:
    if name not in _LEARNER_REGISTRY:
        raise ConfigurationError(
            f"No learner '{name}'. Available: {', '.join(available_learners())}"
        )
    return _LEARNER_REGISTRY[name]


def predefined_hyperparameters(name: str) -> List[HyperParameterTemplate]:
    return list(get_learner_spec(name).templates)


# ======================================================================
# Learner
# ======================================================================
class Learner:
    """
    Learner（FINAL）

    Contract:
        train(dataset | typed path, valid_dataset=None, dataspec=None, cancel_event=None)
            -> SklearnModel

    - dataset may be an in-memory pyarrow Table or a typed (sharded) path
    - dataspec defaults to one built from the training dataset
    """

    def __init__(self, cfg: TrainingConfig, deployment: Optional[DeploymentConfig] = None):
        self.cfg = cfg
        self.deployment = deployment or DeploymentConfig()
        self.spec = get_learner_spec(cfg.learner)

        if cfg.task not in self.spec.tasks:
            raise ConfigurationError(f"learner '{cfg.learner}' does not support task {cfg.task.value}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def train(
        self,
        dataset: pa.Table | str,
        *,
        valid_dataset: pa.Table | str | None = None,
        dataspec: Optional[DataSpec] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SklearnModel:
        table = self._resolve(dataset)
        if table.num_rows == 0:
            raise TrainingError("[Learner] empty training dataset")

        dataspec = dataspec or DataSpec.build(table, self.cfg)
        X_raw = dataspec.encode(table)
        na_replacement = self._na_replacement(dataspec, X_raw)

        features = list(dataspec.features)
        fill = np.array([na_replacement[f] for f in features], dtype=np.float64)
        X = pd.DataFrame(np.where(np.isnan(X_raw), fill, X_raw), columns=features)
        y = dataspec.encode_label(table)
        sample_weight = self._weights(table)

        estimator = self.spec.factory(
            self.cfg.task, dict(self.cfg.hyperparameters), self.deployment, self.cfg.seed
        )

        logs.info(
            f"[Learner] {self.spec.name} task={self.cfg.task.value} rows={len(X)} "
            f"features={len(features)} seed={self.cfg.seed}"
        )

        try:
            interrupted = self._fit(estimator, X, y, sample_weight, cancel_event)
        except (ValueError, TypeError) as e:
            raise TrainingError(f"[Learner] {self.spec.name} training failed: {e}") from e

        metadata: Dict[str, Any] = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "build_id": uuid.uuid4().hex,
            "hyperparameters": dict(self.cfg.hyperparameters),
            "seed": self.cfg.seed,
            "num_training_examples": len(X),
            "interrupted": interrupted,
        }
        trees = iter_trees(estimator)
        if trees:
            metadata["num_trees"] = len(trees)

        model = SklearnModel(
            estimator=estimator,
            dataspec=dataspec,
            na_replacement=na_replacement,
            learner=self.spec.name,
            metadata=metadata,
        )

        if valid_dataset is not None:
            valid = self._resolve(valid_dataset)
            if valid.num_rows:
                frame = model.as_frame(dataspec.encode(valid))
                score = float(estimator.score(frame, dataspec.encode_label(valid)))
                model.metadata["validation_score"] = score
                logs.info(f"[Learner] validation rows={valid.num_rows} score={score:.6f}")

        return model

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    @staticmethod
    def _resolve(dataset: pa.Table | str) -> pa.Table:
        if isinstance(dataset, pa.Table):
            return dataset
        logs.info(f"[Learner] reading dataset from path {dataset}")
        return load_sharded_dataset(dataset)

    def _weights(self, table: pa.Table) -> Optional[np.ndarray]:
        if not self.cfg.weight_column:
            return None
        w = pc.cast(table.column(self.cfg.weight_column), pa.float64()).to_numpy()
        return np.nan_to_num(w, nan=0.0)

    @staticmethod
    def _na_replacement(dataspec: DataSpec, X: np.ndarray) -> Dict[str, float]:
        """
        numerical / boolean -> training mean
        categorical -> most frequent index
        all-missing column -> 0
        """
        out: Dict[str, float] = {}
        for j, name in enumerate(dataspec.features):
            col = X[:, j]
            present = col[~np.isnan(col)]
            if len(present) == 0:
                out[name] = float(OOV_INDEX)
            elif dataspec.columns[name].semantic == Semantic.CATEGORICAL:
                values, counts = np.unique(present, return_counts=True)
                out[name] = float(values[np.argmax(counts)])
            else:
                out[name] = float(present.mean())
        return out

    def _fit(self, estimator, X, y, sample_weight, cancel_event) -> bool:
        """
        Returns True if training was interrupted.
        """

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        if self.spec.cancellation == "monitor":
            def monitor(i, est, local_vars) -> bool:
                return cancelled()

            estimator.fit(X, y, sample_weight=sample_weight, monitor=monitor)
            interrupted = estimator.n_estimators_ < estimator.n_estimators
            if interrupted:
                logs.warning(
                    f"[Learner] interrupted after {estimator.n_estimators_}/{estimator.n_estimators} stages"
                )
            return interrupted

        if self.spec.cancellation == "chunked":
            total = estimator.n_estimators
            estimator.set_params(warm_start=True)
            grown = 0
            while grown < total:
                grown = min(grown + FOREST_CHUNK_SIZE, total)
                estimator.set_params(n_estimators=grown)
                estimator.fit(X, y, sample_weight=sample_weight)
                if cancelled() and grown < total:
                    logs.warning(f"[Learner] interrupted after {grown}/{total} trees")
                    return True
            return False

        if cancelled():
            logs.warning(f"[Learner] cancel requested before {self.spec.name} fit, fitting anyway")
        estimator.fit(X, y, sample_weight=sample_weight)
        return False


def train(
    cfg: TrainingConfig,
    dataset: pa.Table | str,
    deployment: Optional[DeploymentConfig] = None,
    **kwargs,
) -> SklearnModel:
    """
    Trainer interface: train(config, dataset | path, deployment) -> Model
    """
    return Learner(cfg, deployment).train(dataset, **kwargs)
