# modelcheck/model/engines.py
from __future__ import annotations

"""
Alternate ("fast") inference engines (FINAL)

An Engine is a separately implemented prediction path for a trained
SklearnModel. It is expected to match Model.predict() within tolerance.

Every engine declares:
- layout:               STRUCTURED_BATCH (ExampleSet) | FLAT_ARRAY (1-D ndarray)
- feature_names:        feature order of its input (may differ from the model)
- na_replacement_values: substituted for missing values, aligned with feature_names
- example_format:       flat layout only, EXAMPLE_MAJOR | FEATURE_MAJOR
- output_kind:          SCORE | CLASS_INDEX

Output contract of predict(batch, num_examples):
- flat vector of num_examples * dim values (example-major)
- regression / ranking: dim = 1
- classification:       dim = num_classes, or 1 for binary (positive-class probability)
- CLASS_INDEX:          dim = 1, predicted class index
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.special import expit, softmax
from sklearn.ensemble import GradientBoostingClassifier, GradientBoostingRegressor
from sklearn.linear_model import LogisticRegression, Ridge

from modelcheck.config.training_config import Task
from modelcheck.model.model import Model, SklearnModel, iter_trees
from modelcheck.utils.errors import ConfigurationError


class InputLayout(str, Enum):
    STRUCTURED_BATCH = "structured_batch"
    FLAT_ARRAY = "flat_array"


class ExampleFormat(str, Enum):
    EXAMPLE_MAJOR = "example_major"
    FEATURE_MAJOR = "feature_major"


class OutputKind(str, Enum):
    SCORE = "score"
    CLASS_INDEX = "class_index"


@dataclass
class ExampleSet:
    """
    Structured batch of examples (STRUCTURED_BATCH layout).

    values:  (n, f) in the engine's feature order and value dtype
    missing: (n, f) bool, True where the source value is missing
    """

    feature_names: Sequence[str]
    values: np.ndarray
    missing: np.ndarray

    @property
    def num_examples(self) -> int:
        return self.values.shape[0]

    def copy(self, begin: int, end: int) -> "ExampleSet":
        return ExampleSet(
            feature_names=self.feature_names,
            values=self.values[begin:end].copy(),
            missing=self.missing[begin:end].copy(),
        )


class Engine(ABC):
    """
    Engine contract (see module docstring).
    """

    name: str = "engine"
    layout: InputLayout = InputLayout.FLAT_ARRAY
    value_dtype = np.float32

    def __init__(
        self,
        model: SklearnModel,
        feature_names: Sequence[str],
        *,
        example_format: ExampleFormat = ExampleFormat.EXAMPLE_MAJOR,
        output_kind: OutputKind = OutputKind.SCORE,
    ):
        self.model = model
        self._feature_names = list(feature_names)
        self._na_replacement = model.na_replacement_values(self._feature_names).astype(self.value_dtype)
        self.example_format = example_format
        self.output_kind = output_kind

    @property
    def feature_names(self) -> List[str]:
        return list(self._feature_names)

    @property
    def na_replacement_values(self) -> np.ndarray:
        return self._na_replacement.copy()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, layout={self.layout.value})"

    # ------------------------------------------------------------------
    # Input helpers
    # ------------------------------------------------------------------
    def to_matrix(self, batch: np.ndarray, num_examples: int) -> np.ndarray:
        """
        Flat array -> (n, f) matrix, honoring example_format.
        """
        f = len(self._feature_names)
        if batch.size != num_examples * f:
            raise ConfigurationError(
                f"[{self.name}] flat batch has {batch.size} values, expected {num_examples}x{f}"
            )
        if self.example_format == ExampleFormat.EXAMPLE_MAJOR:
            return batch.reshape(num_examples, f)
        return batch.reshape(f, num_examples).T

    def _finalize(self, scores: np.ndarray) -> np.ndarray:
        """
        (n, k) full class scores -> output contract.
        """
        if self.model.task != Task.CLASSIFICATION:
            return scores.reshape(-1)
        if self.output_kind == OutputKind.CLASS_INDEX:
            return np.argmax(scores, axis=1).astype(np.float64)
        if scores.shape[1] == 2:
            return scores[:, 1].copy()
        return scores.reshape(-1)

    @abstractmethod
    def predict(self, batch, num_examples: int) -> np.ndarray:
        raise NotImplementedError


# ======================================================================
# Generic structured-batch engine
# ======================================================================
class GenericBatchEngine(Engine):
    """
    Estimator called on a structured ExampleSet.

    Binary classification keeps the full distribution (dim = 2) in SCORE mode;
    CLASS_INDEX mode uses estimator.predict().
    """

    layout = InputLayout.STRUCTURED_BATCH
    value_dtype = np.float64

    def __init__(self, model: SklearnModel, *, output_kind: OutputKind = OutputKind.SCORE):
        super().__init__(model, model.features, output_kind=output_kind)
        self.name = "generic" if output_kind == OutputKind.SCORE else "generic_class"

    def predict(self, batch: ExampleSet, num_examples: int) -> np.ndarray:
        values = np.where(batch.missing, self._na_replacement, batch.values)
        frame = pd.DataFrame(values[:num_examples], columns=self._feature_names)
        est = self.model.estimator

        if self.model.task != Task.CLASSIFICATION:
            return np.asarray(est.predict(frame), dtype=np.float64).reshape(-1)

        if self.output_kind == OutputKind.CLASS_INDEX:
            return np.asarray(est.predict(frame), dtype=np.float64).reshape(-1)

        proba = self.model.expand_class_columns(np.asarray(est.predict_proba(frame), dtype=np.float64))
        return proba.reshape(-1)


# ======================================================================
# Compiled tree engine (flat array)
# ======================================================================
@dataclass(frozen=True)
class _CompiledTree:
    feature: np.ndarray
    threshold: np.ndarray
    left: np.ndarray
    right: np.ndarray
    # (node_count, k)
    value: np.ndarray

    @classmethod
    def from_sklearn(cls, tree, remap: Dict[int, int], normalize: bool) -> "_CompiledTree":
        t = tree.tree_
        feature = np.array([remap.get(int(f), -1) for f in t.feature], dtype=np.intp)
        value = np.asarray(t.value[:, 0, :], dtype=np.float64)
        if normalize:
            norm = value.sum(axis=1, keepdims=True)
            norm[norm == 0.0] = 1.0
            value = value / norm
        return cls(
            feature=feature,
            threshold=np.asarray(t.threshold, dtype=np.float64),
            left=np.asarray(t.children_left, dtype=np.intp),
            right=np.asarray(t.children_right, dtype=np.intp),
            value=value,
        )

    def leaves(self, X: np.ndarray) -> np.ndarray:
        """
        Vectorized traversal; goes left when x <= threshold.
        """
        n = X.shape[0]
        rows = np.arange(n)
        node = np.zeros(n, dtype=np.intp)
        while True:
            left = self.left[node]
            active = left != -1
            if not active.any():
                return node
            f = np.where(active, self.feature[node], 0)
            x = X[rows, f] if X.shape[1] else np.zeros(n)
            go_left = x.astype(np.float64) <= self.threshold[node]
            node = np.where(active, np.where(go_left, left, self.right[node]), node)

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.value[self.leaves(X)]


class CompiledTreeEngine(Engine):
    """
    Fitted sklearn trees compiled to flat numpy arrays.

    - input: only the features used by at least one split, in model order
    - float32 inputs (same precision as sklearn tree inference)
    - averaging ensembles (DT / RF / ET) or additive boosting (GBT)
    """

    layout = InputLayout.FLAT_ARRAY
    value_dtype = np.float32

    def __init__(self, model: SklearnModel, *, example_format: ExampleFormat = ExampleFormat.EXAMPLE_MAJOR):
        est = model.estimator
        trees = iter_trees(est)
        if not trees:
            raise ConfigurationError(f"[CompiledTreeEngine] {type(est).__name__} has no tree")

        used = sorted({int(f) for t in trees for f in t.tree_.feature if f >= 0})
        remap = {orig: new for new, orig in enumerate(used)}
        super().__init__(model, [model.features[i] for i in used], example_format=example_format)
        self.name = f"compiled_trees_{example_format.value}"

        self._boosting = isinstance(est, (GradientBoostingClassifier, GradientBoostingRegressor))
        normalize = model.task == Task.CLASSIFICATION and not self._boosting

        if self._boosting:
            # estimators_: (n_stages, K)
            stages = np.asarray(est.estimators_, dtype=object)
            self._stages = [
                [_CompiledTree.from_sklearn(t, remap, False) for t in stage]
                for stage in stages
            ]
            self._learning_rate = float(est.learning_rate)
            self._bias = self._probe_bias(model)
        else:
            self._trees = [_CompiledTree.from_sklearn(t, remap, normalize) for t in trees]

    @staticmethod
    def is_compatible(model: Model) -> bool:
        return isinstance(model, SklearnModel) and bool(iter_trees(model.estimator))

    # ------------------------------------------------------------------
    # Boosting
    # ------------------------------------------------------------------
    def _raw_boosting(self, X: np.ndarray) -> np.ndarray:
        k = len(self._stages[0])
        raw = np.zeros((X.shape[0], k), dtype=np.float64)
        for stage in self._stages:
            for j, tree in enumerate(stage):
                raw[:, j] += self._learning_rate * tree.predict(X)[:, 0]
        return raw

    def _probe_bias(self, model: SklearnModel) -> np.ndarray:
        """
        Initial raw score of the ensemble (constant w.r.t. x), measured once
        on an all-zero example.
        """
        est = model.estimator
        probe = pd.DataFrame(np.zeros((1, len(model.features))), columns=model.features)
        if isinstance(est, GradientBoostingClassifier):
            reference = np.asarray(est.decision_function(probe), dtype=np.float64)
        else:
            reference = np.asarray(est.predict(probe), dtype=np.float64)

        k = len(self._stages[0])
        trees_only = self._raw_boosting(np.zeros((1, len(self._feature_names)), dtype=np.float32))
        return reference.reshape(1, k) - trees_only

    # ------------------------------------------------------------------
    # Predict
    # ------------------------------------------------------------------
    def predict(self, batch: np.ndarray, num_examples: int) -> np.ndarray:
        X = self.to_matrix(np.asarray(batch, dtype=np.float32), num_examples)

        if self._boosting:
            raw = self._raw_boosting(X) + self._bias
            if self.model.task != Task.CLASSIFICATION:
                return raw.reshape(-1)
            if raw.shape[1] == 1:
                p = expit(raw[:, 0])
                scores = np.column_stack([1.0 - p, p])
            else:
                scores = softmax(raw, axis=1)
            return self._finalize(self.model.expand_class_columns(scores))

        acc = np.zeros((num_examples, self._trees[0].value.shape[1]), dtype=np.float64)
        for tree in self._trees:
            acc += tree.predict(X)
        acc /= len(self._trees)

        if self.model.task == Task.CLASSIFICATION:
            acc = self.model.expand_class_columns(acc)
        return self._finalize(acc)


# ======================================================================
# Linear engine (flat array)
# ======================================================================
class LinearEngine(Engine):
    """
    Dot-product engine for Ridge and binary LogisticRegression.

    Input feature order is the REVERSE of the model order.
    """

    layout = InputLayout.FLAT_ARRAY
    value_dtype = np.float64

    def __init__(self, model: SklearnModel):
        super().__init__(model, list(reversed(model.features)))
        self.name = "linear"
        est = model.estimator
        coef = np.atleast_2d(np.asarray(est.coef_, dtype=np.float64))[0]
        self._coef = coef[::-1].copy()
        self._intercept = float(np.atleast_1d(est.intercept_)[0])

    @staticmethod
    def is_compatible(model: Model) -> bool:
        if not isinstance(model, SklearnModel):
            return False
        est = model.estimator
        if isinstance(est, Ridge):
            return np.ndim(est.coef_) == 1
        if isinstance(est, LogisticRegression):
            return len(est.classes_) == 2 and model.dataspec.num_classes == 2
        return False

    def predict(self, batch: np.ndarray, num_examples: int) -> np.ndarray:
        X = self.to_matrix(np.asarray(batch, dtype=np.float64), num_examples)
        raw = X @ self._coef + self._intercept
        if self.model.task != Task.CLASSIFICATION:
            return raw
        p = expit(raw)
        return self._finalize(np.column_stack([1.0 - p, p]))


# ======================================================================
# Registry
# ======================================================================
_ENGINE_FACTORIES: List[tuple[Callable[[Model], bool], Callable[[SklearnModel], Engine]]] = [
    (CompiledTreeEngine.is_compatible, lambda m: CompiledTreeEngine(m)),
    (
        CompiledTreeEngine.is_compatible,
        lambda m: CompiledTreeEngine(m, example_format=ExampleFormat.FEATURE_MAJOR),
    ),
    (LinearEngine.is_compatible, LinearEngine),
]


def list_compatible_engines(model: Model) -> List[Engine]:
    """
    Every alternate engine able to serve `model` (possibly none).
    """
    if not isinstance(model, SklearnModel):
        return []

    engines: List[Engine] = [GenericBatchEngine(model)]
    if model.task == Task.CLASSIFICATION:
        engines.append(GenericBatchEngine(model, output_kind=OutputKind.CLASS_INDEX))

    for is_compatible, build in _ENGINE_FACTORIES:
        if is_compatible(model):
            engines.append(build(model))
    return engines


def find_engine(model: Model, name: str) -> Optional[Engine]:
    for engine in list_compatible_engines(model):
        if engine.name == name:
            return engine
    return None
