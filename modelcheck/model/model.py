# modelcheck/model/model.py
from __future__ import annotations

"""
Model (FINAL / FROZEN)

Model defines the REFERENCE ("slow") prediction path.

Responsibilities:
- Predict over a row range of a pyarrow Table
- Serialize to bytes / persist to a directory
- Expose structure (golden comparison) and variable importances

Invariant:
- predict() is a pure function of (model, rows): no state mutation
"""

import io
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
import pyarrow as pa
from sklearn.tree import export_text

from modelcheck import logs
from modelcheck.config.training_config import Task
from modelcheck.dataset.dataspec import DataSpec
from modelcheck.utils.errors import SerializationError
from modelcheck.utils.filesystem import FileSystem

MODEL_FILENAME = "model.joblib"
ARTIFACT_FILENAME = "artifact.json"


def iter_trees(estimator) -> List[Any]:
    """
    Fitted sklearn tree estimators of a (possibly ensemble) model, in
    prediction order. Empty for non-tree models.
    """
    if hasattr(estimator, "tree_"):
        return [estimator]
    estimators = getattr(estimator, "estimators_", None)
    if estimators is None:
        return []
    # GradientBoosting*: ndarray (n_stages, K)
    return list(np.asarray(estimators, dtype=object).ravel())


class Model(ABC):
    """
    Model contract consumed by the harness.
    """

    dataspec: DataSpec

    @property
    def task(self) -> Task:
        return self.dataspec.task

    @property
    def features(self) -> List[str]:
        return list(self.dataspec.features)

    @property
    def output_dim(self) -> int:
        """
        Columns returned by predict():
        classification -> number of classes, otherwise 1
        """
        return self.dataspec.num_classes if self.task == Task.CLASSIFICATION else 1

    @abstractmethod
    def predict(self, table: pa.Table, begin: int = 0, end: Optional[int] = None) -> np.ndarray:
        """
        Returns float64 array (end - begin, output_dim).
        """
        raise NotImplementedError

    @abstractmethod
    def serialize(self) -> bytes:
        raise NotImplementedError

    @classmethod
    @abstractmethod
    def deserialize(cls, data: bytes) -> "Model":
        raise NotImplementedError

    @abstractmethod
    def save(self, directory: str | Path) -> Path:
        raise NotImplementedError

    @abstractmethod
    def structure(self) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def variable_importances(self) -> List[Tuple[str, float]]:
        raise NotImplementedError

    @abstractmethod
    def describe(self, full: bool = False) -> str:
        raise NotImplementedError


class SklearnModel(Model):
    """
    SklearnModel（FINAL）

    Works for:
    - DecisionTree / RandomForest / ExtraTrees / GradientBoosting
    - LogisticRegression / Ridge

    Contract:
    - estimator was fitted on a DataFrame whose columns == dataspec.features
    - classification estimator classes_ are label indices of dataspec.label_classes
    - missing values replaced by na_replacement BEFORE the estimator sees them
    """

    def __init__(
        self,
        *,
        estimator,
        dataspec: DataSpec,
        na_replacement: Dict[str, float],
        learner: str,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.estimator = estimator
        self.dataspec = dataspec
        self.na_replacement = dict(na_replacement)
        self.learner = learner
        self.metadata: Dict[str, Any] = dict(metadata or {})

    # ------------------------------------------------------------------
    # Reference prediction path
    # ------------------------------------------------------------------
    def na_replacement_values(self, features: Optional[List[str]] = None) -> np.ndarray:
        features = self.features if features is None else features
        return np.array([self.na_replacement[f] for f in features], dtype=np.float64)

    def as_frame(self, X: np.ndarray) -> pd.DataFrame:
        """
        Encoded matrix (NaN = missing) -> estimator input frame.
        """
        filled = np.where(np.isnan(X), self.na_replacement_values(), X)
        return pd.DataFrame(filled, columns=self.features)

    def expand_class_columns(self, proba: np.ndarray) -> np.ndarray:
        """
        Estimator columns (classes seen during training) -> every label class.
        """
        k = self.dataspec.num_classes
        if proba.shape[1] == k:
            return proba
        out = np.zeros((proba.shape[0], k), dtype=np.float64)
        out[:, np.asarray(self.estimator.classes_, dtype=np.int64)] = proba
        return out

    def predict_encoded(self, X: np.ndarray) -> np.ndarray:
        if len(X) == 0:
            return np.empty((0, self.output_dim), dtype=np.float64)

        frame = self.as_frame(X)
        if self.task == Task.CLASSIFICATION:
            proba = self.estimator.predict_proba(frame)
            return self.expand_class_columns(np.asarray(proba, dtype=np.float64))

        return np.asarray(self.estimator.predict(frame), dtype=np.float64).reshape(-1, 1)

    def predict(self, table: pa.Table, begin: int = 0, end: Optional[int] = None) -> np.ndarray:
        X = self.dataspec.encode(table, self.features, begin, end)
        return self.predict_encoded(X)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def serialize(self) -> bytes:
        buffer = io.BytesIO()
        joblib.dump(self, buffer)
        return buffer.getvalue()

    @classmethod
    def deserialize(cls, data: bytes) -> "SklearnModel":
        try:
            model = joblib.load(io.BytesIO(data))
        except Exception as e:
            raise SerializationError(f"[Model] cannot deserialize model: {e}") from e

        if not isinstance(model, cls):
            raise SerializationError(
                f"[Model] deserialized object is {type(model).__name__}, expected {cls.__name__}"
            )
        return model

    def save(self, directory: str | Path) -> Path:
        """
        Directory form:
            <dir>/model.joblib
            <dir>/artifact.json   (metadata, human readable)
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        joblib.dump(self, directory / MODEL_FILENAME)

        artifact_meta = {
            "learner": self.learner,
            "estimator": type(self.estimator).__name__,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "dataspec": self.dataspec.to_dict(),
            "metadata": self.metadata,
        }
        FileSystem.safe_write(
            directory / ARTIFACT_FILENAME,
            json.dumps(artifact_meta, indent=2, default=str).encode("utf-8"),
        )

        logs.debug(f"[Model] saved {self.learner} -> {directory}")
        return directory

    @classmethod
    def load(cls, directory: str | Path) -> "SklearnModel":
        directory = Path(directory)
        model_path = directory / MODEL_FILENAME
        if not (directory / ARTIFACT_FILENAME).exists() or not model_path.exists():
            raise SerializationError(
                f"[Model] {MODEL_FILENAME}/{ARTIFACT_FILENAME} not found in {directory}",
                path="round-trip:directory",
            )

        try:
            model = joblib.load(model_path)
        except Exception as e:
            raise SerializationError(
                f"[Model] cannot load {model_path}: {e}", path="round-trip:directory"
            ) from e

        if not isinstance(model, cls):
            raise SerializationError(
                f"[Model] {model_path} holds {type(model).__name__}", path="round-trip:directory"
            )
        return model

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def structure(self) -> Dict[str, Any]:
        est = self.estimator
        out: Dict[str, Any] = {
            "estimator": type(est).__name__,
            "learner": self.learner,
            "task": self.task.value,
            "features": self.features,
            "label_classes": list(self.dataspec.label_classes),
            "na_replacement": dict(self.na_replacement),
            "metadata": dict(self.metadata),
        }

        trees = iter_trees(est)
        if trees:
            out["trees"] = [
                {
                    "feature": t.tree_.feature.tolist(),
                    "threshold": t.tree_.threshold.tolist(),
                    "children_left": t.tree_.children_left.tolist(),
                    "children_right": t.tree_.children_right.tolist(),
                    "value": t.tree_.value.tolist(),
                }
                for t in trees
            ]
        if hasattr(est, "coef_"):
            out["linear"] = {
                "coef": np.asarray(est.coef_).tolist(),
                "intercept": np.atleast_1d(est.intercept_).tolist(),
            }
        return out

    def variable_importances(self) -> List[Tuple[str, float]]:
        est = self.estimator
        if hasattr(est, "feature_importances_"):
            scores = np.asarray(est.feature_importances_, dtype=np.float64)
        elif hasattr(est, "coef_"):
            scores = np.abs(np.atleast_2d(est.coef_)).mean(axis=0)
        else:
            return []

        pairs = list(zip(self.features, (float(s) for s in scores)))
        return sorted(pairs, key=lambda p: (-p[1], p[0]))

    def describe(self, full: bool = False) -> str:
        lines = [
            f"Model: {type(self.estimator).__name__} (learner={self.learner})",
            self.dataspec.describe(),
            "Variable importances:",
        ]
        for name, score in self.variable_importances()[:10]:
            lines.append(f"  {name}: {score:.6f}")

        for k, v in self.metadata.items():
            lines.append(f"meta.{k} = {v}")

        if full:
            trees = iter_trees(self.estimator)
            for i, t in enumerate(trees):
                lines.append(f"Tree #{i}")
                lines.append(export_text(t, feature_names=self.features))
            if hasattr(self.estimator, "coef_"):
                lines.append(f"coef={np.asarray(self.estimator.coef_).tolist()}")
                lines.append(f"intercept={np.atleast_1d(self.estimator.intercept_).tolist()}")

        return "\n".join(lines)
