# modelcheck/evaluation/evaluator.py
from __future__ import annotations

"""
Evaluator (FINAL)

evaluate(model, table, options) -> EvaluationResult

Metrics (sklearn.metrics):
- classification: accuracy, log loss, ROC AUC (binary / one-vs-rest)
- regression:     RMSE
- ranking:        NDCG@k averaged over groups, RMSE

evaluation_override_task:
- a classification model evaluated as regression / ranking is scored
  with its positive-class probability (binary only)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc
from sklearn.metrics import accuracy_score, log_loss, mean_squared_error, ndcg_score, roc_auc_score

from modelcheck import logs
from modelcheck.config.training_config import EvaluationOptions, Task
from modelcheck.model.model import Model
from modelcheck.utils.errors import ConfigurationError

NAN = float("nan")


@dataclass(frozen=True)
class EvaluationResult:
    """
    Immutable output of evaluate(); NaN = not applicable.
    """

    task: Task
    num_examples: int
    accuracy: float = NAN
    loss: float = NAN
    auc: float = NAN
    rmse: float = NAN
    ndcg: float = NAN
    extra: Dict[str, float] = field(default_factory=dict)

    @property
    def primary_metric(self) -> float:
        if self.task == Task.CLASSIFICATION:
            return self.accuracy
        if self.task == Task.RANKING:
            return self.ndcg
        return self.rmse

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"task": self.task.value, "num_examples": self.num_examples}
        for name in ("accuracy", "loss", "auc", "rmse", "ndcg"):
            value = getattr(self, name)
            if not np.isnan(value):
                out[name] = value
        out.update(self.extra)
        return out

    def describe(self) -> str:
        return " ".join(
            f"{k}={v:.6f}" if isinstance(v, float) else f"{k}={v}" for k, v in self.to_dict().items()
        )


def _column(table: pa.Table, name: Optional[str]) -> Optional[np.ndarray]:
    if not name:
        return None
    if name not in table.column_names:
        raise ConfigurationError(f"[Evaluator] column '{name}' not found")
    return pc.cast(table.column(name), pa.float64()).to_numpy()


def _group_ids(table: pa.Table, name: Optional[str]) -> Optional[np.ndarray]:
    """Dense int ids for the ranking group column (any dtype: int, string, ...)."""
    if not name:
        return None
    if name not in table.column_names:
        raise ConfigurationError(f"[Evaluator] column '{name}' not found")
    col = table.column(name)
    if col.null_count:
        raise ConfigurationError(f"[Evaluator] ranking group '{name}' has {col.null_count} missing values")
    codes, _ = pd.factorize(col.to_pandas())
    return codes


def _scores_as(task: Task, model: Model, predictions: np.ndarray) -> np.ndarray:
    """
    Reference predictions -> one score per example for a non-classification task.
    """
    if model.task != Task.CLASSIFICATION:
        return predictions[:, 0]
    if predictions.shape[1] != 2:
        raise ConfigurationError(
            f"[Evaluator] cannot evaluate a {predictions.shape[1]}-class model as {task.value}"
        )
    return predictions[:, 1]


def _classification(model: Model, table: pa.Table, predictions: np.ndarray, weights) -> EvaluationResult:
    labels = model.dataspec.encode_label(table)
    k = predictions.shape[1]
    predicted = np.argmax(predictions, axis=1)

    accuracy = float(accuracy_score(labels, predicted, sample_weight=weights))
    # probabilities clipped by sklearn
    loss = float(log_loss(labels, predictions, labels=list(range(k)), sample_weight=weights))

    auc = NAN
    present = np.unique(labels)
    if k == 2 and len(present) == 2:
        auc = float(roc_auc_score(labels, predictions[:, 1], sample_weight=weights))
    elif k > 2 and len(present) == k:
        auc = float(roc_auc_score(labels, predictions, multi_class="ovr", sample_weight=weights))

    return EvaluationResult(
        task=Task.CLASSIFICATION,
        num_examples=table.num_rows,
        accuracy=accuracy,
        loss=loss,
        auc=auc,
    )


def _ndcg(labels: np.ndarray, scores: np.ndarray, groups: np.ndarray, k: int) -> float:
    values = []
    for g in np.unique(groups):
        idx = np.flatnonzero(groups == g)
        # single-item groups carry no ranking information
        if len(idx) < 2:
            continue
        values.append(ndcg_score([labels[idx]], [scores[idx]], k=k))
    return float(np.mean(values)) if values else NAN


def evaluate(
    model: Model,
    table: pa.Table,
    options: Optional[EvaluationOptions] = None,
) -> EvaluationResult:
    options = options or EvaluationOptions()
    task = options.task or model.task

    if table.num_rows == 0:
        raise ConfigurationError("[Evaluator] empty evaluation dataset")
    if task == Task.CLASSIFICATION and model.task != Task.CLASSIFICATION:
        raise ConfigurationError(f"[Evaluator] cannot evaluate a {model.task.value} model as classification")

    predictions = model.predict(table)
    weights = _column(table, options.weight_column)

    if task == Task.CLASSIFICATION:
        result = _classification(model, table, predictions, weights)
        logs.info(f"[Evaluator] {result.describe()}")
        return result

    labels = model.dataspec.encode_label(table).astype(np.float64)
    scores = _scores_as(task, model, predictions)
    rmse = float(np.sqrt(mean_squared_error(labels, scores, sample_weight=weights)))

    if task == Task.REGRESSION:
        result = EvaluationResult(task=task, num_examples=table.num_rows, rmse=rmse)
        logs.info(f"[Evaluator] {result.describe()}")
        return result

    groups = _group_ids(table, options.ranking_group)
    if groups is None:
        raise ConfigurationError("[Evaluator] ranking evaluation requires 'ranking_group'")

    ndcg = _ndcg(labels, scores, groups, options.ndcg_truncation)
    result = EvaluationResult(
        task=task,
        num_examples=table.num_rows,
        rmse=rmse,
        ndcg=ndcg,
        extra={"num_groups": float(len(np.unique(groups)))},
    )
    logs.info(f"[Evaluator] {result.describe()}")
    return result
