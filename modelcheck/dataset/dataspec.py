# modelcheck/dataset/dataspec.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from modelcheck.config.training_config import Task, TrainingConfig
from modelcheck.utils.errors import ConfigurationError

# categorical index 0 = out-of-vocabulary
OOV_INDEX = 0


class Semantic(str, Enum):
    NUMERICAL = "numerical"
    CATEGORICAL = "categorical"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    semantic: Semantic
    vocabulary: Tuple[str, ...] = ()

    def index_of(self) -> Dict[str, int]:
        return {v: i + 1 for i, v in enumerate(self.vocabulary)}


def _semantic_of(dtype: pa.DataType) -> Semantic:
    if pa.types.is_boolean(dtype):
        return Semantic.BOOLEAN
    if pa.types.is_integer(dtype) or pa.types.is_floating(dtype) or pa.types.is_decimal(dtype):
        return Semantic.NUMERICAL
    if pa.types.is_dictionary(dtype) or pa.types.is_string(dtype) or pa.types.is_large_string(dtype):
        return Semantic.CATEGORICAL
    raise ConfigurationError(f"[DataSpec] unsupported column type: {dtype}")


@dataclass(frozen=True)
class DataSpec:
    """
    DataSpec（FROZEN after build）

    Semantics:
    - Column semantics + categorical vocabularies + label classes
    - Owns the ONLY table -> numeric matrix encoding
      (reference path and every engine layout go through encode())

    Encoding contract:
    - numerical / boolean -> float64
    - categorical -> vocabulary index + 1, OOV -> 0
    - missing -> NaN (replacement is the consumer's business)
    """

    label: str
    task: Task
    features: Tuple[str, ...]
    columns: Dict[str, ColumnSpec] = field(default_factory=dict)
    label_classes: Tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------
    @classmethod
    def build(cls, table: pa.Table, cfg: TrainingConfig) -> "DataSpec":
        names = table.column_names

        missing = [c for c in cfg.reserved_columns() if c not in names]
        if missing:
            raise ConfigurationError(f"[DataSpec] columns not found in dataset: {missing}")

        if cfg.features is not None:
            unknown = [c for c in cfg.features if c not in names]
            if unknown:
                raise ConfigurationError(f"[DataSpec] unknown feature columns: {unknown}")
            features = list(cfg.features)
        else:
            reserved = set(cfg.reserved_columns())
            features = [c for c in names if c not in reserved]

        if not features:
            raise ConfigurationError("[DataSpec] no input feature")

        guide = cls._guide(cfg, features)

        columns: Dict[str, ColumnSpec] = {}
        for name in features:
            col = table.column(name)
            semantic = guide.get(name) or _semantic_of(col.type)
            vocab: Tuple[str, ...] = ()
            if semantic == Semantic.CATEGORICAL:
                values = pc.unique(col.cast(pa.string())).drop_null().to_pylist()
                vocab = tuple(sorted(values))
            spec = ColumnSpec(name=name, semantic=semantic, vocabulary=vocab)
            if name in guide:
                try:
                    cls._encode_column(col, spec)
                except (pa.ArrowInvalid, pa.ArrowNotImplementedError) as e:
                    raise ConfigurationError(
                        f"[DataSpec] column '{name}' ({col.type}) cannot be read as {semantic.value}: {e}"
                    ) from e
            columns[name] = spec

        label_col = table.column(cfg.label)
        if label_col.null_count:
            raise ConfigurationError(
                f"[DataSpec] label '{cfg.label}' has {label_col.null_count} missing values"
            )

        label_classes: Tuple[str, ...] = ()
        if cfg.task == Task.CLASSIFICATION:
            uniques = pd.unique(label_col.to_pandas())
            label_classes = tuple(str(v) for v in sorted(uniques))
            if len(label_classes) < 2:
                raise ConfigurationError(
                    f"[DataSpec] classification label needs >= 2 classes, got {label_classes}"
                )

        return cls(
            label=cfg.label,
            task=cfg.task,
            features=tuple(features),
            columns=columns,
            label_classes=label_classes,
        )

    @staticmethod
    def _guide(cfg: TrainingConfig, features: List[str]) -> Dict[str, Semantic]:
        """
        column_guide: {column: "numerical" | "categorical" | "boolean"}
        Overrides the dtype-inferred semantic of input features.
        """
        guide: Dict[str, Semantic] = {}
        for name, value in cfg.column_guide.items():
            if name not in features:
                raise ConfigurationError(f"[DataSpec] column guide names a non-feature column '{name}'")
            try:
                guide[name] = Semantic(str(value).lower())
            except ValueError:
                allowed = [s.value for s in Semantic]
                raise ConfigurationError(
                    f"[DataSpec] column guide '{name}': unknown semantic '{value}', expected one of {allowed}"
                ) from None
        return guide

    @property
    def num_classes(self) -> int:
        return len(self.label_classes)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def encode(
        self,
        table: pa.Table,
        features: Optional[Sequence[str]] = None,
        begin: int = 0,
        end: Optional[int] = None,
    ) -> np.ndarray:
        """
        Rows [begin, end) -> float64 matrix (n, len(features)), NaN = missing.
        """
        features = list(self.features if features is None else features)
        end = table.num_rows if end is None else end
        n = max(end - begin, 0)

        out = np.empty((n, len(features)), dtype=np.float64)
        for j, name in enumerate(features):
            spec = self.columns.get(name)
            if spec is None:
                raise ConfigurationError(f"[DataSpec] '{name}' is not an input feature")
            col = table.column(name).slice(begin, n)
            out[:, j] = self._encode_column(col, spec)
        return out

    @staticmethod
    def _encode_column(col: pa.ChunkedArray, spec: ColumnSpec) -> np.ndarray:
        if spec.semantic == Semantic.CATEGORICAL:
            s = col.cast(pa.string()).to_pandas()
            codes = s.map(spec.index_of()).astype(np.float64)
            codes[s.notna() & codes.isna()] = OOV_INDEX
            return codes.to_numpy()

        if spec.semantic == Semantic.BOOLEAN and (pa.types.is_string(col.type) or pa.types.is_large_string(col.type)):
            # "true" / "false" strings
            col = pc.cast(col, pa.bool_())
        # numerical / boolean: null -> NaN
        return pc.cast(col, pa.float64()).to_numpy()

    def encode_label(self, table: pa.Table, begin: int = 0, end: Optional[int] = None) -> np.ndarray:
        """
        classification -> class index (int64)
        regression / ranking -> float64
        """
        end = table.num_rows if end is None else end
        col = table.column(self.label).slice(begin, max(end - begin, 0))

        if self.task != Task.CLASSIFICATION:
            return pc.cast(col, pa.float64()).to_numpy()

        index = {c: i for i, c in enumerate(self.label_classes)}
        values = [str(v) for v in col.to_pandas()]
        unknown = {v for v in values if v not in index}
        if unknown:
            raise ConfigurationError(f"[DataSpec] unknown label values: {sorted(unknown)[:5]}")
        return np.fromiter((index[v] for v in values), dtype=np.int64, count=len(values))

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "task": self.task.value,
            "features": list(self.features),
            "label_classes": list(self.label_classes),
            "columns": {
                name: {"semantic": c.semantic.value, "vocabulary": list(c.vocabulary)}
                for name, c in self.columns.items()
            },
        }

    def describe(self) -> str:
        lines: List[str] = [f"label={self.label} task={self.task.value} classes={list(self.label_classes)}"]
        for name, c in self.columns.items():
            extra = f" vocab={len(c.vocabulary)}" if c.vocabulary else ""
            lines.append(f"  {name}: {c.semantic.value}{extra}")
        return "\n".join(lines)
