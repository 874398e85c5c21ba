# modelcheck/verification/equivalence.py
from __future__ import annotations

"""
Equivalence Checker（FINAL / FROZEN）

Proves that for every row of a table, an alternate engine (or a second
model) predicts the same thing as the reference Model.predict().

Algorithm (per batch [begin, min(begin + B, n))):
    1. materialize the batch in the engine's input layout
    2. engine.predict(batch, n_batch)
    3. model.predict(table, begin, end)   (reference)
    4. element-wise comparison, first mismatch aborts

Equality:
- scores / probabilities: |expected - actual| <= epsilon (NaN == NaN)
- CLASS_INDEX engines:     exact match with the reference argmax

Layouts are handled by ONE routine + a closed table of strategies keyed
by Engine.layout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Type

import numpy as np
import pyarrow as pa

from modelcheck import logs
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.config.training_config import Task
from modelcheck.model.engines import (
    Engine,
    ExampleFormat,
    ExampleSet,
    InputLayout,
    OutputKind,
    list_compatible_engines,
)
from modelcheck.model.model import Model
from modelcheck.utils.errors import ConfigurationError, EquivalenceError


@dataclass
class EquivalenceRecord:
    """
    One compared batch. Never retained after the comparison.
    """

    begin: int
    end: int
    expected: np.ndarray
    actual: np.ndarray
    path: str

    @property
    def num_examples(self) -> int:
        return self.end - self.begin


# ======================================================================
# Layout strategies
# ======================================================================
class LayoutStrategy(ABC):
    """
    Builds the engine input of a row range.
    """

    def __init__(self, engine: Engine, model: Model, table: pa.Table):
        self.engine = engine
        self.model = model
        self.table = table

    @abstractmethod
    def batch(self, begin: int, end: int):
        raise NotImplementedError


class StructuredBatchStrategy(LayoutStrategy):
    """
    The whole table is converted ONCE into the engine's ExampleSet,
    batches are copies of row slices.
    """

    def __init__(self, engine: Engine, model: Model, table: pa.Table):
        super().__init__(engine, model, table)
        X = model.dataspec.encode(table, engine.feature_names)
        missing = np.isnan(X)
        self.examples = ExampleSet(
            feature_names=tuple(engine.feature_names),
            values=np.where(missing, 0.0, X).astype(engine.value_dtype),
            missing=missing,
        )

    def batch(self, begin: int, end: int) -> ExampleSet:
        return self.examples.copy(begin, end)


class FlatArrayStrategy(LayoutStrategy):
    """
    Engine feature order, NA -> engine replacement values,
    example-major or feature-major.
    """

    def batch(self, begin: int, end: int) -> np.ndarray:
        X = self.model.dataspec.encode(self.table, self.engine.feature_names, begin, end)
        X = np.where(np.isnan(X), self.engine.na_replacement_values, X).astype(self.engine.value_dtype)
        if self.engine.example_format == ExampleFormat.FEATURE_MAJOR:
            return np.ascontiguousarray(X.T).reshape(-1)
        return np.ascontiguousarray(X).reshape(-1)


_LAYOUT_STRATEGIES: Dict[InputLayout, Type[LayoutStrategy]] = {
    InputLayout.STRUCTURED_BATCH: StructuredBatchStrategy,
    InputLayout.FLAT_ARRAY: FlatArrayStrategy,
}


# ======================================================================
# Checker
# ======================================================================
class EquivalenceChecker:
    """
    EquivalenceChecker

    Usage:
        checker = EquivalenceChecker.from_config(harness_config)
        checker.check_generic_engines(model, test_table)
    """

    def __init__(self, epsilon: float = 1e-5, batch_size: int = 20):
        if epsilon < 0:
            raise ConfigurationError(f"[Equivalence] epsilon must be >= 0, got {epsilon}")
        if batch_size < 1:
            raise ConfigurationError(f"[Equivalence] batch_size must be >= 1, got {batch_size}")
        self.epsilon = epsilon
        self.batch_size = batch_size

    @classmethod
    def from_config(cls, cfg: HarnessConfig) -> "EquivalenceChecker":
        return cls(epsilon=cfg.epsilon, batch_size=cfg.batch_size)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def check_generic_engines(self, model: Model, table: pa.Table) -> List[str]:
        """
        Every compatible engine vs the reference path.
        No engine => success. Returns the names of the checked engines.
        """
        engines = list_compatible_engines(model)
        if not engines:
            logs.info("[Equivalence] no alternate engine for this model")
            return []

        for engine in engines:
            self.expect_equal_predictions(table, model, engine)
        return [e.name for e in engines]

    def expect_equal_predictions(self, table: pa.Table, model: Model, engine: Engine) -> int:
        """
        Returns the number of compared batches.
        """
        strategy_cls = _LAYOUT_STRATEGIES.get(engine.layout)
        if strategy_cls is None:
            raise ConfigurationError(f"[Equivalence] unsupported engine layout {engine.layout!r}")

        strategy = strategy_cls(engine, model, table)
        path = f"engine:{engine.name}"

        num_batches = 0
        for begin, end in self._ranges(table.num_rows):
            actual = np.asarray(engine.predict(strategy.batch(begin, end), end - begin), dtype=np.float64)
            expected = self._expected(model, engine, table, begin, end, actual.size)
            self._compare(
                EquivalenceRecord(begin=begin, end=end, expected=expected, actual=actual, path=path),
                exact=engine.output_kind == OutputKind.CLASS_INDEX,
            )
            num_batches += 1

        logs.info(
            f"[Equivalence] {path} OK rows={table.num_rows} batches={num_batches} "
            f"eps={self.epsilon}"
        )
        return num_batches

    def expect_equal_models(self, table: pa.Table, model: Model, other: Model, path: str) -> int:
        """
        Same batched algorithm between two models (e.g. before / after a round-trip).
        """
        num_batches = 0
        for begin, end in self._ranges(table.num_rows):
            expected = model.predict(table, begin, end).reshape(-1)
            actual = np.asarray(other.predict(table, begin, end), dtype=np.float64).reshape(-1)
            self._compare(EquivalenceRecord(begin=begin, end=end, expected=expected, actual=actual, path=path))
            num_batches += 1

        logs.info(f"[Equivalence] {path} OK rows={table.num_rows} batches={num_batches}")
        return num_batches

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _ranges(self, num_rows: int):
        for begin in range(0, num_rows, self.batch_size):
            yield begin, min(begin + self.batch_size, num_rows)

    @staticmethod
    def _expected(model: Model, engine: Engine, table: pa.Table, begin: int, end: int, size: int) -> np.ndarray:
        """
        Reference predictions in the engine's output convention.
        """
        n = end - begin
        reference = model.predict(table, begin, end)

        if engine.output_kind == OutputKind.CLASS_INDEX:
            return np.argmax(reference, axis=1).astype(np.float64)

        k = reference.shape[1]
        if model.task == Task.CLASSIFICATION and k == 2 and size == n:
            return reference[:, 1].copy()
        if size != n * k:
            raise EquivalenceError(
                f"[Equivalence] engine:{engine.name} returned {size} values for {n} examples "
                f"(expected {n} or {n * k})",
                path=f"engine:{engine.name}",
                begin=begin,
                end=end,
            )
        return reference.reshape(-1)

    def _compare(self, record: EquivalenceRecord, exact: bool = False) -> None:
        expected, actual = record.expected, record.actual
        n = record.num_examples
        dim = max(expected.size // n, 1) if n else 1

        if expected.size != actual.size:
            raise EquivalenceError(
                f"[Equivalence] {record.path} rows [{record.begin}, {record.end}): "
                f"{actual.size} values, expected {expected.size}",
                path=record.path,
                begin=record.begin,
                end=record.end,
            )

        if exact:
            ok = expected == actual
        else:
            both_nan = np.isnan(expected) & np.isnan(actual)
            ok = both_nan | (np.abs(expected - actual) <= self.epsilon)

        if ok.all():
            return

        first = int(np.argmin(ok))
        row = record.begin + first // dim
        e = expected[(first // dim) * dim:(first // dim + 1) * dim]
        a = actual[(first // dim) * dim:(first // dim + 1) * dim]
        raise EquivalenceError(
            f"[Equivalence] {record.path} mismatch at row {row} "
            f"(batch [{record.begin}, {record.end})): expected={e.tolist()} actual={a.tolist()} "
            f"eps={0.0 if exact else self.epsilon}",
            path=record.path,
            row=row,
            expected=e,
            actual=a,
            begin=record.begin,
            end=record.end,
        )


def expect_equal_predictions(
    table: pa.Table,
    model: Model,
    engine: Engine,
    *,
    epsilon: float = 1e-5,
    batch_size: int = 20,
) -> int:
    return EquivalenceChecker(epsilon, batch_size).expect_equal_predictions(table, model, engine)

