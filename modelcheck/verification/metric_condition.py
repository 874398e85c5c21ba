# modelcheck/verification/metric_condition.py
from __future__ import annotations

"""
Metric Regression Harness（FINAL）

assert_metric(name, value, center, margin, golden=NaN)

Two mutually exclusive modes (process-wide, HarnessConfig.metric_dump_dir):

ASSERT (metric_dump_dir == ""):
    - center - margin <= value <= center + margin
    - check_gold and golden is not NaN => value == golden
DUMP (metric_dump_dir != ""):
    - append one row to <dir>/<test_name>.csv, never fails

Ledger columns: test_name, metric_name, value, source_file, source_line
"""

import inspect
import math
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import pandas as pd

from modelcheck import logs
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.utils.errors import ConfigurationError, MetricError
from modelcheck.utils.filesystem import FileSystem

LEDGER_COLUMNS = ["test_name", "metric_name", "value", "source_file", "source_line"]

UNSET = float("nan")


class MetricMode(str, Enum):
    ASSERT = "assert"
    DUMP = "dump"


@dataclass(frozen=True)
class MetricAssertion:
    test_name: str
    metric_name: str
    value: float
    center: float
    margin: float
    golden: float
    source_file: str
    source_line: int
    mode: MetricMode
    passed: bool

    @property
    def source(self) -> str:
        return f"{self.source_file}:{self.source_line}"


def current_test_name() -> Optional[str]:
    """
    "tests/x/test_a.py::test_b[param] (call)" -> "test_b[param]"
    """
    raw = os.environ.get("PYTEST_CURRENT_TEST")
    if not raw:
        return None
    return raw.split("::")[-1].rsplit(" ", 1)[0]


def ledger_filename(test_name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", test_name).strip("_") + ".csv"


class MetricRegressionHarness:
    """
    Usage:
        metrics = MetricRegressionHarness(harness_config)
        metrics.assert_metric("accuracy", result.accuracy, 0.86, 0.02)
    """

    def __init__(self, config: HarnessConfig, test_name: Optional[str] = None):
        self.config = config
        self.test_name = test_name

    @property
    def mode(self) -> MetricMode:
        return MetricMode.DUMP if self.config.dump_mode else MetricMode.ASSERT

    def assert_metric(
        self,
        name: str,
        value: float,
        center: float,
        margin: float,
        golden: float = UNSET,
    ) -> MetricAssertion:
        if margin < 0:
            raise ConfigurationError(f"[MetricCondition] margin must be >= 0, got {margin}")

        source_file, source_line, caller = self._caller()
        test_name = self.test_name or current_test_name() or caller
        value = float(value)

        # only ever returned once the check passed
        assertion = MetricAssertion(
            test_name, name, value, center, margin, golden,
            source_file, source_line, self.mode, True,
        )

        if self.mode == MetricMode.DUMP:
            self._dump(test_name, name, value, source_file, source_line)
            return assertion

        if not center - margin <= value <= center + margin:
            raise MetricError(
                f"[MetricCondition] {test_name}.{name}={value!r} outside "
                f"[{center - margin!r}, {center + margin!r}] (center={center}, margin={margin}) at {assertion.source}"
            )

        if self.config.check_gold and not math.isnan(golden) and value != golden:
            raise MetricError(
                f"[MetricCondition] {test_name}.{name}={value!r} != golden {golden!r} at {assertion.source}"
            )

        logs.debug(f"[MetricCondition] {test_name}.{name}={value} in {center}±{margin}")
        return assertion

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    @staticmethod
    def _caller() -> Tuple[str, int, str]:
        # assert_metric -> caller
        frame = inspect.currentframe()
        try:
            caller = frame.f_back.f_back
            return caller.f_code.co_filename, caller.f_lineno, caller.f_code.co_name
        finally:
            del frame

    def _dump(self, test_name: str, name: str, value: float, source_file: str, source_line: int) -> Path:
        directory = FileSystem.ensure_dir(self.config.metric_dump_dir)
        path = directory / ledger_filename(test_name)

        row = pd.DataFrame(
            [[test_name, name, value, source_file, source_line]], columns=LEDGER_COLUMNS
        )
        row.to_csv(path, mode="a", header=not path.exists(), index=False)

        logs.info(f"[MetricCondition] DUMP {test_name}.{name}={value} -> {path}")
        return path


# ======================================================================
# Ledger recalibration
# ======================================================================
def read_ledger(ledger_dir: str | Path) -> pd.DataFrame:
    files = FileSystem.scan_dir(ledger_dir, suffix=".csv")
    if not files:
        raise ConfigurationError(f"[MetricCondition] no ledger file in {ledger_dir}")

    frames = [pd.read_csv(f) for f in files]
    ledger = pd.concat(frames, ignore_index=True)

    missing = [c for c in LEDGER_COLUMNS if c not in ledger.columns]
    if missing:
        raise ConfigurationError(f"[MetricCondition] ledger columns missing: {missing}")
    return ledger


def recalibrate(ledger_dir: str | Path, num_std: float = 3.0) -> pd.DataFrame:
    """
    Observed values -> suggested (center, margin) per (test, metric).

    center = mean, margin = max(num_std * std, half observed range)
    """
    ledger = read_ledger(ledger_dir)
    grouped = ledger.groupby(["test_name", "metric_name"])["value"]

    out = grouped.agg(["count", "mean", "std", "min", "max"]).reset_index()
    out["std"] = out["std"].fillna(0.0)
    out = out.rename(columns={"mean": "center"})
    out["margin"] = pd.concat(
        [num_std * out["std"], (out["max"] - out["min"]) / 2.0], axis=1
    ).max(axis=1)

    logs.info(f"[MetricCondition] recalibrated {len(out)} metrics from {ledger_dir}")
    return out[["test_name", "metric_name", "count", "center", "margin", "min", "max"]]
