# modelcheck/verification/golden.py
from __future__ import annotations

"""
Golden-Model Comparator

- active only when HarnessConfig.check_gold is set (no-op otherwise)
- golden model = directory form under <golden_dir>/<reference_name>
- structure() compared recursively, volatile metadata excluded
"""

import math
from pathlib import Path
from typing import Any, FrozenSet, Optional

from modelcheck import logs
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.model.model import SklearnModel
from modelcheck.utils.errors import GoldenModelError, SerializationError

VOLATILE_KEYS: FrozenSet[str] = frozenset({"metadata", "created_at", "build_id", "training_duration"})


def first_difference(a: Any, b: Any, path: str = "$") -> Optional[str]:
    """
    Path of the first differing field, None when equal.
    Floats compare exactly (NaN == NaN).
    """
    if isinstance(a, dict) and isinstance(b, dict):
        keys_a = {k for k in a if k not in VOLATILE_KEYS}
        keys_b = {k for k in b if k not in VOLATILE_KEYS}
        if keys_a != keys_b:
            return f"{path}{{keys: {sorted(keys_a ^ keys_b)}}}"
        for k in sorted(keys_a):
            diff = first_difference(a[k], b[k], f"{path}.{k}")
            if diff is not None:
                return diff
        return None

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return f"{path}[len {len(a)} != {len(b)}]"
        for i, (x, y) in enumerate(zip(a, b)):
            diff = first_difference(x, y, f"{path}[{i}]")
            if diff is not None:
                return diff
        return None

    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return None

    if type(a) is not type(b) and not (isinstance(a, (int, float)) and isinstance(b, (int, float))):
        return f"{path} ({type(a).__name__} != {type(b).__name__})"

    return None if a == b else f"{path} ({a!r} != {b!r})"


class GoldenModelComparator:
    def __init__(self, config: HarnessConfig):
        self.config = config

    @property
    def golden_dir(self) -> Path:
        return self.config.resolve(self.config.golden_dir)

    def compare(self, model: SklearnModel, reference_name: str) -> bool:
        """
        Returns True if a comparison was performed.

        Raises:
            GoldenModelError: missing / unreadable golden model, or structure mismatch
        """
        if not self.config.check_gold:
            logs.debug(f"[Golden] check_gold disabled, skip '{reference_name}'")
            return False

        directory = self.golden_dir / reference_name
        try:
            golden = SklearnModel.load(directory)
        except SerializationError as e:
            raise GoldenModelError(
                f"[Golden] cannot load golden model '{reference_name}' from {directory}: {e}"
            ) from e

        diff = first_difference(golden.structure(), model.structure())
        if diff is not None:
            raise GoldenModelError(f"[Golden] model differs from '{reference_name}' at {diff}")

        logs.info(f"[Golden] model matches '{reference_name}'")
        return True

    def save_golden(self, model: SklearnModel, reference_name: str) -> Path:
        path = model.save(self.golden_dir / reference_name)
        logs.info(f"[Golden] saved golden model '{reference_name}' -> {path}")
        return path
