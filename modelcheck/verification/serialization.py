# modelcheck/verification/serialization.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pyarrow as pa

from modelcheck import logs
from modelcheck.model.model import Model
from modelcheck.utils.errors import EquivalenceError, SerializationError
from modelcheck.utils.filesystem import FileSystem
from modelcheck.verification.equivalence import EquivalenceChecker


@dataclass(frozen=True)
class RoundTripResult:
    num_bytes: int
    num_batches: int
    directory_checked: bool


class RoundTripValidator:
    """
    RoundTripValidator（FINAL）

    verify(model, table):
        1) bytes:     deserialize(serialize(model))            tag "round-trip"
        2) directory: load(save(model, tmp))                   tag "round-trip:directory"
    each followed by the batched comparison original vs reloaded.

    Any failure => SerializationError (an EquivalenceError).
    """

    def __init__(
        self,
        checker: Optional[EquivalenceChecker] = None,
        *,
        check_directory: bool = True,
        tmp_root: str | Path | None = None,
    ):
        self.checker = checker or EquivalenceChecker()
        self.check_directory = check_directory
        self.tmp_root = tmp_root

    def verify(self, model: Model, table: pa.Table) -> RoundTripResult:
        data = model.serialize()
        reloaded = type(model).deserialize(data)
        num_batches = self._compare(table, model, reloaded, "round-trip")
        logs.info(f"[RoundTrip] bytes OK size={len(data)}")

        if self.check_directory:
            with FileSystem.scoped_temp_dir(self.tmp_root, prefix="modelcheck_roundtrip_") as d:
                model.save(d / "model")
                from_dir = type(model).load(d / "model")
                self._compare(table, model, from_dir, "round-trip:directory")
            logs.info("[RoundTrip] directory OK")

        return RoundTripResult(
            num_bytes=len(data),
            num_batches=num_batches,
            directory_checked=self.check_directory,
        )

    def _compare(self, table: pa.Table, model: Model, reloaded: Model, path: str) -> int:
        try:
            return self.checker.expect_equal_models(table, model, reloaded, path)
        except SerializationError:
            raise
        except EquivalenceError as e:
            raise SerializationError(
                str(e),
                path=e.path,
                row=e.row,
                expected=e.expected,
                actual=e.actual,
                begin=e.begin,
                end=e.end,
            ) from e
