# modelcheck/dataset/sharding.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import pyarrow as pa
import pyarrow.ipc

from modelcheck import logs
from modelcheck.dataset.io import FORMAT_EXTENSIONS, read_table, split_typed_path, write_table
from modelcheck.utils.errors import ConfigurationError, DatasetIOError
from modelcheck.utils.filesystem import FileSystem


SHARD_GLOB = "-*-of-"


def shard_filename(name: str, index: int, num_shards: int, fmt: str) -> str:
    return f"{name}-{index:05d}-of-{num_shards:05d}{FORMAT_EXTENSIONS[fmt]}"


def schema_filename(name: str) -> str:
    return f"{name}.schema"


def shard_dataset(
    table: pa.Table,
    num_shards: int,
    sampling: float,
    directory: str | Path,
    *,
    fmt: str = "parquet",
    name: str = "dataset",
    seed: int = 1234,
) -> str:
    """
    Randomly shard a dataset.

    - each row kept with probability `sampling` (all rows when sampling >= 1)
    - kept rows shuffled, split into balanced shards
    - returns the typed glob path "<fmt>:<dir>/<name>-*-of-0000N.<ext>"

    Raises:
        DatasetIOError: directory not writable
    """
    if num_shards < 1:
        raise ConfigurationError(f"[Sharding] num_shards must be >= 1, got {num_shards}")
    if not 0.0 < sampling <= 1.0:
        raise ConfigurationError(f"[Sharding] sampling must be in (0, 1], got {sampling}")
    if fmt not in FORMAT_EXTENSIONS:
        raise ConfigurationError(f"[Sharding] unknown format '{fmt}'")

    directory = FileSystem.check_writable(directory)
    rng = np.random.default_rng(seed)

    rows = np.arange(table.num_rows)
    if sampling < 1.0:
        rows = rows[rng.random(table.num_rows) < sampling]
    rows = rng.permutation(rows)

    # no empty shard
    effective = max(1, min(num_shards, len(rows)))
    if effective != num_shards:
        logs.warning(f"[Sharding] {len(rows)} rows -> {effective} shards instead of {num_shards}")

    for i, part in enumerate(np.array_split(rows, effective)):
        shard = table.take(pa.array(part, type=pa.int64()))
        write_table(shard, directory / shard_filename(name, i, effective, fmt), fmt)

    # csv shards lose their types: keep the source schema beside them
    if fmt == "csv":
        FileSystem.safe_write(directory / schema_filename(name), table.schema.serialize().to_pybytes())

    typed_path = f"{fmt}:{directory / name}-*-of-{effective:05d}{FORMAT_EXTENSIONS[fmt]}"
    logs.info(f"[Sharding] {len(rows)}/{table.num_rows} rows -> {typed_path}")
    return typed_path


def _sidecar_schema(typed_path: str) -> Optional[pa.Schema]:
    _, path = split_typed_path(typed_path)
    if SHARD_GLOB not in path:
        return None
    prefix = Path(path.split(SHARD_GLOB, 1)[0])
    sidecar = prefix.parent / schema_filename(prefix.name)
    if not sidecar.exists():
        return None
    try:
        return pa.ipc.read_schema(pa.py_buffer(sidecar.read_bytes()))
    except (OSError, pa.ArrowInvalid) as e:
        raise DatasetIOError(f"[Sharding] bad schema file {sidecar}: {e}") from e


def load_sharded_dataset(typed_path: str) -> pa.Table:
    """
    Concatenate every shard matched by the typed path.

    csv shards written by shard_dataset reload with the source schema.
    Plain files / foreign globs fall back to read_table inference.
    """
    return read_table(typed_path, schema=_sidecar_schema(typed_path))
