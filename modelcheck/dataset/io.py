# modelcheck/dataset/io.py
from __future__ import annotations

import glob
from pathlib import Path
from typing import List, Optional, Tuple

import pyarrow as pa
import pyarrow.csv as pacsv
import pyarrow.parquet as pq

from modelcheck.utils.errors import DatasetIOError, ConfigurationError
from modelcheck.utils.filesystem import FileSystem

# format -> file extension
FORMAT_EXTENSIONS = {
    "parquet": ".parquet",
    "csv": ".csv",
}

# empty csv cell = missing value, also for string columns
_CSV_CONVERT = pacsv.ConvertOptions(strings_can_be_null=True)


def split_typed_path(typed_path: str) -> Tuple[str, str]:
    """
    "parquet:/a/b-*-of-00003.parquet" -> ("parquet", "/a/b-*-of-00003.parquet")
    "/a/b.csv" -> ("csv", "/a/b.csv")  (format inferred from extension)
    """
    head, sep, tail = typed_path.partition(":")
    if sep and head in FORMAT_EXTENSIONS:
        return head, tail

    suffix = Path(typed_path).suffix
    for fmt, ext in FORMAT_EXTENSIONS.items():
        if suffix == ext:
            return fmt, typed_path

    raise ConfigurationError(
        f"[DatasetIO] cannot infer dataset format of '{typed_path}', "
        f"use one of {sorted(FORMAT_EXTENSIONS)} as prefix"
    )


def expand_paths(path: str) -> List[Path]:
    """
    Glob expansion (sharded datasets); a plain path must exist.
    """
    if glob.has_magic(path):
        files = sorted(Path(p) for p in glob.glob(path))
        if not files:
            raise DatasetIOError(f"[DatasetIO] no file matches '{path}'")
        return files

    p = Path(path)
    if not p.exists():
        raise DatasetIOError(f"[DatasetIO] dataset not found: {p}")
    return [p]


def _csv_convert_options(schema: Optional[pa.Schema]) -> pacsv.ConvertOptions:
    if schema is None:
        return _CSV_CONVERT
    # csv carries no type: force the recorded column types
    types = {
        f.name: f.type.value_type if pa.types.is_dictionary(f.type) else f.type
        for f in schema
    }
    return pacsv.ConvertOptions(column_types=types, strings_can_be_null=True)


def read_table(typed_path: str, schema: Optional[pa.Schema] = None) -> pa.Table:
    """
    Read one file or a shard glob into a single pyarrow Table.

    - schema given: every file is read / cast to it
    - otherwise per-file inference, shards unified by permissive promotion
      (null -> string, int64 + double -> double)
    """
    fmt, path = split_typed_path(typed_path)
    convert = _csv_convert_options(schema)

    tables = []
    for f in expand_paths(path):
        try:
            if fmt == "parquet":
                tables.append(pq.read_table(f))
            else:
                tables.append(pacsv.read_csv(f, convert_options=convert))
        except (OSError, pa.ArrowInvalid) as e:
            raise DatasetIOError(f"[DatasetIO] cannot read {f}: {e}") from e

    try:
        table = tables[0] if len(tables) == 1 else pa.concat_tables(tables, promote_options="permissive")
        if schema is not None:
            table = table.select(schema.names).cast(schema)
    except (pa.ArrowInvalid, pa.ArrowTypeError, pa.ArrowNotImplementedError, KeyError) as e:
        raise DatasetIOError(f"[DatasetIO] shards of '{path}' do not share a schema: {e}") from e
    return table


def write_table(table: pa.Table, path: str | Path, fmt: str = "parquet") -> Path:
    """
    Atomic write: *.tmp -> rename.
    """
    if fmt not in FORMAT_EXTENSIONS:
        raise ConfigurationError(f"[DatasetIO] unknown format '{fmt}'")

    path = Path(path)
    try:
        FileSystem.ensure_dir(path.parent)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        if fmt == "parquet":
            pq.write_table(table, tmp_path)
        else:
            pacsv.write_csv(table, tmp_path)
        tmp_path.replace(path)
    except OSError as e:
        raise DatasetIOError(f"[DatasetIO] cannot write {path}: {e}") from e
    return path
