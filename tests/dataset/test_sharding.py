# tests/dataset/test_sharding.py
from collections import Counter

import pyarrow as pa
import pytest

from modelcheck.dataset.io import read_table
from modelcheck.dataset.sharding import load_sharded_dataset, schema_filename, shard_dataset, shard_filename
from modelcheck.utils.errors import ConfigurationError, DatasetIOError


def _rows(table):
    return Counter(zip(table.column("id").to_pylist(), table.column("c").to_pylist()))


@pytest.mark.parametrize("fmt", ["parquet", "csv"])
def test_shard_and_reload_same_multiset(id_table, tmp_path, fmt):
    """100 rows -> 3 shards at sampling 1.0 -> same 100-row multiset"""
    typed_path = shard_dataset(id_table, 3, 1.0, tmp_path, fmt=fmt, name="train")

    assert typed_path.startswith(f"{fmt}:")
    assert typed_path.endswith(f"train-*-of-00003.{fmt}")

    files = sorted(p.name for p in tmp_path.iterdir() if p.suffix == f".{fmt}")
    assert files == [shard_filename("train", i, 3, fmt) for i in range(3)]
    assert files[0] == f"train-00000-of-00003.{fmt}"

    reloaded = load_sharded_dataset(typed_path)
    assert reloaded.num_rows == 100
    assert _rows(reloaded) == _rows(id_table)


def test_shards_are_balanced(id_table, tmp_path):
    shard_dataset(id_table, 3, 1.0, tmp_path, fmt="parquet")
    sizes = [load_sharded_dataset(f"parquet:{p}").num_rows for p in sorted(tmp_path.glob("*.parquet"))]
    assert sorted(sizes) == [33, 33, 34]


def test_sampling_keeps_a_subset(id_table, tmp_path):
    typed_path = shard_dataset(id_table, 2, 0.5, tmp_path, seed=9)
    ids = load_sharded_dataset(typed_path).column("id").to_pylist()

    assert 0 < len(ids) < 100
    assert len(ids) == len(set(ids))

    again = tmp_path / "again"
    again.mkdir()
    same = load_sharded_dataset(shard_dataset(id_table, 2, 0.5, again, seed=9))
    assert sorted(same.column("id").to_pylist()) == sorted(ids)


def test_more_shards_than_rows(id_table, tmp_path):
    typed_path = shard_dataset(id_table.slice(0, 2), 5, 1.0, tmp_path)
    assert typed_path.endswith("-of-00002.parquet")
    assert load_sharded_dataset(typed_path).num_rows == 2


def test_unwritable_directory(id_table, tmp_path):
    with pytest.raises(DatasetIOError) as e:
        shard_dataset(id_table, 3, 1.0, tmp_path / "does" / "not" / "exist")
    assert isinstance(e.value, OSError)


@pytest.mark.parametrize(
    "kwargs",
    [dict(num_shards=0, sampling=1.0), dict(num_shards=2, sampling=0.0), dict(num_shards=2, sampling=1.5)],
)
def test_invalid_arguments(id_table, tmp_path, kwargs):
    with pytest.raises(ConfigurationError):
        shard_dataset(id_table, kwargs["num_shards"], kwargs["sampling"], tmp_path)


# ============================================================
# csv shards keep the source schema
# ============================================================
def test_csv_shards_reload_mixed_int_and_float(tmp_path):
    """a single 0.5 lands in one shard; the others look like integers"""
    table = pa.table({"id": list(range(100)), "x": [1.0] * 99 + [0.5]})
    typed_path = shard_dataset(table, 3, 1.0, tmp_path, fmt="csv", name="train")

    assert (tmp_path / schema_filename("train")).exists()

    reloaded = load_sharded_dataset(typed_path)
    assert reloaded.schema.field("x").type == pa.float64()
    assert sorted(reloaded.column("x").to_pylist()) == sorted(table.column("x").to_pylist())


def test_csv_shards_reload_mostly_null_strings(tmp_path):
    table = pa.table({"id": list(range(100)), "c": ["a", "b"] + [None] * 98})
    reloaded = load_sharded_dataset(shard_dataset(table, 3, 1.0, tmp_path, fmt="csv"))

    assert reloaded.schema.field("c").type == pa.string()
    assert reloaded.column("c").null_count == 98
    assert Counter(reloaded.column("c").drop_null().to_pylist()) == Counter(["a", "b"])


def test_csv_glob_without_schema_file_is_promoted(tmp_path):
    (tmp_path / "d-00000-of-00002.csv").write_text("x,c\n1,\n2,\n")
    (tmp_path / "d-00001-of-00002.csv").write_text("x,c\n0.5,a\n3,b\n")

    table = load_sharded_dataset(f"csv:{tmp_path}/d-*-of-00002.csv")

    assert table.schema.field("x").type == pa.float64()
    assert table.schema.field("c").type == pa.string()
    assert table.num_rows == 4


def test_incompatible_shards_raise_dataset_error(tmp_path):
    (tmp_path / "d-00000-of-00002.csv").write_text("x\n1\n2\n")
    (tmp_path / "d-00001-of-00002.csv").write_text("x\nred\nblue\n")

    with pytest.raises(DatasetIOError) as e:
        read_table(f"csv:{tmp_path}/d-*-of-00002.csv")
    assert "do not share a schema" in str(e.value)
