# tests/dataset/test_io_and_synthetic.py
import pyarrow as pa
import pytest

from modelcheck.config.training_config import SyntheticDatasetOptions, Task
from modelcheck.dataset.io import read_table, split_typed_path, write_table
from modelcheck.dataset.synthetic import generate_synthetic_dataset
from modelcheck.utils.errors import ConfigurationError, DatasetIOError


def test_split_typed_path():
    assert split_typed_path("parquet:/a/b-*-of-00003.parquet") == ("parquet", "/a/b-*-of-00003.parquet")
    assert split_typed_path("/a/b.csv") == ("csv", "/a/b.csv")

    with pytest.raises(ConfigurationError):
        split_typed_path("/a/b.unknown")


def test_read_missing_file(tmp_path):
    with pytest.raises(DatasetIOError):
        read_table(f"csv:{tmp_path / 'nope.csv'}")
    with pytest.raises(DatasetIOError):
        read_table(f"parquet:{tmp_path / 'nope-*.parquet'}")


def test_csv_round_trip_keeps_missing_strings(tmp_path):
    table = pa.table({"x": [1.0, None], "c": pa.array(["a", None])})
    path = write_table(table, tmp_path / "t.csv", "csv")

    back = read_table(str(path))
    assert back.column("c").null_count == 1
    assert back.column("x").null_count == 1
    assert not (tmp_path / "t.csv.tmp").exists()


def test_synthetic_is_deterministic():
    options = SyntheticDatasetOptions(num_examples=50, missing_ratio=0.2, seed=42)
    a = generate_synthetic_dataset(options)
    b = generate_synthetic_dataset(options)

    assert a.equals(b)
    assert a.column_names == ["N0", "N1", "N2", "N3", "N4", "C0", "C1", "LABEL"]
    assert a.column("N0").null_count > 0
    assert set(a.column("LABEL").to_pylist()) == {"c0", "c1"}


def test_synthetic_regression_and_ranking():
    options = SyntheticDatasetOptions(num_examples=40, num_categorical=0, group_size=10)

    reg = generate_synthetic_dataset(options, task=Task.REGRESSION)
    assert pa.types.is_floating(reg.column("LABEL").type)

    rank = generate_synthetic_dataset(options, task=Task.RANKING)
    assert sorted(set(rank.column("GROUP").to_pylist())) == [0, 1, 2, 3]
    assert set(rank.column("LABEL").to_pylist()) <= {0.0, 1.0, 2.0, 3.0, 4.0}
