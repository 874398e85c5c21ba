# tests/dataset/test_partitioner.py
import numpy as np
import pyarrow as pa
import pytest

from modelcheck.dataset.partitioner import DatasetPartitioner, duplication_counts, emulate_weights
from modelcheck.utils.errors import ConfigurationError


def test_deterministic_split_even_odd(id_table):
    """ratio=0.5, no noise: even -> train, odd -> test, identical on re-run"""
    p1 = DatasetPartitioner(0.5).partition(id_table)
    p2 = DatasetPartitioner(0.5).partition(id_table)

    assert p1.train.column("id").to_pylist() == list(range(0, 100, 2))
    assert p1.test.column("id").to_pylist() == list(range(1, 100, 2))
    assert p1.valid is None

    assert np.array_equal(p1.train_indices, p2.train_indices)
    assert np.array_equal(p1.test_indices, p2.test_indices)


def test_general_ratio_is_evenly_spaced():
    train, valid, test = DatasetPartitioner(0.25).split_indices(8)

    assert train.tolist() == [0, 4]
    assert test.tolist() == [1, 2, 3, 5, 6, 7]
    assert len(valid) == 0


def test_noise_split_depends_on_seed_only(id_table):
    a = DatasetPartitioner(0.7, inject_random_noise=True, seed=3).partition(id_table)
    b = DatasetPartitioner(0.7, inject_random_noise=True, seed=3).partition(id_table)
    c = DatasetPartitioner(0.7, inject_random_noise=True, seed=4).partition(id_table)

    assert a.train.num_rows == 70
    assert a.test.num_rows == 30
    assert np.array_equal(a.train_indices, b.train_indices)
    assert not np.array_equal(a.train_indices, c.train_indices)

    # disjoint + complete
    ids = sorted(a.train.column("id").to_pylist() + a.test.column("id").to_pylist())
    assert ids == list(range(100))


def test_validation_split_alternates():
    table = pa.table({"id": list(range(12)), "LABEL": [0, 1] * 6})
    p = DatasetPartitioner(0.5, pass_validation_dataset=True).partition(table)

    assert p.train.column("id").to_pylist() == [0, 2, 4, 6, 8, 10]
    assert p.valid.column("id").to_pylist() == [1, 5, 9]
    assert p.test.column("id").to_pylist() == [3, 7, 11]


def test_dedicated_test_table(id_table):
    test = id_table.slice(0, 10)
    p = DatasetPartitioner(0.5).partition(id_table, test)

    assert p.train.num_rows == 100
    assert p.test.num_rows == 10
    assert p.train_indices is None


@pytest.mark.parametrize("ratio", [0.0, 1.0, -0.5, 1.5])
def test_invalid_ratio(ratio):
    with pytest.raises(ConfigurationError):
        DatasetPartitioner(ratio).split_indices(10)


# ============================================================
# Weight emulation
# ============================================================
def test_duplication_counts():
    w = np.array([1.0, 2.0, 0.5, 0.0, np.nan, 1000.0, -1.0])
    counts = duplication_counts(w, max_duplication=100)

    assert counts.tolist() == [2, 4, 1, 0, 0, 100, 0]


def test_positive_weight_kept_at_least_once():
    w = np.array([1.0, 1.4, 300.0])
    counts = duplication_counts(w, max_duplication=5)
    assert (counts >= 1).all()
    assert counts.tolist() == [1, 1, 5]


def test_emulate_weights_preserves_label_distribution():
    labels = ["a"] * 10 + ["b"] * 10
    weights = [1.0] * 10 + [3.0] * 10
    table = pa.table({"x": np.arange(20.0), "w": weights, "LABEL": labels})

    out = emulate_weights(table, "w")
    values = out.column("LABEL").to_pylist()

    assert out.num_rows == 40
    assert values.count("b") == 3 * values.count("a")
    # every source row is present
    assert sorted(set(out.column("x").to_pylist())) == list(np.arange(20.0))


def test_emulate_weights_errors():
    table = pa.table({"w": [0.0, -1.0], "LABEL": [0, 1]})
    with pytest.raises(ConfigurationError):
        emulate_weights(table, "w")
    with pytest.raises(ConfigurationError):
        emulate_weights(table, "missing")
