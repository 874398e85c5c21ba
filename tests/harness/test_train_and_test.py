# tests/harness/test_train_and_test.py
import numpy as np
import pyarrow as pa
import pytest

from modelcheck.config.training_config import SyntheticDatasetOptions, Task
from modelcheck.dataset.dataspec import Semantic
from modelcheck.dataset.io import write_table
from modelcheck.harness.train_and_test import (
    configure_for_synthetic_dataset,
    effective_dataset_root_directory,
    evaluate_model,
    load_datasets,
    post_training_checks,
    prepare_dataset,
    train_and_evaluate_model,
    train_model,
    variable_importance_rank,
)
from modelcheck.utils.errors import ConfigurationError, DatasetIOError, GoldenModelError
from modelcheck.verification.golden import GoldenModelComparator
from modelcheck.verification.metric_condition import MetricRegressionHarness


def _weighted_table(n: int = 120) -> pa.Table:
    rng = np.random.default_rng(4)
    x = rng.normal(size=n)
    return pa.table({
        "x": x,
        "y": rng.normal(size=n),
        "W": pa.array(np.where(np.arange(n) % 3 == 0, 2.0, 1.0)),
        "LABEL": pa.array(["pos" if v > 0 else "neg" for v in x]),
    })


# ============================================================
# Dataset preparation
# ============================================================
def test_prepare_synthetic(make_session):
    with make_session() as session:
        prepare_dataset(session)

        assert session.dataspec is not None
        assert session.train_dataset.num_rows == 150
        assert session.test_dataset.num_rows == 150
        assert session.valid_dataset is None


def test_prepare_with_validation(make_session):
    with make_session(pass_validation_dataset=True, split_train_ratio=0.6) as session:
        prepare_dataset(session)

        assert session.train_dataset.num_rows == 180
        assert session.valid_dataset.num_rows + session.test_dataset.num_rows == 120


def test_dataset_from_root_directory(make_session, make_harness_config, tmp_path):
    harness = make_harness_config()
    write_table(_weighted_table(), tmp_path / "dataset" / "weighted.csv", "csv")
    write_table(_weighted_table(40), tmp_path / "dataset" / "weighted_test.csv", "csv")

    with make_session(
        harness=harness,
        dataset_filename="csv:weighted.csv",
        dataset_test_filename="weighted_test.csv",
    ) as session:
        assert effective_dataset_root_directory(session) == tmp_path / "dataset"
        primary, test = load_datasets(session)
        assert primary.num_rows == 120
        assert test.num_rows == 40

        prepare_dataset(session)
        # dedicated test file => whole primary dataset is training data
        assert session.train_dataset.num_rows == 120
        assert session.test_dataset.num_rows == 40


def test_session_dataset_root_overrides_harness(make_session, tmp_path):
    other = tmp_path / "other_root"
    write_table(_weighted_table(), other / "d.parquet", "parquet")

    with make_session(dataset_root_directory=str(other), dataset_filename="d.parquet") as session:
        primary, test = load_datasets(session)

    assert primary.num_rows == 120
    assert test is None


def test_missing_dataset(make_session):
    with make_session(dataset_filename="csv:missing.csv") as session:
        with pytest.raises(DatasetIOError):
            prepare_dataset(session)

    with make_session(synthetic_dataset=None) as session:
        with pytest.raises(ConfigurationError):
            prepare_dataset(session)

def test_guide_file_overrides_column_semantics(make_session, make_harness_config, tmp_path):
    table = _weighted_table().append_column("store", pa.array([i % 4 for i in range(120)]))
    write_table(table, tmp_path / "dataset" / "stores.csv", "csv")
    (tmp_path / "dataset" / "stores_guide.yml").write_text("store: categorical\nx: numerical\n")

    with make_session(
        harness=make_harness_config(),
        dataset_filename="csv:stores.csv",
        guide_filename="stores_guide.yml",
    ) as session:
        session.training = session.training.model_copy(update={"column_guide": {"x": "categorical"}})
        prepare_dataset(session)

        store = session.dataspec.columns["store"]
        assert store.semantic == Semantic.CATEGORICAL
        assert store.vocabulary == ("0", "1", "2", "3")
        # explicit training config wins over the file
        assert session.dataspec.columns["x"].semantic == Semantic.CATEGORICAL

        train_model(session)
        assert session.model.dataspec.columns["store"].semantic == Semantic.CATEGORICAL


def test_bad_guide_file(make_session, make_harness_config, tmp_path):
    write_table(_weighted_table(), tmp_path / "dataset" / "weighted.csv", "csv")
    (tmp_path / "dataset" / "list_guide.yml").write_text("- x\n- y\n")

    with make_session(harness=make_harness_config(), dataset_filename="csv:weighted.csv",
                      guide_filename="missing_guide.yml") as session:
        with pytest.raises(DatasetIOError):
            prepare_dataset(session)

    with make_session(harness=make_harness_config(), dataset_filename="csv:weighted.csv",
                      guide_filename="list_guide.yml") as session:
        with pytest.raises(ConfigurationError):
            prepare_dataset(session)


def test_weight_emulation(make_session, make_harness_config, tmp_path):
    write_table(_weighted_table(), tmp_path / "dataset" / "weighted.csv", "csv")

    with make_session(
        harness=make_harness_config(),
        dataset_filename="csv:weighted.csv",
        emulate_weight_with_duplication=True,
    ) as session:
        session.training = session.training.model_copy(update={"weight_column": "W"})
        prepare_dataset(session)

        # ratio 0.5 -> even rows; rows 0, 6, 12, ... (i % 3 == 0) have weight 2
        expected = sum(2 if i % 3 == 0 else 1 for i in range(0, 120, 2))
        assert session.train_dataset.num_rows == expected
        assert "W" not in session.dataspec.features

        result = train_and_evaluate_model(session)
        assert result.num_examples == 60


def test_weight_emulation_requires_weight_column(make_session):
    with make_session(emulate_weight_with_duplication=True) as session:
        with pytest.raises(ConfigurationError):
            prepare_dataset(session)


def test_configure_for_synthetic_dataset(make_session):
    with make_session(dataset_filename="csv:whatever.csv", task=Task.RANKING) as session:
        configure_for_synthetic_dataset(session, SyntheticDatasetOptions(num_examples=100, seed=2))

        assert session.dataset_filename is None
        assert session.training.label == "LABEL"
        assert session.training.ranking_group == "GROUP"
        assert session.evaluation_options.ranking_group == "GROUP"

        result = train_and_evaluate_model(session)
        assert result.task == Task.RANKING
        assert not np.isnan(result.ndcg)


# ============================================================
# Full flow
# ============================================================
@pytest.mark.parametrize(
    "learner, task, hp",
    [
        ("decision_tree", Task.CLASSIFICATION, {"max_depth": 5}),
        ("random_forest", Task.CLASSIFICATION, {"n_estimators": 10}),
        ("gradient_boosted_trees", Task.REGRESSION, {"n_estimators": 10}),
        ("linear", Task.CLASSIFICATION, {}),
        ("gradient_boosted_trees", Task.RANKING, {"n_estimators": 10}),
    ],
)
def test_train_and_evaluate(make_session, learner, task, hp):
    with make_session(learner=learner, task=task, hyperparameters=hp) as session:
        result = train_and_evaluate_model(session)

        assert session.model is not None
        assert session.training_duration is not None
        assert session.evaluation is result
        assert result.task == task
        assert not np.isnan(result.primary_metric)


def test_metric_assertion_on_session(make_session, make_harness_config):
    harness = make_harness_config()
    with make_session(harness=harness, learner="random_forest", hyperparameters={"n_estimators": 20}) as session:
        result = train_and_evaluate_model(session)

    metrics = MetricRegressionHarness(harness)
    metrics.assert_metric("accuracy", result.accuracy, 0.75, 0.25)


def test_evaluation_override_task(make_session):
    with make_session(evaluation_override_task=Task.REGRESSION) as session:
        result = train_and_evaluate_model(session)

    assert result.task == Task.REGRESSION
    assert not np.isnan(result.rmse)


def test_post_training_checks_require_model(make_session):
    with make_session() as session:
        prepare_dataset(session)
        with pytest.raises(ConfigurationError):
            post_training_checks(session)
        with pytest.raises(ConfigurationError):
            evaluate_model(session)


def test_check_model_disabled_skips_engines(make_session, monkeypatch):
    import modelcheck.harness.train_and_test as tt

    def _never(*args, **kwargs):
        raise AssertionError("engine check ran")

    monkeypatch.setattr(tt.EquivalenceChecker, "check_generic_engines", _never)

    with make_session(check_model=False) as session:
        train_and_evaluate_model(session)


def test_golden_model_flow(make_session, make_harness_config):
    harness = make_harness_config(check_gold=True)
    hp = {"n_estimators": 5}

    with make_session(harness=harness, learner="gradient_boosted_trees", hyperparameters=hp) as session:
        prepare_dataset(session)
        train_model(session)
        GoldenModelComparator(harness).save_golden(session.model, "gbt_synthetic")

    with make_session(
        harness=harness, learner="gradient_boosted_trees", hyperparameters=hp, golden_model_name="gbt_synthetic"
    ) as session:
        train_and_evaluate_model(session)

    with make_session(
        harness=harness,
        learner="gradient_boosted_trees",
        hyperparameters={"n_estimators": 6},
        golden_model_name="gbt_synthetic",
    ) as session:
        with pytest.raises(GoldenModelError):
            train_and_evaluate_model(session)


def test_variable_importance_rank(make_session):
    with make_session(learner="random_forest", hyperparameters={"n_estimators": 10}) as session:
        train_and_evaluate_model(session)
        model = session.model

    top = model.variable_importances()[0][0]
    assert variable_importance_rank(top, model) == 0
    assert variable_importance_rank("not_a_feature", model) == -1
