# tests/model/test_model.py
import json

import numpy as np
import pyarrow.compute as pc
import pytest

from modelcheck.config.training_config import TrainingConfig
from modelcheck.dataset.dataspec import DataSpec
from modelcheck.model.learner import Learner, train
from modelcheck.model.model import ARTIFACT_FILENAME, MODEL_FILENAME, SklearnModel
from modelcheck.utils.errors import EquivalenceError, SerializationError


@pytest.fixture
def model(classification_table) -> SklearnModel:
    cfg = TrainingConfig(learner="random_forest", hyperparameters={"n_estimators": 8, "max_depth": 4})
    return train(cfg, classification_table)


def test_bytes_round_trip(model, classification_table):
    reloaded = SklearnModel.deserialize(model.serialize())

    assert np.array_equal(model.predict(classification_table), reloaded.predict(classification_table))
    assert reloaded.dataspec == model.dataspec


def test_deserialize_garbage():
    with pytest.raises(SerializationError) as e:
        SklearnModel.deserialize(b"definitely not a model")

    assert e.value.path == "round-trip"
    assert isinstance(e.value, EquivalenceError)
    assert isinstance(e.value, AssertionError)


def test_directory_round_trip(model, classification_table, tmp_path):
    model.save(tmp_path / "m")

    assert (tmp_path / "m" / MODEL_FILENAME).exists()
    artifact = json.loads((tmp_path / "m" / ARTIFACT_FILENAME).read_text())
    assert artifact["learner"] == "random_forest"
    assert artifact["dataspec"]["label_classes"] == ["c0", "c1", "c2"]

    reloaded = SklearnModel.load(tmp_path / "m")
    assert np.array_equal(model.predict(classification_table), reloaded.predict(classification_table))


def test_load_missing_directory(tmp_path):
    with pytest.raises(SerializationError) as e:
        SklearnModel.load(tmp_path / "missing")
    assert e.value.path == "round-trip:directory"


def test_predict_is_pure(model, classification_table):
    a = model.predict(classification_table, 5, 25)
    model.predict(classification_table)
    b = model.predict(classification_table, 5, 25)

    assert np.array_equal(a, b)
    assert np.array_equal(a, model.predict(classification_table)[5:25])


def test_unseen_class_gets_zero_probability(classification_table):
    cfg = TrainingConfig(learner="decision_tree", hyperparameters={"max_depth": 3})
    spec = DataSpec.build(classification_table, cfg)
    subset = classification_table.filter(pc.not_equal(classification_table.column("LABEL"), "c2"))

    model = Learner(cfg).train(subset, dataspec=spec)
    proba = model.predict(classification_table)

    assert proba.shape[1] == 3
    assert (proba[:, 2] == 0.0).all()
    assert np.allclose(proba.sum(axis=1), 1.0)


def test_structure_and_importances(model):
    structure = model.structure()

    assert structure["estimator"] == "RandomForestClassifier"
    assert len(structure["trees"]) == 8
    assert structure["features"] == list(model.features)

    importances = model.variable_importances()
    scores = [s for _, s in importances]
    assert scores == sorted(scores, reverse=True)
    assert {n for n, _ in importances} == set(model.features)


def test_describe(model):
    assert "RandomForestClassifier" in model.describe()
    full = model.describe(full=True)
    assert "Tree #0" in full
    assert "Tree #7" in full


def test_linear_structure(binary_table):
    model = train(TrainingConfig(learner="linear"), binary_table)
    structure = model.structure()

    assert "trees" not in structure
    assert len(structure["linear"]["coef"][0]) == len(model.features)
    assert len(model.variable_importances()) == len(model.features)
