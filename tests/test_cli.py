# tests/test_cli.py
import pytest
import yaml
from typer.testing import CliRunner

from modelcheck import __version__
from modelcheck.cli import app
from modelcheck.verification.metric_condition import MetricRegressionHarness

runner = CliRunner()


@pytest.fixture
def harness_file(tmp_path):
    data = {
        "golden_dir": str(tmp_path / "golden"),
        "tmp_root": str(tmp_path / "tmp"),
        "dataset_root": str(tmp_path / "dataset"),
        "log": {"level": "ERROR"},
    }
    path = tmp_path / "harness.yml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.output


def test_learners():
    result = runner.invoke(app, ["learners"])
    assert result.exit_code == 0
    assert "decision_tree" in result.output


def test_run_session(tmp_path, harness_file):
    session_file = tmp_path / "session.yml"
    session_file.write_text(
        yaml.safe_dump({
            "training": {"learner": "decision_tree", "hyperparameters": {"max_depth": 4}},
            "synthetic_dataset": {"num_examples": 200, "seed": 9},
        }),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["run", str(session_file), "-c", str(harness_file)])

    assert result.exit_code == 0, result.output
    assert "accuracy" in result.output


def test_run_missing_session(tmp_path, harness_file):
    result = runner.invoke(app, ["run", str(tmp_path / "nope.yml"), "-c", str(harness_file)])
    assert result.exit_code != 0


def test_recalibrate(make_harness_config, tmp_path):
    ledger = tmp_path / "ledger"
    metrics = MetricRegressionHarness(make_harness_config(metric_dump_dir=str(ledger)), test_name="t1")
    for value in (0.5, 0.6):
        metrics.assert_metric("acc", value, 0.0, 0.0)

    result = runner.invoke(app, ["recalibrate", str(ledger), "--num-std", "2"])

    assert result.exit_code == 0, result.output
    assert "acc" in result.output
    assert "0.550000" in result.output
