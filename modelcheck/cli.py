#!filepath: modelcheck/cli.py
from pathlib import Path
from typing import Optional

import typer
from rich import print
from rich.table import Table

from modelcheck import Logging, __version__
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.harness.session import SessionConfig, TestSession
from modelcheck.harness.train_and_test import train_and_evaluate_model
from modelcheck.model.learner import available_learners, predefined_hyperparameters
from modelcheck.verification.metric_condition import recalibrate as recalibrate_ledger

app = typer.Typer(help="modelcheck model verification harness CLI")


def _load_config(config: Optional[Path]) -> HarnessConfig:
    cfg = HarnessConfig.load(str(config) if config else None)
    Logging.from_config(cfg.log)
    return cfg


@app.command()
def version():
    print(f"v{__version__}")


@app.command()
def learners():
    """
    列出已注册 learner 及其预定义超参数模板
    """
    table = Table(title="learners")
    table.add_column("learner")
    table.add_column("templates")
    for name in available_learners():
        table.add_row(name, ", ".join(t.key for t in predefined_hyperparameters(name)))
    print(table)


@app.command()
def run(
    session_file: Path,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="harness yaml"),
):
    """
    prepare -> train -> post-training checks -> evaluate
    """
    harness = _load_config(config)
    session_cfg = SessionConfig.load(session_file)

    print(f"[green]Running session {session_file}[/green]")

    with TestSession.from_config(session_cfg, harness) as session:
        result = train_and_evaluate_model(session)

        table = Table(title=f"evaluation ({session.training.learner})")
        table.add_column("metric")
        table.add_column("value", justify="right")
        for k, v in result.to_dict().items():
            table.add_row(k, f"{v:.6f}" if isinstance(v, float) else str(v))
        table.add_row("training_duration", f"{session.training_duration:.3f}s")
        print(table)


@app.command()
def recalibrate(
    ledger_dir: Path,
    num_std: float = typer.Option(3.0, help="margin = num_std * std"),
):
    """
    DUMP 模式 ledger -> 建议的 center / margin
    """
    suggestions = recalibrate_ledger(ledger_dir, num_std)

    table = Table(title=f"recalibration ({ledger_dir})")
    for col in ("test_name", "metric_name", "count", "center", "margin"):
        table.add_column(col)
    for _, row in suggestions.iterrows():
        table.add_row(
            str(row["test_name"]),
            str(row["metric_name"]),
            str(int(row["count"])),
            f"{row['center']:.6f}",
            f"{row['margin']:.6f}",
        )
    print(table)


if __name__ == "__main__":
    app()

# python -m modelcheck.cli run session.yml
