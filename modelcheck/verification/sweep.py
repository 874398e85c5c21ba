# modelcheck/verification/sweep.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pyarrow as pa

from modelcheck import logs
from modelcheck.config.harness_config import HarnessConfig
from modelcheck.config.training_config import (
    DeploymentConfig,
    EvaluationOptions,
    SyntheticDatasetOptions,
    Task,
    TrainingConfig,
)
from modelcheck.dataset.dataspec import DataSpec
from modelcheck.dataset.io import read_table, write_table
from modelcheck.dataset.synthetic import generate_synthetic_dataset
from modelcheck.evaluation.evaluator import EvaluationResult, evaluate
from modelcheck.model.learner import HyperParameterTemplate, Learner, predefined_hyperparameters
from modelcheck.utils.errors import ConfigurationError, SweepError
from modelcheck.utils.filesystem import FileSystem


@dataclass(frozen=True)
class SweepResult:
    template: HyperParameterTemplate
    evaluation: EvaluationResult


class HyperparameterSweepTester:
    """
    HyperparameterSweepTester

    For the learner of a base TrainingConfig:
    1) enumerate its predefined hyper-parameter templates
    2) assert their COUNT (adding / removing a template must be deliberate)
    3) train + evaluate one model per template on a fixed split
    4) optional floor on the primary metric (accuracy / NDCG)
    """

    def __init__(self, config: HarnessConfig, deployment: Optional[DeploymentConfig] = None):
        self.config = config
        self.deployment = deployment or DeploymentConfig()

    def run(
        self,
        base: TrainingConfig,
        train: pa.Table | str,
        test: pa.Table,
        expected_num_templates: int,
        *,
        min_accuracy: Optional[float] = None,
        evaluation: Optional[EvaluationOptions] = None,
    ) -> List[SweepResult]:
        templates = predefined_hyperparameters(base.learner)
        if len(templates) != expected_num_templates:
            raise SweepError(
                f"[Sweep] learner '{base.learner}' has {len(templates)} predefined templates "
                f"{[t.key for t in templates]}, expected {expected_num_templates}"
            )

        if min_accuracy is not None and base.task == Task.REGRESSION:
            raise ConfigurationError("[Sweep] accuracy floor is undefined for regression")

        # one dataspec for every template
        dataspec = DataSpec.build(read_table(train) if isinstance(train, str) else train, base)
        options = evaluation or EvaluationOptions(ranking_group=base.ranking_group)

        results: List[SweepResult] = []
        for template in templates:
            cfg = base.model_copy(
                update={"hyperparameters": {**base.hyperparameters, **template.parameters}}
            )
            model = Learner(cfg, self.deployment).train(train, dataspec=dataspec)
            result = evaluate(model, test, options)

            logs.info(f"[Sweep] {base.learner}/{template.key}: {result.describe()}")

            if min_accuracy is not None and not result.primary_metric >= min_accuracy:
                raise SweepError(
                    f"[Sweep] {base.learner}/{template.key} {result.primary_metric:.6f} "
                    f"< floor {min_accuracy}"
                )
            results.append(SweepResult(template=template, evaluation=result))

        return results

    # ------------------------------------------------------------------
    # Synthetic variants (own train / test files)
    # ------------------------------------------------------------------
    def run_synthetic_classification(
        self,
        learner: str,
        expected_num_templates: int,
        *,
        options: Optional[SyntheticDatasetOptions] = None,
        min_accuracy: Optional[float] = None,
    ) -> List[SweepResult]:
        base = TrainingConfig(learner=learner, task=Task.CLASSIFICATION, label="LABEL")
        return self._run_synthetic(base, options, expected_num_templates, min_accuracy)

    def run_synthetic_ranking(
        self,
        learner: str,
        expected_num_templates: int,
        *,
        options: Optional[SyntheticDatasetOptions] = None,
        min_ndcg: Optional[float] = None,
    ) -> List[SweepResult]:
        base = TrainingConfig(learner=learner, task=Task.RANKING, label="LABEL", ranking_group="GROUP")
        return self._run_synthetic(base, options, expected_num_templates, min_ndcg)

    def _run_synthetic(
        self,
        base: TrainingConfig,
        options: Optional[SyntheticDatasetOptions],
        expected_num_templates: int,
        floor: Optional[float],
    ) -> List[SweepResult]:
        options = options or SyntheticDatasetOptions()
        # one draw, first half train / second half test (same distribution)
        full = generate_synthetic_dataset(
            options.model_copy(update={"num_examples": 2 * options.num_examples}), task=base.task
        )
        train = full.slice(0, options.num_examples)
        test = full.slice(options.num_examples)

        with FileSystem.scoped_temp_dir(self.config.tmp_root, prefix="modelcheck_sweep_") as d:
            train_path = write_table(train, Path(d) / "train.csv", "csv")
            test_path = write_table(test, Path(d) / "test.csv", "csv")
            logs.info(f"[Sweep] synthetic {base.task.value} files: {train_path}, {test_path}")

            return self.run(
                base,
                f"csv:{train_path}",
                read_table(f"csv:{test_path}"),
                expected_num_templates,
                min_accuracy=floor,
            )
