# modelcheck/config/training_config.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class Task(str, Enum):
    CLASSIFICATION = "classification"
    REGRESSION = "regression"
    RANKING = "ranking"


class TrainingConfig(BaseModel):
    """
    TrainingConfig（per learner / per test）

    - learner: key in the learner registry (modelcheck.model.learner)
    - features: None => every column except label / weight / group
    """

    learner: str = "gradient_boosted_trees"
    task: Task = Task.CLASSIFICATION
    label: str = "LABEL"
    features: Optional[List[str]] = None

    weight_column: Optional[str] = None
    ranking_group: Optional[str] = None

    # column -> "numerical" | "categorical" | "boolean", overrides dtype inference
    column_guide: Dict[str, str] = Field(default_factory=dict)

    hyperparameters: Dict[str, Any] = Field(default_factory=dict)
    seed: int = 1234

    @model_validator(mode="after")
    def _ranking_needs_group(self) -> "TrainingConfig":
        if self.task == Task.RANKING and not self.ranking_group:
            raise ValueError("ranking task requires 'ranking_group'")
        return self

    def reserved_columns(self) -> List[str]:
        cols = [self.label]
        if self.weight_column:
            cols.append(self.weight_column)
        if self.ranking_group:
            cols.append(self.ranking_group)
        return cols


class DeploymentConfig(BaseModel):
    # -> sklearn n_jobs
    num_threads: int = 1


class SyntheticDatasetOptions(BaseModel):
    """
    Options of the synthetic dataset generator adapter (sklearn.datasets).
    """

    num_examples: int = Field(default=1000, ge=2)
    num_numerical: int = Field(default=5, ge=1)
    num_categorical: int = Field(default=2, ge=0)
    num_categories: int = Field(default=5, ge=2)
    num_classes: int = Field(default=2, ge=2)
    missing_ratio: float = Field(default=0.0, ge=0.0, lt=1.0)
    noise: float = 0.1
    group_size: int = Field(default=10, ge=2)
    seed: int = 1234


class EvaluationOptions(BaseModel):
    task: Optional[Task] = None
    weight_column: Optional[str] = None
    ranking_group: Optional[str] = None
    ndcg_truncation: int = 5
