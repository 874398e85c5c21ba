#!filepath: modelcheck/config/harness_config.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .log_config import LogConfig


def project_root() -> Path:
    """
    返回项目根目录（基于当前文件位置推导）:
    modelcheck/config/harness_config.py → modelcheck/config → modelcheck → project_root
    """
    return Path(__file__).resolve().parents[2]


# env var -> field name
_ENV_OVERRIDES: Dict[str, str] = {
    "MODELCHECK_CHECK_GOLD": "check_gold",
    "MODELCHECK_METRIC_DUMP_DIR": "metric_dump_dir",
    "MODELCHECK_RUNS_PER_TEST": "runs_per_test",
    "MODELCHECK_EPSILON": "epsilon",
    "MODELCHECK_DATASET_ROOT": "dataset_root",
    "MODELCHECK_GOLDEN_DIR": "golden_dir",
    "MODELCHECK_TMP_ROOT": "tmp_root",
}


class HarnessConfig(BaseModel):
    """
    HarnessConfig（PROCESS-SCOPED / FROZEN）

    Semantics:
    - Built ONCE when the test runner starts
    - Passed by reference into every TestSession
    - Never mutated afterwards (no hidden module state)
    """

    model_config = ConfigDict(frozen=True)

    # golden value / golden model checking
    check_gold: bool = False

    # 非空 => DUMP mode（metric 写入 CSV ledger，不再断言）
    metric_dump_dir: str = ""

    # seed-stability runs（外部循环驱动）
    runs_per_test: int = Field(default=1, ge=1)

    # equivalence tolerance
    epsilon: float = Field(default=1e-5, ge=0.0)
    batch_size: int = Field(default=20, ge=1)

    # dirs
    dataset_root: str = "test_data/dataset"
    golden_dir: str = "test_data/golden"
    tmp_root: Optional[str] = None

    # training interruption
    cancellation_grace_seconds: float = Field(default=10.0, gt=0.0)

    log: LogConfig = Field(default_factory=LogConfig)

    @property
    def dump_mode(self) -> bool:
        return bool(self.metric_dump_dir)

    def resolve(self, path: str) -> Path:
        """
        相对路径一律相对项目根目录解析（不依赖当前工作目录）
        """
        p = Path(path)
        return p if p.is_absolute() else project_root() / p

    @classmethod
    def load(cls, path: str | None = None) -> "HarnessConfig":
        """
        加载 YAML 配置 + .env + MODELCHECK_* 环境变量
        - 默认使用 modelcheck/config/base.yml
        - 环境变量优先级最高
        """
        root = project_root()

        # 1) 先加载 .env（在项目根目录下）
        load_dotenv(root / ".env")

        # 2) 决定配置文件路径
        if path is None:
            path = str(Path(__file__).resolve().parent / "base.yml")

        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        # 3) 读取 YAML
        with open(path, "r", encoding="utf-8") as f:
            raw: Dict[str, Any] = yaml.safe_load(f) or {}

        # 4) env 覆盖
        for env_name, field in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is not None:
                raw[field] = value

        return cls(**raw)
