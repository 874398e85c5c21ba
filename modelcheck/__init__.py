#!filepath: modelcheck/__init__.py

from .utils.logger import Logging, logs
from .utils.filesystem import FileSystem
from .config.harness_config import HarnessConfig

__version__ = "0.1.0"

# alias 简化调用
fs = FileSystem

__all__ = [
    "logs", "Logging",
    "fs",
    "HarnessConfig",
    "__version__",
]
