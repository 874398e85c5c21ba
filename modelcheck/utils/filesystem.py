#!filepath: modelcheck/utils/filesystem.py
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from modelcheck.utils.logger import logs
from modelcheck.utils.errors import DatasetIOError


class FileSystem:
    """
    统一文件系统工具
    - 自动创建目录
    - 安全写入文件（临时文件 → rename）
    - 删除文件/目录
    - 作用域临时目录（所有退出路径都会清理）
    """

    @staticmethod
    def ensure_dir(path: str | Path) -> Path:
        """
        创建目录（如果不存在）
        """
        p = Path(path)
        if not p.exists():
            p.mkdir(parents=True, exist_ok=True)
            logs.debug(f"[FS] 创建目录: {p}")
        return p

    @staticmethod
    def check_writable(path: str | Path) -> Path:
        """
        目录必须存在且可写，否则 DatasetIOError
        """
        p = Path(path)
        if not p.is_dir() or not os.access(p, os.W_OK):
            raise DatasetIOError(f"[FS] directory not writable: {p}")
        return p

    @staticmethod
    def safe_write(path: str | Path, data: bytes) -> None:
        """
        原子写入（避免部分写入导致文件损坏）
            1) 先写入 tmp 文件
            2) rename → 正式文件
        """
        path = Path(path)
        FileSystem.ensure_dir(path.parent)

        tmp_path = path.with_suffix(path.suffix + ".tmp")

        with open(tmp_path, "wb") as f:
            f.write(data)

        tmp_path.replace(path)
        logs.debug(f"[FS] 原子写入完成: {path}")

    @staticmethod
    def remove(path: str | Path) -> None:
        """
        安全删除文件/目录
        """
        p = Path(path)

        if not p.exists():
            logs.debug(f"[FS] 路径不存在，无需删除: {p}")
            return

        if p.is_dir():
            shutil.rmtree(p)
            logs.debug(f"[FS] 删除目录: {p}")
        else:
            p.unlink()
            logs.debug(f"[FS] 删除文件: {p}")

    @staticmethod
    def scan_dir(path: str | Path, suffix: Optional[str] = None) -> List[Path]:
        """
        返回目录下所有文件（可按后缀过滤）
        """
        p = Path(path)
        if not p.exists():
            return []

        return sorted(
            f for f in p.iterdir()
            if f.is_file() and (suffix is None or f.suffix == suffix)
        )

    @staticmethod
    def make_temp_dir(root: str | Path | None = None, prefix: str = "modelcheck_") -> Path:
        """
        在 root（默认系统 tmp）下创建私有临时目录
        """
        if root is not None:
            FileSystem.ensure_dir(root)
        try:
            return Path(tempfile.mkdtemp(prefix=prefix, dir=root))
        except OSError as e:
            raise DatasetIOError(f"[FS] cannot create temp dir under {root}: {e}") from e

    @staticmethod
    @contextmanager
    def scoped_temp_dir(root: str | Path | None = None, prefix: str = "modelcheck_") -> Iterator[Path]:
        """
        with FileSystem.scoped_temp_dir() as d: ...
        退出（包括异常）时删除目录
        """
        d = FileSystem.make_temp_dir(root, prefix)
        try:
            yield d
        finally:
            FileSystem.remove(d)
