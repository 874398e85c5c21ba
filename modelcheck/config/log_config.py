#!filepath: modelcheck/config/log_config.py
from pydantic import BaseModel


class LogConfig(BaseModel):
    # 空字符串 = 只输出 stderr
    dir: str = ""
    rotation: str = "1 day"
    retention: str = "30 days"
    level: str = "INFO"
