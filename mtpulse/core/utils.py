"""
工具函数
"""
import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logger(log_file: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """配置全局日志，终端输出 INFO（debug 模式输出 DEBUG），文件输出 DEBUG"""
    _logger = logging.getLogger("mtpulse")
    _logger.setLevel(logging.DEBUG)

    # 避免重复添加 handler
    if _logger.handlers:
        # 如果 debug 模式，更新已有 console handler 的级别
        if debug:
            for h in _logger.handlers:
                if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
                    h.setLevel(logging.DEBUG)
        return _logger

    # 终端 Handler (INFO 级别，debug 模式输出 DEBUG)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(console_handler)

    # 文件 Handler (DEBUG 级别，详细日志)
    # 日志目录不可写时（非 root 运行）只保留终端输出
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            _logger.warning(f"  -> [WARN] 无法写入日志文件 {log_file}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "[%(asctime)s] [%(levelname)s] [%(module)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
            _logger.addHandler(file_handler)

    return _logger


logger = logging.getLogger("mtpulse")


def tail_text(text: str, lines: int = 20) -> str:
    """取文本最后 N 行"""
    return "\n".join(text.strip().splitlines()[-lines:])


def read_os_release(path: Path = Path("/etc/os-release")) -> dict:
    """解析 /etc/os-release 为字典，文件不存在返回空字典"""
    if not path.exists():
        return {}
    info = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key] = value.strip().strip('"').strip("'")
    return info
