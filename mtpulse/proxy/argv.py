"""
ArgVector 编解码

mtproto-proxy 的启动命令行是唯一的配置来源，这里把它在
「字符串」与「按 flag 命名的结构体」之间来回转换。

规则:
- serialize 固定 flag 顺序，同一个 ArgVector 总是得到完全相同的字符串
- parse 按 flag 名提取而非位置，缺少可选的 -P 视为无 Tag
- 缺少任何必需 flag、出现未知 flag 或字段不合法时返回 None
"""
import re
import shlex
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional

from mtpulse.core.errors import InvalidPort, InvalidTagFormat, ValidationError


HEX32 = re.compile(r"^[0-9a-f]{32}$")

# ── flag 定义（顺序即序列化顺序）────────────────────────────
FLAG_USER = "-u"
FLAG_STAT_PORT = "-p"
FLAG_LISTEN_PORT = "-H"
FLAG_SECRET = "-S"
FLAG_AES_PWD = "--aes-pwd"
FLAG_WORKERS = "-M"
FLAG_TAG = "-P"

_VALUE_FLAGS = (
    FLAG_USER, FLAG_STAT_PORT, FLAG_LISTEN_PORT, FLAG_SECRET,
    FLAG_AES_PWD, FLAG_WORKERS, FLAG_TAG,
)
_REQUIRED_FLAGS = (
    FLAG_USER, FLAG_STAT_PORT, FLAG_LISTEN_PORT, FLAG_SECRET,
    FLAG_AES_PWD, FLAG_WORKERS,
)


def is_valid_port(port: int) -> bool:
    return 1 <= port <= 65535


def is_hex32(value: str) -> bool:
    return bool(HEX32.match(value))


def _to_int(value: str) -> int:
    """只接受规范的 ASCII 十进制数字 (无符号、无前导零)"""
    if not (value.isascii() and value.isdigit()) or str(int(value)) != value:
        raise ValueError(f"非规范整数: {value!r}")
    return int(value)


@dataclass(frozen=True)
class ArgVector:
    """一次 mtproto-proxy 调用

    不可变值对象，修改通过 with_tag() 等方法返回新实例。
    """
    binary: Path
    user: str
    stat_port: int
    listen_port: int
    secret: str
    secret_source_path: Path
    config_source_path: Path
    worker_count: int
    sponsor_tag: Optional[str] = None

    def __post_init__(self) -> None:
        if not is_valid_port(self.listen_port):
            raise InvalidPort(f"监听端口超出范围 1-65535: {self.listen_port}")
        if not is_valid_port(self.stat_port):
            raise InvalidPort(f"统计端口超出范围 1-65535: {self.stat_port}")
        if not is_hex32(self.secret):
            raise ValidationError("secret 必须是 32 位小写十六进制字符")
        if self.sponsor_tag is not None and not is_hex32(self.sponsor_tag):
            raise InvalidTagFormat("Tag 必须是 32 位小写十六进制字符")
        if self.worker_count < 1:
            raise ValidationError(f"worker 数量至少为 1: {self.worker_count}")

    def with_tag(self, tag: Optional[str]) -> "ArgVector":
        """返回替换 (或清除, tag=None) Tag 后的新实例"""
        return replace(self, sponsor_tag=tag)

    def to_tokens(self) -> List[str]:
        tokens = [
            str(self.binary),
            FLAG_USER, self.user,
            FLAG_STAT_PORT, str(self.stat_port),
            FLAG_LISTEN_PORT, str(self.listen_port),
            FLAG_SECRET, self.secret,
            FLAG_AES_PWD, str(self.secret_source_path),
            str(self.config_source_path),
            FLAG_WORKERS, str(self.worker_count),
        ]
        if self.sponsor_tag:
            tokens += [FLAG_TAG, self.sponsor_tag]
        return tokens


def serialize(argv: ArgVector) -> str:
    """ArgVector -> 命令行字符串（确定性输出）"""
    return " ".join(shlex.quote(token) for token in argv.to_tokens())


def parse(line: str) -> Optional[ArgVector]:
    """命令行字符串 -> ArgVector，格式不合法返回 None"""
    try:
        tokens = shlex.split(line)
    except ValueError:
        return None
    if not tokens:
        return None

    binary, rest = tokens[0], tokens[1:]
    values: Dict[str, str] = {}
    positionals: List[str] = []

    i = 0
    while i < len(rest):
        token = rest[i]
        if token in _VALUE_FLAGS:
            if token in values or i + 1 >= len(rest):
                return None
            values[token] = rest[i + 1]
            i += 2
        elif token.startswith("-"):
            # 未知 flag
            return None
        else:
            positionals.append(token)
            i += 1

    # proxy-multi.conf 是唯一的位置参数
    if len(positionals) != 1:
        return None
    if any(flag not in values for flag in _REQUIRED_FLAGS):
        return None

    try:
        return ArgVector(
            binary=Path(binary),
            user=values[FLAG_USER],
            stat_port=_to_int(values[FLAG_STAT_PORT]),
            listen_port=_to_int(values[FLAG_LISTEN_PORT]),
            secret=values[FLAG_SECRET],
            secret_source_path=Path(values[FLAG_AES_PWD]),
            config_source_path=Path(positionals[0]),
            worker_count=_to_int(values[FLAG_WORKERS]),
            sponsor_tag=values.get(FLAG_TAG),
        )
    except (ValueError, ValidationError):
        return None
