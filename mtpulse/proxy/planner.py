"""
Configuration Planner - 计算目标 ArgVector

纯函数: plan(旧 ArgVector | None, 意图) -> 新 ArgVector
不读写磁盘，不与操作员交互；替换已有 Tag 的确认由 LifecycleController 负责。

两种意图:
- FreshInstall: 全新安装，固定参数取默认值，生成新 secret，无 Tag
- TagChange:    只改 Tag，其他字段原样保留；空字符串表示移除 Tag
"""
import secrets
from dataclasses import dataclass
from typing import Optional, Union

from mtpulse.config import Settings
from mtpulse.core.errors import InvalidPort, InvalidTagFormat, NoExistingConfiguration
from mtpulse.proxy.argv import ArgVector, is_hex32, is_valid_port


@dataclass(frozen=True)
class FreshInstall:
    listen_port: int
    # 为 None 时生成新的随机 secret
    secret: Optional[str] = None


@dataclass(frozen=True)
class TagChange:
    # "" 表示移除
    tag: str


PlanIntent = Union[FreshInstall, TagChange]


def generate_secret() -> str:
    """16 字节密码学随机数，十六进制编码为 32 字符"""
    return secrets.token_hex(16)


def parse_port(raw: str, default: Optional[int] = None) -> int:
    """校验操作员输入的端口

    Args:
        raw: 原始输入
        default: 输入为空时使用的默认端口

    Raises:
        InvalidPort: 非数字或超出 1-65535
    """
    text = raw.strip()
    if not text and default is not None:
        return default
    if not (text.isascii() and text.isdigit()):
        raise InvalidPort(f"端口必须是数字: {raw!r}")
    port = int(text)
    if not is_valid_port(port):
        raise InvalidPort(f"端口必须在 1-65535 之间: {port}")
    return port


def normalize_tag(raw: str) -> Optional[str]:
    """规范化 Tag 输入，空字符串返回 None (移除)

    Raises:
        InvalidTagFormat: 不是 32 位十六进制
    """
    tag = raw.strip().lower()
    if not tag:
        return None
    if not is_hex32(tag):
        raise InvalidTagFormat(f"Tag 必须是 32 位十六进制字符: {raw!r}")
    return tag


def plan(existing: Optional[ArgVector], intent: PlanIntent, settings: Settings) -> ArgVector:
    """根据旧配置和意图计算新的 ArgVector"""
    if isinstance(intent, FreshInstall):
        if not is_valid_port(intent.listen_port):
            raise InvalidPort(f"端口必须在 1-65535 之间: {intent.listen_port}")
        # 安装是「重建」而非「合并」，不参考 existing
        return ArgVector(
            binary=settings.paths.binary,
            user=settings.proxy.user,
            stat_port=settings.proxy.stat_port,
            listen_port=intent.listen_port,
            secret=intent.secret or generate_secret(),
            secret_source_path=settings.paths.secret_source,
            config_source_path=settings.paths.config_source,
            worker_count=settings.proxy.worker_count,
            sponsor_tag=None,
        )

    if isinstance(intent, TagChange):
        if existing is None:
            raise NoExistingConfiguration("尚未安装代理，无法修改 Tag")
        return existing.with_tag(normalize_tag(intent.tag))

    raise TypeError(f"未知的意图类型: {type(intent).__name__}")
