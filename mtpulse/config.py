"""
MTPulse 配置 Schema

manifest.yaml 提供默认值，运维覆盖文件按键深度合并后统一用 Pydantic 校验，
配置有误时在任何操作开始前即报错。
"""
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, field_validator

from mtpulse.lib.utils import deep_merge, load_yaml


# ============================================================
# 路径常量
# ============================================================
PACKAGE_DIR = Path(__file__).resolve().parent
MANIFEST_FILE = PACKAGE_DIR / "manifest.yaml"
CONFIG_ENV = "MTPULSE_CONFIG"


class ProxyDefaults(BaseModel):
    """mtproto-proxy 固定参数"""
    user: str = "nobody"
    stat_port: int = 8888
    worker_count: int = 1
    default_port: int = 443

    @field_validator("stat_port", "default_port")
    @classmethod
    def port_in_range(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"端口必须在 1-65535 之间: {v}")
        return v

    @field_validator("worker_count")
    @classmethod
    def workers_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("worker_count 至少为 1")
        return v


class ServiceOptions(BaseModel):
    """systemd unit 固定元数据"""
    restart: str = "always"
    run_as: str = "root"
    nofile_limit: int = 65536
    after: str = "network.target"
    wanted_by: str = "multi-user.target"
    log_lines: int = 50


class Paths(BaseModel):
    binary: Path = Path("/usr/local/bin/mtproto-proxy")
    config_dir: Path = Path("/etc/mtpulse")
    unit_dir: Path = Path("/etc/systemd/system")
    state_dir: Path = Path("/var/lib/mtpulse")
    build_dir: Path = Path("MTProxy")
    log_file: Optional[Path] = Path("/var/log/mtpulse.log")

    @property
    def secret_source(self) -> Path:
        return self.config_dir / "proxy-secret"

    @property
    def config_source(self) -> Path:
        return self.config_dir / "proxy-multi.conf"

    @property
    def public_ip_cache(self) -> Path:
        return self.config_dir / "public_ip"


class Sources(BaseModel):
    repository: str = "https://github.com/TelegramMessenger/MTProxy.git"
    proxy_secret_url: str = "https://core.telegram.org/getProxySecret"
    proxy_config_url: str = "https://core.telegram.org/getProxyConfig"
    public_ip_url: str = "https://api.ipify.org"


class BuildOptions(BaseModel):
    artifact: str = "objs/bin/mtproto-proxy"
    log_file: Path = Path("/tmp/mtpulse_make.log")
    poll_interval: float = 0.5
    log_tail_lines: int = 20


class Settings(BaseModel):
    """manifest.yaml 的顶层结构"""
    unit_name: str = "mtpulse"
    unit_description: str = "MTPulse MTProto Proxy (Official)"
    check_os: bool = True
    supported_os: List[str] = ["ubuntu", "debian"]
    packages: List[str] = []
    proxy: ProxyDefaults = ProxyDefaults()
    service: ServiceOptions = ServiceOptions()
    paths: Paths = Paths()
    sources: Sources = Sources()
    build: BuildOptions = BuildOptions()

    @field_validator("unit_name")
    @classmethod
    def unit_name_plain(cls, v: str) -> str:
        if not v or "/" in v or v.endswith(".service"):
            raise ValueError("unit_name 应为不含 .service 后缀的单个名称，如 'mtpulse'")
        return v

    @property
    def unit_path(self) -> Path:
        return self.paths.unit_dir / f"{self.unit_name}.service"


def load_settings(override_file: Optional[Path] = None) -> Settings:
    """加载默认配置并合并覆盖文件

    覆盖文件优先级: 参数 > 环境变量 MTPULSE_CONFIG

    Raises:
        pydantic.ValidationError: 配置不合法
        FileNotFoundError: 显式指定的覆盖文件不存在
    """
    raw = load_yaml(MANIFEST_FILE)

    if override_file is None and os.environ.get(CONFIG_ENV):
        override_file = Path(os.environ[CONFIG_ENV])

    if override_file is not None:
        if not override_file.exists():
            raise FileNotFoundError(f"配置文件不存在: {override_file}")
        raw = deep_merge(raw, load_yaml(override_file))

    return Settings.model_validate(raw)
