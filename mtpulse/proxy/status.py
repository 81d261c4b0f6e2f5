"""
Status Reporter - 派生状态与分享链接

安装状态不落盘，每次根据二进制是否存在和 systemd 状态计算；
活跃时从 unit 文件读回 ArgVector，拼出 tg://proxy 分享链接。
"""
import ipaddress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from mtpulse.config import Settings
from mtpulse.core.ports import INetworkClient, IServiceManager
from mtpulse.core.schema import InstallationState
from mtpulse.core.utils import logger
from mtpulse.proxy.descriptor import DescriptorStore


def connection_link(address: str, port: int, secret: str) -> str:
    """tg://proxy?server=<addr>&port=<port>&secret=<secret>"""
    query = urlencode({"server": address, "port": port, "secret": secret}, safe=":")
    return f"tg://proxy?{query}"


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class PublicAddressCache:
    """公网 IP 缓存

    首次成功查询后写入 config_dir/public_ip，之后直接读取；
    只有在 config_dir 已存在时才写缓存，卸载删除目录即失效。
    """

    def __init__(self, cache_file: Path, network: INetworkClient, lookup_url: str, timeout: float = 2):
        self.cache_file = cache_file
        self.network = network
        self.lookup_url = lookup_url
        self.timeout = timeout

    def get(self) -> Optional[str]:
        cached = self._read_cache()
        if cached:
            return cached

        address = self.network.fetch_text(self.lookup_url, timeout=self.timeout)
        if not address or not _is_ip(address):
            logger.debug(f"[Status] 公网 IP 查询失败: {address!r}")
            return None

        if self.cache_file.parent.is_dir():
            try:
                self.cache_file.write_text(address + "\n", encoding="utf-8")
            except OSError as e:
                logger.debug(f"[Status] 无法写入 IP 缓存: {e}")
        return address

    def _read_cache(self) -> Optional[str]:
        if not self.cache_file.exists():
            return None
        try:
            value = self.cache_file.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        return value if _is_ip(value) else None


@dataclass
class StatusView:
    state: InstallationState
    listen_port: Optional[int] = None
    secret: Optional[str] = None
    sponsor_tag: Optional[str] = None
    address: Optional[str] = None
    link: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state == InstallationState.ACTIVE


class StatusReporter:
    def __init__(
        self,
        settings: Settings,
        store: DescriptorStore,
        services: IServiceManager,
        address_cache: PublicAddressCache,
    ):
        self.settings = settings
        self.store = store
        self.services = services
        self.address_cache = address_cache

    def installation_state(self) -> InstallationState:
        if self.services.is_active(self.settings.unit_name):
            return InstallationState.ACTIVE
        if self.settings.paths.binary.exists():
            return InstallationState.INACTIVE
        return InstallationState.NOT_INSTALLED

    def report(self) -> StatusView:
        view = StatusView(state=self.installation_state())
        if not view.is_active:
            return view

        descriptor = self.store.read(self.settings.unit_name)
        if descriptor is None:
            return view

        argv = descriptor.argv
        view.listen_port = argv.listen_port
        view.secret = argv.secret
        view.sponsor_tag = argv.sponsor_tag
        view.address = self.address_cache.get()
        if view.address:
            view.link = connection_link(view.address, argv.listen_port, argv.secret)
        return view
