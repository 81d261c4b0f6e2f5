"""
端口（接口）定义
所有与外部世界交互的能力都在这里声明：
命令执行、状态标记、systemd 服务层、编译、系统包安装、网络、操作员交互
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence


@dataclass
class CommandResult:
    """命令执行结果"""
    returncode: int
    stdout: str
    stderr: str
    command: str


class ICommandRunner(ABC):
    """命令执行接口"""

    @abstractmethod
    def run(
        self,
        cmd: List[str] | str,
        cwd: Optional[Path] = None,
        timeout: Optional[int] = None,
        check: bool = True,
        shell: bool = False,
        capture_output: bool = True,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...

    @abstractmethod
    def run_realtime(
        self,
        cmd: List[str],
        cwd: Optional[Path] = None,
    ) -> int:
        """实时输出的命令执行，返回 returncode"""
        ...


class IStateManager(ABC):
    """状态持久化接口（主机级一次性任务的完成标记）"""

    @abstractmethod
    def is_completed(self, key: str) -> bool:
        """检查指定任务是否已完成"""
        ...

    @abstractmethod
    def mark_completed(self, key: str) -> None:
        """标记指定任务为已完成"""
        ...

    @abstractmethod
    def clear(self, key: str) -> None:
        """清除指定任务的完成状态"""
        ...


class IServiceManager(ABC):
    """受监管服务层接口 (systemd)

    unit 文件本身由 DescriptorStore 写入，这里只负责控制面。
    """

    @abstractmethod
    def is_active(self, unit: str) -> bool:
        ...

    @abstractmethod
    def enable(self, unit: str) -> None:
        ...

    @abstractmethod
    def disable(self, unit: str) -> None:
        ...

    @abstractmethod
    def start(self, unit: str) -> None:
        ...

    @abstractmethod
    def stop(self, unit: str) -> None:
        ...

    @abstractmethod
    def restart(self, unit: str) -> None:
        ...

    @abstractmethod
    def reload_definitions(self) -> None:
        """重新加载所有 unit 定义 (daemon-reload)"""
        ...

    @abstractmethod
    def status_text(self, unit: str) -> str:
        """人类可读的状态输出"""
        ...

    @abstractmethod
    def tail_logs(self, unit: str, lines: int = 50) -> str:
        """最近 N 行服务日志"""
        ...


class IBinaryBuilder(ABC):
    """代理二进制编译接口"""

    @abstractmethod
    def build(self) -> Path:
        """克隆 + 编译，返回产物路径

        Raises:
            BuildFailure: 编译失败或产物缺失
        """
        ...

    @abstractmethod
    def cleanup(self) -> None:
        """删除本地源码树"""
        ...


class IPackageInstaller(ABC):
    """系统包安装接口"""

    @abstractmethod
    def ensure(self, packages: Sequence[str]) -> bool:
        """确保系统包已安装（每台主机只执行一次）"""
        ...


class INetworkClient(ABC):
    """网络访问接口"""

    @abstractmethod
    def download(self, url: str, dest: Path, timeout: float = 30) -> bool:
        """下载 url 到 dest，返回是否成功"""
        ...

    @abstractmethod
    def fetch_text(self, url: str, timeout: float = 5) -> Optional[str]:
        """GET 文本内容，失败返回 None"""
        ...


class IOperator(ABC):
    """操作员交互接口

    交互式菜单和测试脚本各自实现，核心逻辑不直接读取终端。
    """

    @abstractmethod
    def ask(self, message: str, default: str = "") -> str:
        ...

    @abstractmethod
    def confirm(self, message: str, default: bool = False) -> bool:
        ...

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """level: info / success / warning / error"""
        ...
