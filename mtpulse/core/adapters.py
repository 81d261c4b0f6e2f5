"""
适配器 - 生产环境的接口实现
"""
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from mtpulse.core.ports import (
    CommandResult,
    ICommandRunner,
    INetworkClient,
    IOperator,
    IPackageInstaller,
    IServiceManager,
    IStateManager,
)
from mtpulse.core.schema import StateKey
from mtpulse.core.utils import logger
from mtpulse.lib import ui


class SubprocessRunner(ICommandRunner):
    """生产环境命令执行器"""

    def run(
        self,
        cmd: List[str] | str,
        cwd: Optional[Path] = None,
        timeout: Optional[int] = None,
        check: bool = True,
        shell: bool = False,
        capture_output: bool = True,
    ) -> CommandResult:
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        logger.debug(f"[CMD] {cmd_str}")

        result = subprocess.run(
            cmd,
            cwd=cwd,
            timeout=timeout,
            shell=shell,
            capture_output=capture_output,
            text=True,
        )

        if result.stdout:
            logger.debug(f"[STDOUT] {result.stdout.strip()}")
        if result.stderr:
            logger.debug(f"[STDERR] {result.stderr.strip()}")

        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, cmd, result.stdout, result.stderr
            )

        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            command=cmd_str,
        )

    def run_realtime(
        self,
        cmd: List[str],
        cwd: Optional[Path] = None,
    ) -> int:
        """实时输出的命令执行"""
        logger.debug(f"[CMD:REALTIME] {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )

        if process.stdout:
            for line in process.stdout:
                line = line.rstrip()
                if line:
                    logger.info(f"     {line}")

        return process.wait()


class FileStateManager(IStateManager):
    """基于文件的状态管理器

    标记文件位于 state_dir/{key}.done；卸载时整个目录会被删除，
    因此目录在首次标记时才创建。
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    def _get_path(self, key: str) -> Path:
        # StateKey 继承自 str，取 value 避免 Enum 的 str() 带类名
        name = key.value if isinstance(key, StateKey) else key
        return self.state_dir / f"{name}.done"

    def is_completed(self, key: str) -> bool:
        return self._get_path(key).exists()

    def mark_completed(self, key: str) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._get_path(key).touch()

    def clear(self, key: str) -> None:
        self._get_path(key).unlink(missing_ok=True)


class SystemdServiceManager(IServiceManager):
    """通过 systemctl / journalctl 管理系统级 unit"""

    def __init__(self, runner: ICommandRunner):
        self.cmd = runner

    def _systemctl(self, *args: str, check: bool = True) -> CommandResult:
        return self.cmd.run(["systemctl", *args], timeout=60, check=check)

    def is_active(self, unit: str) -> bool:
        result = self._systemctl("is-active", "--quiet", unit, check=False)
        return result.returncode == 0

    def enable(self, unit: str) -> None:
        self._systemctl("enable", unit)

    def disable(self, unit: str) -> None:
        self._systemctl("disable", unit)

    def start(self, unit: str) -> None:
        self._systemctl("start", unit)

    def stop(self, unit: str) -> None:
        self._systemctl("stop", unit)

    def restart(self, unit: str) -> None:
        self._systemctl("restart", unit)

    def reload_definitions(self) -> None:
        self._systemctl("daemon-reload")

    def status_text(self, unit: str) -> str:
        # systemctl status 对 inactive unit 返回 3，属于正常输出
        result = self._systemctl("status", unit, "--no-pager", check=False)
        return result.stdout or result.stderr

    def tail_logs(self, unit: str, lines: int = 50) -> str:
        result = self.cmd.run(
            ["journalctl", "-u", unit, "-n", str(lines), "--no-pager"],
            timeout=30, check=False,
        )
        return result.stdout or result.stderr


class AptPackageInstaller(IPackageInstaller):
    """apt 系统包安装，成功后写入 setup 标记，后续运行直接跳过"""

    def __init__(self, runner: ICommandRunner, state: IStateManager):
        self.cmd = runner
        self.state = state

    def ensure(self, packages: Sequence[str]) -> bool:
        if self.state.is_completed(StateKey.SETUP_COMPLETE):
            return True
        if not packages:
            self.state.mark_completed(StateKey.SETUP_COMPLETE)
            return True

        logger.info("  -> 正在安装系统依赖 (首次运行)...")
        rc = self.cmd.run_realtime(["apt-get", "update"])
        if rc != 0:
            logger.warning(f"  -> [WARN] apt-get update 返回 {rc}，继续尝试安装")

        rc = self.cmd.run_realtime(["apt-get", "install", "-y", *packages])
        if rc != 0:
            logger.error(f"  -> ✗ 系统依赖安装失败 (code={rc})")
            return False

        self.state.mark_completed(StateKey.SETUP_COMPLETE)
        logger.info("  -> ✓ 系统依赖安装完成")
        return True


class RequestsNetworkClient(INetworkClient):
    """基于 requests 的网络访问"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def download(self, url: str, dest: Path, timeout: float = 30) -> bool:
        try:
            response = self.session.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"  -> [WARN] 下载失败 {url}: {e}")
            return False

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(response.content)
        except OSError as e:
            logger.warning(f"  -> [WARN] 无法写入 {dest}: {e}")
            return False
        logger.debug(f"[NET] {url} -> {dest} ({len(response.content)} bytes)")
        return True

    def fetch_text(self, url: str, timeout: float = 5) -> Optional[str]:
        try:
            response = self.session.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.debug(f"[NET] 请求失败 {url}: {e}")
            return None
        return response.text.strip()


class ConsoleOperator(IOperator):
    """交互式终端操作员 (prompt_toolkit + rich)"""

    def ask(self, message: str, default: str = "") -> str:
        return ui.prompt_input(message, default=default)

    def confirm(self, message: str, default: bool = False) -> bool:
        return ui.prompt_confirm(message, default=default)

    def notify(self, message: str, level: str = "info") -> None:
        printer = {
            "success": ui.print_success,
            "warning": ui.print_warning,
            "error": ui.print_error,
        }.get(level, ui.print_info)
        printer(message)
