"""
Lifecycle Controller - 安装 / Tag 更新 / 卸载 / 服务管理

每个操作都是一个短状态机，串联 Planner、DescriptorStore 和受监管服务层。
入口统一为 dispatch(intent) -> OperationResult：
- 意图 (Intent) 是结构化的值，未预先给出的答案通过 IOperator 询问
- 可预期错误 (MTPulseError) 转换为失败结果，不向外抛出
- 交互式菜单与命令行子命令都只是 dispatch 的薄适配层

Install:   EnsurePackages → CheckBinary → (Skip|Build) → FetchAuxFiles → CollectPort
           → Plan → Persist → ActivateService → ReportDetails
TagUpdate: 前置检查 → (确认替换) → Plan → Persist → daemon-reload → restart
Uninstall: 确认 → 各步骤独立尽力执行，逐步汇报结果
"""
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from mtpulse.config import Settings
from mtpulse.core.errors import (
    DescriptorMissing,
    InvalidPort,
    MTPulseError,
    NetworkFailure,
    PersistenceFailure,
    PreconditionFailure,
    ServiceNotActive,
)
from mtpulse.core.ports import (
    IBinaryBuilder,
    INetworkClient,
    IOperator,
    IPackageInstaller,
    IServiceManager,
)
from mtpulse.core.schema import ServiceAction
from mtpulse.core.utils import logger
from mtpulse.proxy.argv import ArgVector
from mtpulse.proxy.descriptor import DescriptorStore, ServiceDescriptor
from mtpulse.proxy.planner import FreshInstall, TagChange, parse_port, plan
from mtpulse.proxy.status import StatusReporter, connection_link


# ============================================================
# 意图
# ============================================================
@dataclass(frozen=True)
class InstallIntent:
    # 原始端口输入，None 时询问操作员
    port: Optional[str] = None
    # 已有二进制时是否复用，None 时询问操作员
    reuse_binary: Optional[bool] = None


@dataclass(frozen=True)
class TagIntent:
    # "" 表示移除，None 时询问操作员
    tag: Optional[str] = None
    # 已有 Tag 时是否确认替换，None 时询问操作员
    confirm_replace: Optional[bool] = None


@dataclass(frozen=True)
class UninstallIntent:
    confirmed: Optional[bool] = None


@dataclass(frozen=True)
class ServiceIntent:
    action: ServiceAction


@dataclass(frozen=True)
class StatusIntent:
    pass


Intent = Union[InstallIntent, TagIntent, UninstallIntent, ServiceIntent, StatusIntent]


# ============================================================
# 结果
# ============================================================
@dataclass
class StepResult:
    name: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class OperationResult:
    ok: bool
    message: str
    cancelled: bool = False
    steps: List[StepResult] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    # status / logs 等命令的原始输出
    output: str = ""
    error: Optional[MTPulseError] = None


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


class LifecycleController:
    """生命周期编排器，是 unit 文件的唯一写入方"""

    def __init__(
        self,
        settings: Settings,
        store: DescriptorStore,
        services: IServiceManager,
        builder: IBinaryBuilder,
        packages: IPackageInstaller,
        network: INetworkClient,
        operator: IOperator,
        status: StatusReporter,
    ):
        self.settings = settings
        self.store = store
        self.services = services
        self.builder = builder
        self.packages = packages
        self.network = network
        self.operator = operator
        self.status = status

    @property
    def unit(self) -> str:
        return self.settings.unit_name

    # ── Dispatch ────────────────────────────────────────

    def dispatch(self, intent: Intent) -> OperationResult:
        handlers: Dict[type, Callable[[Any], OperationResult]] = {
            InstallIntent: self.install,
            TagIntent: self.update_tag,
            UninstallIntent: self.uninstall,
            ServiceIntent: self.manage_service,
            StatusIntent: self.report_status,
        }
        handler = handlers.get(type(intent))
        if handler is None:
            raise TypeError(f"未知的意图类型: {type(intent).__name__}")

        try:
            return handler(intent)
        except MTPulseError as e:
            logger.error(f"  -> ✗ {e}")
            return OperationResult(ok=False, message=str(e), error=e)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            logger.error(f"  -> ✗ 命令执行失败 (code={e.returncode}): {e.cmd}")
            return OperationResult(
                ok=False,
                message=f"命令执行失败 (code={e.returncode}): {detail or e.cmd}",
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"  -> ✗ 命令执行超时 ({e.timeout}s): {e.cmd}")
            return OperationResult(ok=False, message=f"命令执行超时 ({e.timeout}s): {e.cmd}")

    # ── Install ─────────────────────────────────────────

    def install(self, intent: InstallIntent) -> OperationResult:
        logger.info("\n>>> [Install] 开始安装 MTProto Proxy...")

        # 预先给出的端口在任何修改之前校验
        preset_port = None
        if intent.port is not None:
            preset_port = parse_port(intent.port, default=self.settings.proxy.default_port)

        if not self.packages.ensure(self.settings.packages):
            raise PreconditionFailure("系统依赖安装失败，请检查 apt 输出")

        self._ensure_binary(intent.reuse_binary)
        self._fetch_aux_files()
        port = preset_port if preset_port is not None else self._collect_port()

        # 安装是「重建」而非「合并」：总是生成新 secret、重写 unit
        argv = plan(None, FreshInstall(listen_port=port), self.settings)
        logger.info("  -> 已生成新的 secret")

        self.store.write(self._new_descriptor(argv))
        self.services.reload_definitions()
        self._activate()
        logger.info(f"  -> ✓ {self.unit} 服务已启动")

        return OperationResult(
            ok=True,
            message="MTPulse 服务已启动",
            details=self._connection_details(argv),
        )

    def _ensure_binary(self, reuse: Optional[bool]) -> None:
        binary = self.settings.paths.binary
        if binary.exists():
            if reuse is None:
                reuse = self.operator.confirm("检测到已安装的 MTProxy 二进制，是否直接使用?", default=True)
            if reuse:
                logger.info(f"  -> 复用已有二进制，跳过编译: {binary}")
                return

        # BuildFailure 直接向上抛出，后续步骤都不会执行
        artifact = self.builder.build()
        self._install_binary(artifact, binary)
        self.builder.cleanup()
        logger.info(f"  -> ✓ MTProxy 已安装到 {binary}")

    @staticmethod
    def _install_binary(artifact: Path, binary: Path) -> None:
        # 先复制到同目录临时文件再替换，运行中的旧二进制不会被截断
        staging = binary.with_name(f".{binary.name}.new")
        try:
            binary.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact, staging)
            staging.chmod(0o755)
            os.replace(staging, binary)
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise PersistenceFailure(f"安装二进制到 {binary} 失败: {e}") from e

    def _fetch_aux_files(self) -> None:
        paths, sources = self.settings.paths, self.settings.sources
        logger.info("  -> 正在下载 proxy-secret / proxy-multi.conf ...")
        try:
            paths.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"无法创建配置目录 {paths.config_dir}: {e}") from e

        for url, dest in (
            (sources.proxy_secret_url, paths.secret_source),
            (sources.proxy_config_url, paths.config_source),
        ):
            ok = self.network.download(url, dest)
            if not ok or not dest.exists() or dest.stat().st_size == 0:
                raise NetworkFailure(f"下载 {dest.name} 失败: {url}")

    def _collect_port(self) -> int:
        default = self.settings.proxy.default_port
        # 无次数上限，直到输入合法
        while True:
            answer = self.operator.ask("请输入端口", default=str(default))
            try:
                return parse_port(answer, default=default)
            except InvalidPort as e:
                self.operator.notify(str(e), "error")

    def _new_descriptor(self, argv: ArgVector) -> ServiceDescriptor:
        service = self.settings.service
        return ServiceDescriptor(
            unit_name=self.unit,
            argv=argv,
            description=self.settings.unit_description,
            after=service.after,
            restart=service.restart,
            run_as=service.run_as,
            nofile_limit=service.nofile_limit,
            wanted_by=service.wanted_by,
        )

    def _activate(self) -> None:
        self.services.enable(self.unit)
        # 重装时服务可能仍在运行，必须 restart 才会读到新的 ExecStart
        if self.services.is_active(self.unit):
            self.services.restart(self.unit)
        else:
            self.services.start(self.unit)

    def _connection_details(self, argv: ArgVector) -> Dict[str, Any]:
        address = self.status.address_cache.get()
        details: Dict[str, Any] = {
            "address": address,
            "port": argv.listen_port,
            "secret": argv.secret,
        }
        if address:
            details["link"] = connection_link(address, argv.listen_port, argv.secret)
        return details

    # ── Tag Update ──────────────────────────────────────

    def update_tag(self, intent: TagIntent) -> OperationResult:
        if not self.services.is_active(self.unit):
            raise ServiceNotActive("代理未运行，请先安装并启动代理")
        if not self.store.exists(self.unit):
            raise DescriptorMissing(f"未找到 unit 文件: {self.store.path_for(self.unit)}")

        descriptor = self.store.read(self.unit)
        if descriptor is None:
            raise DescriptorMissing(f"unit 文件的 ExecStart 无法解析: {self.store.path_for(self.unit)}")

        current = descriptor.argv.sponsor_tag
        if current:
            confirmed = intent.confirm_replace
            if confirmed is None:
                self.operator.notify(f"当前 Tag: {current}")
                confirmed = self.operator.confirm("已设置 Tag，是否移除并设置新的 Tag?", default=False)
            if not confirmed:
                return OperationResult(ok=False, cancelled=True, message="已取消，Tag 未修改")

        raw_tag = intent.tag
        if raw_tag is None:
            self.operator.notify("获取 Tag 需要在 Telegram 官方机器人 @MTProxybot 注册代理，它会给出 32 位十六进制 Tag")
            raw_tag = self.operator.ask("请输入新的 Tag（留空则移除）")

        # InvalidTagFormat 在写入前抛出，不会修改任何文件
        new_argv = plan(descriptor.argv, TagChange(tag=raw_tag), self.settings)

        self.store.write(descriptor.with_argv(new_argv))
        # daemon-reload 让 systemd 读到新 unit，restart 让进程读到新命令行
        self.services.reload_definitions()
        self.services.restart(self.unit)

        if new_argv.sponsor_tag:
            message = f"Tag 已更新为: {new_argv.sponsor_tag}"
        else:
            message = "Tag 已移除"
        logger.info(f"  -> ✓ {message}")
        return OperationResult(ok=True, message=message, details={"sponsor_tag": new_argv.sponsor_tag})

    # ── Uninstall ───────────────────────────────────────

    def uninstall(self, intent: UninstallIntent) -> OperationResult:
        confirmed = intent.confirmed
        if confirmed is None:
            confirmed = self.operator.confirm("确定要卸载 MTPulse 吗?", default=False)
        if not confirmed:
            return OperationResult(ok=False, cancelled=True, message="已取消卸载")

        logger.info("\n>>> [Uninstall] 开始卸载 MTPulse...")
        paths = self.settings.paths
        unit_exists = self.store.exists(self.unit)

        steps: List[StepResult] = [
            self._best_effort("停止服务", self._stop_if_active),
            self._best_effort("禁用服务", lambda: self.services.disable(self.unit), skip=not unit_exists),
            self._best_effort("删除 unit 文件", self._remove_descriptor),
            self._best_effort("重新加载 systemd", self.services.reload_definitions),
            self._best_effort("删除二进制", lambda: _remove_path(paths.binary)),
            self._best_effort("删除配置目录", lambda: _remove_path(paths.config_dir)),
            self._best_effort("删除状态目录", lambda: _remove_path(paths.state_dir)),
            self._best_effort("删除编译目录", self.builder.cleanup),
        ]

        failed = [s for s in steps if not s.ok]
        if failed:
            message = f"卸载完成，但有 {len(failed)} 个步骤失败: " + ", ".join(s.name for s in failed)
        else:
            message = "卸载完成，所有文件和服务均已移除"
        return OperationResult(ok=not failed, message=message, steps=steps)

    def _stop_if_active(self) -> bool:
        if not self.services.is_active(self.unit):
            return False
        self.services.stop(self.unit)
        return True

    def _remove_descriptor(self) -> None:
        if not self.store.remove(self.unit):
            raise PersistenceFailure(f"无法删除 {self.store.path_for(self.unit)}")

    @staticmethod
    def _best_effort(name: str, action: Callable[[], Any], skip: bool = False) -> StepResult:
        """执行单个卸载步骤，失败只记录不中断

        action 返回 False 表示无事可做（记为跳过）。
        """
        if skip:
            logger.info(f"  -> {name}: 跳过")
            return StepResult(name=name, ok=True, skipped=True)
        try:
            outcome = action()
        # SubprocessError 同时覆盖返回码非零与超时
        except (OSError, subprocess.SubprocessError, MTPulseError) as e:
            logger.warning(f"  -> [WARN] {name} 失败: {e}")
            return StepResult(name=name, ok=False, error=str(e))
        if outcome is False:
            logger.info(f"  -> {name}: 跳过")
            return StepResult(name=name, ok=True, skipped=True)
        logger.info(f"  -> ✓ {name}")
        return StepResult(name=name, ok=True)

    # ── Service Management ──────────────────────────────

    def manage_service(self, intent: ServiceIntent) -> OperationResult:
        action = intent.action
        if action == ServiceAction.STATUS:
            return OperationResult(ok=True, message="", output=self.services.status_text(self.unit))
        if action == ServiceAction.LOGS:
            output = self.services.tail_logs(self.unit, self.settings.service.log_lines)
            return OperationResult(ok=True, message="", output=output)

        if not self.store.exists(self.unit):
            raise DescriptorMissing("服务尚未安装")

        {
            ServiceAction.START: self.services.start,
            ServiceAction.STOP: self.services.stop,
            ServiceAction.RESTART: self.services.restart,
        }[action](self.unit)
        labels = {
            ServiceAction.START: "已启动",
            ServiceAction.STOP: "已停止",
            ServiceAction.RESTART: "已重启",
        }
        return OperationResult(ok=True, message=f"{self.unit} {labels[action]}")

    # ── Status ──────────────────────────────────────────

    def report_status(self, intent: StatusIntent) -> OperationResult:
        view = self.status.report()
        return OperationResult(
            ok=True,
            message=view.state.value,
            details={
                "state": view.state,
                "address": view.address,
                "port": view.listen_port,
                "secret": view.secret,
                "sponsor_tag": view.sponsor_tag,
                "link": view.link,
            },
        )
