"""
MTPulse 入口

无子命令时进入交互式菜单；子命令用于脚本化运维:
    mtpulse install --port 443 --reuse-binary
    mtpulse tag 0123456789abcdef0123456789abcdef --yes
    mtpulse tag --clear
    mtpulse service restart
    mtpulse status
    mtpulse uninstall --yes
"""
import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as ConfigError

from mtpulse import __version__
from mtpulse.config import Settings, load_settings
from mtpulse.core.adapters import (
    AptPackageInstaller,
    ConsoleOperator,
    FileStateManager,
    RequestsNetworkClient,
    SubprocessRunner,
    SystemdServiceManager,
)
from mtpulse.core.errors import BuildFailure
from mtpulse.core.interface import AppContext
from mtpulse.core.ports import IOperator
from mtpulse.core.schema import InstallationState, ServiceAction
from mtpulse.core.utils import logger, read_os_release, setup_logger
from mtpulse.lib import ui
from mtpulse.proxy.builder import MakeBuilder
from mtpulse.proxy.descriptor import DescriptorStore
from mtpulse.proxy.lifecycle import (
    InstallIntent,
    Intent,
    LifecycleController,
    OperationResult,
    ServiceIntent,
    StatusIntent,
    TagIntent,
    UninstallIntent,
)
from mtpulse.proxy.status import PublicAddressCache, StatusReporter, StatusView


# ============================================================
# 组装
# ============================================================
def create_context(
    settings: Settings,
    debug: bool = False,
    operator: Optional[IOperator] = None,
) -> AppContext:
    """创建生产环境上下文"""
    runner = SubprocessRunner()
    state = FileStateManager(settings.paths.state_dir)
    return AppContext(
        settings=settings,
        cmd=runner,
        state=state,
        services=SystemdServiceManager(runner),
        builder=MakeBuilder(runner, settings),
        packages=AptPackageInstaller(runner, state),
        network=RequestsNetworkClient(),
        operator=operator or ConsoleOperator(),
        debug=debug,
    )


def create_controller(ctx: AppContext) -> LifecycleController:
    settings = ctx.settings
    store = DescriptorStore(settings.paths.unit_dir)
    reporter = StatusReporter(
        settings=settings,
        store=store,
        services=ctx.services,
        address_cache=PublicAddressCache(
            cache_file=settings.paths.public_ip_cache,
            network=ctx.network,
            lookup_url=settings.sources.public_ip_url,
        ),
    )
    return LifecycleController(
        settings=settings,
        store=store,
        services=ctx.services,
        builder=ctx.builder,
        packages=ctx.packages,
        network=ctx.network,
        operator=ctx.operator,
        status=reporter,
    )


def check_os(settings: Settings, os_release: Optional[Dict[str, str]] = None) -> bool:
    """仅支持 Ubuntu / Debian"""
    info = read_os_release() if os_release is None else os_release
    if not info:
        ui.print_error("无法识别操作系统: /etc/os-release 不存在")
        return False
    if info.get("ID") not in settings.supported_os:
        ui.print_error("仅支持 " + " / ".join(settings.supported_os))
        ui.print_warning(f"当前系统: {info.get('PRETTY_NAME', info.get('ID', 'unknown'))}")
        return False
    return True


# ============================================================
# 输出渲染
# ============================================================
def render_details(details: Dict[str, Any]) -> None:
    lines = [
        f"IP:     {details.get('address') or '(未知)'}",
        f"Port:   {details.get('port')}",
        f"Secret: {details.get('secret')}",
    ]
    if details.get("link"):
        lines += ["", f"[bold cyan]{details['link']}[/bold cyan]"]
    ui.print_panel("🚀 Proxy Details", "\n".join(lines), style="green")


def render_result(result: OperationResult) -> None:
    if result.output:
        ui.print_raw(result.output)

    if result.steps:
        rows: List[List[str]] = []
        for step in result.steps:
            if step.skipped:
                mark = "[dim]跳过[/dim]"
            elif step.ok:
                mark = "[green]✓[/green]"
            else:
                mark = f"[red]✗ {step.error or ''}[/red]"
            rows.append([step.name, mark])
        ui.print_table("卸载步骤", ["步骤", "结果"], rows)

    if result.cancelled:
        ui.print_warning(result.message)
    elif result.ok:
        if result.message:
            ui.print_success(result.message)
    else:
        ui.print_error(result.message)
        if isinstance(result.error, BuildFailure) and result.error.log_tail:
            ui.print_panel("--- Error Log ---", result.error.log_tail, style="red")

    if result.ok and "secret" in result.details:
        render_details(result.details)


def render_status(view: StatusView) -> None:
    labels = {
        InstallationState.ACTIVE: "[green]Active[/green]",
        InstallationState.INACTIVE: "[red]Inactive[/red]",
        InstallationState.NOT_INSTALLED: "[red]未安装[/red]",
    }
    ui.console.print(f"Proxy Status: {labels[view.state]}")
    if view.link:
        ui.console.print(f"Link: [bold cyan]{view.link}[/bold cyan]")
    elif view.is_active and view.listen_port:
        ui.console.print(f"Port: {view.listen_port}  Secret: {view.secret}  (公网 IP 获取失败)")
    if view.sponsor_tag:
        ui.console.print(f"Sponsor Tag: [bold magenta]{view.sponsor_tag}[/bold magenta]")


# ============================================================
# 交互式菜单
# ============================================================
MAIN_MENU = [
    ("1", "安装 MTProto Proxy"),
    ("2", "服务管理"),
    ("3", "添加 / 移除 Tag"),
    ("4", "卸载 MTPulse"),
    ("0", "退出"),
]

SERVICE_MENU = [
    ("1", "状态"),
    ("2", "启动"),
    ("3", "停止"),
    ("4", "重启"),
    ("5", "日志"),
    ("0", "返回"),
]

_SERVICE_CHOICES = {
    "1": ServiceAction.STATUS,
    "2": ServiceAction.START,
    "3": ServiceAction.STOP,
    "4": ServiceAction.RESTART,
    "5": ServiceAction.LOGS,
}


def run_service_menu(controller: LifecycleController) -> None:
    while True:
        choice = ui.prompt_menu("⚙️  服务管理", SERVICE_MENU)
        if choice == "0":
            return
        action = _SERVICE_CHOICES.get(choice)
        if action is None:
            ui.print_error("无效选项")
            continue
        render_result(controller.dispatch(ServiceIntent(action=action)))
        if action in (ServiceAction.STATUS, ServiceAction.LOGS):
            ui.pause()


def run_menu(controller: LifecycleController) -> int:
    menu_intents = {
        "1": InstallIntent,
        "3": TagIntent,
        "4": UninstallIntent,
    }
    while True:
        ui.console.rule(f"[bold cyan]MTPulse v{__version__}[/bold cyan]")
        ui.console.print("MTProto Proxy 管理器 (Ubuntu / Debian)\n")
        render_status(controller.status.report())

        choice = ui.prompt_menu("主菜单", MAIN_MENU)
        if choice == "0":
            return 0
        if choice == "2":
            run_service_menu(controller)
            continue
        intent_cls = menu_intents.get(choice)
        if intent_cls is None:
            ui.print_error("无效选项")
            continue
        render_result(controller.dispatch(intent_cls()))
        ui.pause()


# ============================================================
# 命令行
# ============================================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mtpulse", description="MTProto Proxy 管理器")
    parser.add_argument("--debug", action="store_true", help="调试模式")
    parser.add_argument("--config", type=Path, help="覆盖配置文件 (YAML)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("menu", help="交互式菜单（默认）")

    p_install = sub.add_parser("install", help="安装或重建代理")
    p_install.add_argument("--port", help="监听端口 (1-65535)，不指定则询问")
    binary_group = p_install.add_mutually_exclusive_group()
    binary_group.add_argument(
        "--reuse-binary", dest="reuse_binary", action="store_true", default=None,
        help="已有二进制时直接复用",
    )
    binary_group.add_argument(
        "--rebuild", dest="reuse_binary", action="store_false",
        help="总是重新编译",
    )

    p_tag = sub.add_parser("tag", help="设置或移除 Sponsor Tag")
    p_tag.add_argument("tag", nargs="?", help="32 位十六进制 Tag")
    p_tag.add_argument("--clear", action="store_true", help="移除 Tag")
    p_tag.add_argument("-y", "--yes", action="store_true", help="已有 Tag 时直接替换")

    p_uninstall = sub.add_parser("uninstall", help="卸载并清理所有文件")
    p_uninstall.add_argument("-y", "--yes", action="store_true", help="跳过确认")

    sub.add_parser("status", help="显示状态与分享链接")

    p_service = sub.add_parser("service", help="服务管理")
    p_service.add_argument("action", choices=[a.value for a in ServiceAction])

    return parser


def intent_from_args(args: argparse.Namespace) -> Optional[Intent]:
    """命令行参数 -> 意图；None 表示进入交互式菜单"""
    if args.command == "install":
        return InstallIntent(port=args.port, reuse_binary=args.reuse_binary)
    if args.command == "tag":
        tag = "" if args.clear else args.tag
        return TagIntent(tag=tag, confirm_replace=True if args.yes else None)
    if args.command == "uninstall":
        return UninstallIntent(confirmed=True if args.yes else None)
    if args.command == "status":
        return StatusIntent()
    if args.command == "service":
        return ServiceIntent(action=ServiceAction(args.action))
    return None


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "tag" and args.clear and args.tag:
        parser.error("--clear 不能与 Tag 同时使用")

    try:
        settings = load_settings(args.config)
    except (ConfigError, FileNotFoundError) as e:
        ui.print_error(f"配置有误:\n{e}")
        return 1

    setup_logger(settings.paths.log_file, debug=args.debug)
    if settings.check_os and not check_os(settings):
        return 1

    controller = create_controller(create_context(settings, debug=args.debug))
    intent = intent_from_args(args)

    try:
        if intent is None:
            return run_menu(controller)
        if isinstance(intent, StatusIntent):
            render_status(controller.status.report())
            return 0
        result = controller.dispatch(intent)
        render_result(result)
        return 0 if result.ok else 1
    except PermissionError as e:
        logger.debug(f"[Main] {e!r}")
        ui.print_error(f"权限不足，请使用 root 运行: {e}")
        return 1
    except OSError as e:
        logger.debug(f"[Main] {e!r}")
        ui.print_error(f"系统错误: {e}")
        return 1
    except (KeyboardInterrupt, EOFError):
        ui.console.print()
        return 130


if __name__ == "__main__":
    sys.exit(main())
