"""
交互式 UI 工具模块

基于 prompt_toolkit 和 rich 实现友好的命令行交互
"""
from typing import List, Optional, Sequence, Tuple

from prompt_toolkit import prompt
from prompt_toolkit.validation import Validator
from rich.console import Console
from rich.panel import Panel
from rich.status import Status
from rich.table import Table


console = Console()


# ============================================================
# 输入交互
# ============================================================
def prompt_input(
    message: str,
    default: str = "",
    validator: Optional[Validator] = None,
) -> str:
    """输入提示

    Args:
        message: 提示信息
        default: 默认值（直接回车时使用）
        validator: 输入验证器

    Returns:
        用户输入的字符串
    """
    suffix = f" [{default}]" if default else ""
    result = prompt(
        f"{message}{suffix}: ",
        validator=validator,
    )
    return result.strip() or default


def prompt_confirm(message: str, default: bool = True) -> bool:
    """确认提示 (y/n)

    Args:
        message: 提示信息
        default: 默认值

    Returns:
        True/False
    """
    hint = "[Y/n]" if default else "[y/N]"
    result = prompt(f"{message} {hint}: ").strip().lower()

    if not result:
        return default
    return result in ("y", "yes", "是", "确认")


def prompt_menu(title: str, options: Sequence[Tuple[str, str]]) -> str:
    """编号菜单，返回选中项的 key；输入无效时返回空字符串

    Args:
        title: 菜单标题
        options: (key, 显示文本) 列表，key 即用户需要输入的编号
    """
    console.print(f"\n[bold cyan]{title}[/bold cyan]")
    for key, label in options:
        console.print(f"  [bold cyan]{key})[/bold cyan] {label}")

    result = prompt("\n请选择: ").strip()
    keys = {key for key, _ in options}
    return result if result in keys else ""


def pause() -> None:
    prompt("按回车返回...")


# ============================================================
# 输出美化
# ============================================================
def print_info(message: str) -> None:
    """打印信息"""
    console.print(f"[cyan]ℹ[/cyan] {message}")


def print_success(message: str) -> None:
    """打印成功信息"""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """打印警告信息"""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_error(message: str) -> None:
    """打印错误信息"""
    console.print(f"[red]✗[/red] {message}")


def print_panel(title: str, content: str, style: str = "blue") -> None:
    """打印面板"""
    console.print(Panel(content, title=title, border_style=style))


def print_table(
    title: str,
    columns: List[str],
    rows: List[List[str]],
) -> None:
    """打印表格

    Args:
        title: 表格标题
        columns: 列名列表
        rows: 行数据列表
    """
    table = Table(title=title, show_header=True, header_style="bold magenta")

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*row)

    console.print(table)


def print_raw(text: str) -> None:
    """原样输出外部命令的文本（不解析 rich 标记）"""
    console.print(text, markup=False, highlight=False)


# ============================================================
# 进度
# ============================================================
def create_status(message: str) -> Status:
    """创建 spinner 状态行，用于编译等长时间任务"""
    return console.status(f"[bold magenta]{message}[/bold magenta]", spinner="dots")
