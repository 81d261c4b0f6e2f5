"""
核心接口定义
"""
from dataclasses import dataclass

from mtpulse.config import Settings
from mtpulse.core.ports import (
    IBinaryBuilder,
    ICommandRunner,
    INetworkClient,
    IOperator,
    IPackageInstaller,
    IServiceManager,
    IStateManager,
)


@dataclass
class AppContext:
    """
    应用上下文 - 组合根

    所有外部能力都在这里注入；LifecycleController 和 StatusReporter
    只通过上下文访问主机，测试时整体替换为 Mock。
    """

    # === 配置（main.py 加载，不可变）===
    settings: Settings

    # === 注入的服务 ===
    cmd: ICommandRunner
    state: IStateManager
    services: IServiceManager
    builder: IBinaryBuilder
    packages: IPackageInstaller
    network: INetworkClient
    operator: IOperator

    # === 运行时参数 ===
    debug: bool = False
