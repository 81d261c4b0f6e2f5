"""
Proxy 子系统 - mtproto-proxy 服务配置状态机

模块结构:
- argv.py        ArgVector 编解码（命令行 <-> 结构体）
- descriptor.py  systemd unit 文件的渲染、解析与原子写入
- planner.py     目标 ArgVector 计算（纯函数）
- builder.py     MTProxy 克隆与编译
- lifecycle.py   安装 / Tag 更新 / 卸载 / 服务管理编排
- status.py      派生状态与 tg://proxy 分享链接
"""
from mtpulse.proxy.argv import ArgVector, parse, serialize
from mtpulse.proxy.descriptor import DescriptorStore, ServiceDescriptor
from mtpulse.proxy.lifecycle import (
    InstallIntent,
    LifecycleController,
    OperationResult,
    ServiceIntent,
    StatusIntent,
    TagIntent,
    UninstallIntent,
)
from mtpulse.proxy.status import StatusReporter, StatusView

__all__ = [
    # 编解码
    "ArgVector",
    "parse",
    "serialize",
    # 存储
    "DescriptorStore",
    "ServiceDescriptor",
    # 编排
    "LifecycleController",
    "OperationResult",
    "InstallIntent",
    "TagIntent",
    "UninstallIntent",
    "ServiceIntent",
    "StatusIntent",
    # 状态
    "StatusReporter",
    "StatusView",
]
