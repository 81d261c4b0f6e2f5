"""
Schema & 类型定义

集中管理:
- StateKey: 状态持久化 Key 枚举（避免魔法字符串）
- InstallationState: 派生的安装状态（不持久化）
- ServiceAction: 服务管理子菜单动作
"""
from enum import Enum


# ============================================================
# 状态持久化 Key（避免魔法字符串）
# ============================================================
class StateKey(str, Enum):
    """
    所有状态 Key 的枚举定义。

    对应 state_dir 下的 {key}.done 标记文件。
    """
    # 系统依赖（git / make / libssl-dev ...）每台主机只装一次
    SETUP_COMPLETE = "setup_complete_v2"


# ============================================================
# 安装状态（按需计算，不落盘）
# ============================================================
class InstallationState(str, Enum):
    NOT_INSTALLED = "not_installed"
    INACTIVE = "inactive"
    ACTIVE = "active"


class ServiceAction(str, Enum):
    STATUS = "status"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    LOGS = "logs"
