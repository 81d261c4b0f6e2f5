"""
错误分类

所有可预期的失败都从 MTPulseError 派生，LifecycleController 统一转换为失败结果；
其他异常照常向上抛出。
"""
from typing import Optional


class MTPulseError(Exception):
    """MTPulse 可预期错误的基类"""


# ============================================================
# 输入校验
# ============================================================
class ValidationError(MTPulseError):
    """操作员输入不合法（端口 / Tag 格式），可重新输入"""


class InvalidPort(ValidationError):
    pass


class InvalidTagFormat(ValidationError):
    pass


# ============================================================
# 编译
# ============================================================
class BuildFailure(MTPulseError):
    """编译失败或产物缺失，附带日志尾部"""

    def __init__(self, message: str, log_tail: str = "", log_file: Optional[str] = None):
        super().__init__(message)
        self.log_tail = log_tail
        self.log_file = log_file


# ============================================================
# 前置条件
# ============================================================
class PreconditionFailure(MTPulseError):
    """操作的前置条件不满足，未做任何修改"""


class ServiceNotActive(PreconditionFailure):
    pass


class DescriptorMissing(PreconditionFailure):
    pass


class NoExistingConfiguration(PreconditionFailure):
    pass


# ============================================================
# 持久化 / 网络
# ============================================================
class PersistenceFailure(MTPulseError):
    """unit 文件写入失败，旧文件保持不变"""


class NetworkFailure(MTPulseError):
    """辅助配置文件下载失败"""
