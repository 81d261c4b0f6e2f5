"""
集成测试专用 Fixtures

在已安装的控制器之上预置 Tag 等场景，用于测试完整的操作流程。
"""
import pytest

from mtpulse.proxy.lifecycle import LifecycleController, TagIntent


TAG_A = "a" * 32
TAG_B = "b" * 32


@pytest.fixture
def tagged_controller(installed_controller: LifecycleController) -> LifecycleController:
    """已安装、运行中，并已设置 Tag aaaa... 的代理"""
    result = installed_controller.dispatch(TagIntent(tag=TAG_A))
    assert result.ok, result.message
    installed_controller.services.calls.clear()
    return installed_controller
