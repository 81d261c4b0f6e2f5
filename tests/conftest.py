"""
Pytest 共享 Fixtures

提供可复用的配置、测试替身和组装好的 LifecycleController，
所有路径都指向 pytest tmp_path，避免触碰真实的 /etc 与 /usr/local。
"""
import pytest
from pathlib import Path

from mtpulse.config import Settings
from mtpulse.core.schema import StateKey
from mtpulse.proxy.descriptor import DescriptorStore
from mtpulse.proxy.lifecycle import InstallIntent, LifecycleController
from mtpulse.proxy.status import PublicAddressCache, StatusReporter
from tests.mocks import (
    FakeBuilder,
    FakeNetworkClient,
    FakePackageInstaller,
    FakeServiceManager,
    MockRunner,
    MockStateManager,
    ScriptedOperator,
)


@pytest.fixture
def mock_runner() -> MockRunner:
    """新建一个干净的 MockRunner"""
    return MockRunner()


@pytest.fixture
def mock_state() -> MockStateManager:
    """新建一个干净的 MockStateManager"""
    return MockStateManager()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """
    测试用配置

    - 所有路径位于 tmp_path 下
    - 不写日志文件、不检查操作系统、编译轮询不等待
    """
    return Settings.model_validate({
        "check_os": False,
        "packages": ["git", "make"],
        "paths": {
            "binary": tmp_path / "bin" / "mtproto-proxy",
            "config_dir": tmp_path / "etc" / "mtpulse",
            "unit_dir": tmp_path / "systemd",
            "state_dir": tmp_path / "state",
            "build_dir": tmp_path / "MTProxy",
            "log_file": None,
        },
        "build": {
            "log_file": tmp_path / "make.log",
            "poll_interval": 0,
        },
    })


@pytest.fixture
def services() -> FakeServiceManager:
    return FakeServiceManager()


@pytest.fixture
def network() -> FakeNetworkClient:
    return FakeNetworkClient()


@pytest.fixture
def packages() -> FakePackageInstaller:
    return FakePackageInstaller()


@pytest.fixture
def operator() -> ScriptedOperator:
    """默认不预置任何回答，意外的提示会直接让测试失败"""
    return ScriptedOperator()


@pytest.fixture
def builder(settings: Settings) -> FakeBuilder:
    return FakeBuilder(settings.paths.build_dir)


@pytest.fixture
def store(settings: Settings) -> DescriptorStore:
    return DescriptorStore(settings.paths.unit_dir)


@pytest.fixture
def reporter(
    settings: Settings,
    store: DescriptorStore,
    services: FakeServiceManager,
    network: FakeNetworkClient,
) -> StatusReporter:
    return StatusReporter(
        settings=settings,
        store=store,
        services=services,
        address_cache=PublicAddressCache(
            cache_file=settings.paths.public_ip_cache,
            network=network,
            lookup_url=settings.sources.public_ip_url,
        ),
    )


@pytest.fixture
def controller(
    settings: Settings,
    store: DescriptorStore,
    services: FakeServiceManager,
    builder: FakeBuilder,
    packages: FakePackageInstaller,
    network: FakeNetworkClient,
    operator: ScriptedOperator,
    reporter: StatusReporter,
) -> LifecycleController:
    """
    构建一个完整的测试用 LifecycleController

    - systemd / 编译 / apt / 网络 / 终端交互全部替换为测试替身
    - unit 文件真实写入 tmp_path，便于断言文件内容
    """
    return LifecycleController(
        settings=settings,
        store=store,
        services=services,
        builder=builder,
        packages=packages,
        network=network,
        operator=operator,
        status=reporter,
    )


@pytest.fixture
def installed_controller(controller: LifecycleController) -> LifecycleController:
    """
    已安装并运行在 8443 端口、无 Tag 的代理

    安装本身的调用记录被清空，测试只看到后续操作。
    """
    result = controller.dispatch(InstallIntent(port="8443", reuse_binary=False))
    assert result.ok, result.message
    controller.services.calls.clear()
    controller.network.downloads.clear()
    return controller


@pytest.fixture
def setup_done_state() -> MockStateManager:
    """系统依赖已安装的状态"""
    return MockStateManager(pre_completed={StateKey.SETUP_COMPLETE})
