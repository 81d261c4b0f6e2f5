"""
MakeBuilder 测试

git clone 通过 MockRunner 拦截，make 通过替换 subprocess.Popen 模拟。
"""
import subprocess
from pathlib import Path

import pytest

from mtpulse.config import Settings
from mtpulse.core.errors import BuildFailure
from mtpulse.core.ports import CommandResult
from mtpulse.proxy.builder import MakeBuilder, patch_large_pid
from tests.mocks import MockRunner


class FakeMake:
    """模拟后台 make：轮询 polls 次后结束，并向日志写入内容"""

    returncode = 0
    polls = 2
    produce_artifact = True
    output = "cc -O3 ...\n"

    def __init__(self, cmd, cwd=None, stdout=None, stderr=None):
        self.cmd = cmd
        self.cwd = Path(cwd)
        self._remaining = self.polls
        stdout.write(self.output)
        stdout.flush()

    def poll(self):
        if self._remaining > 0:
            self._remaining -= 1
            return None
        self._finish()
        return self.returncode

    def wait(self):
        self._finish()
        return self.returncode

    def _finish(self):
        if self.produce_artifact and self.returncode == 0:
            artifact = self.cwd / "objs" / "bin" / "mtproto-proxy"
            artifact.parent.mkdir(parents=True, exist_ok=True)
            artifact.write_bytes(b"bin")


@pytest.fixture
def ticks():
    return []


@pytest.fixture
def make_builder(mock_runner: MockRunner, settings: Settings, ticks, monkeypatch):
    def factory(**make_attrs):
        fake = type("ConfiguredMake", (FakeMake,), make_attrs)
        monkeypatch.setattr(subprocess, "Popen", fake)
        return MakeBuilder(mock_runner, settings, on_tick=ticks.append)
    return factory


class TestPatchLargePid:

    def test_comments_out_assertion(self, tmp_path: Path):
        pid_c = tmp_path / "common" / "pid.c"
        pid_c.parent.mkdir()
        pid_c.write_text("void f() {\n  assert (!(p & 0xffff0000));\n}\n")

        assert patch_large_pid(tmp_path) is True
        assert "// assert (!(p & 0xffff0000));" in pid_c.read_text()
        # 再次修补不会重复注释
        assert patch_large_pid(tmp_path) is False
        assert "// // assert" not in pid_c.read_text()

    def test_missing_file(self, tmp_path: Path):
        assert patch_large_pid(tmp_path) is False


class TestBuild:

    def test_success_returns_artifact(self, make_builder, mock_runner: MockRunner, settings: Settings, ticks):
        builder = make_builder()
        artifact = builder.build()

        assert artifact == settings.paths.build_dir.resolve() / "objs" / "bin" / "mtproto-proxy"
        assert artifact.exists()
        mock_runner.assert_called_with(f"git clone {settings.sources.repository}")
        # 轮询期间计数器递增
        assert ticks == [1, 2]

    def test_nonzero_exit_raises_with_log_tail(self, make_builder, settings: Settings):
        output = "".join(f"line {i}\n" for i in range(30)) + "error: openssl/aes.h not found\n"
        builder = make_builder(returncode=2, output=output)

        with pytest.raises(BuildFailure) as exc_info:
            builder.build()

        tail = exc_info.value.log_tail.splitlines()
        assert len(tail) == settings.build.log_tail_lines
        assert tail[-1] == "error: openssl/aes.h not found"
        assert exc_info.value.log_file == str(settings.build.log_file)

    def test_missing_artifact_raises(self, make_builder):
        builder = make_builder(produce_artifact=False)
        with pytest.raises(BuildFailure):
            builder.build()

    def test_clone_failure(self, make_builder, mock_runner: MockRunner):
        mock_runner.stub_results["git clone"] = CommandResult(
            returncode=128, stdout="", stderr="fatal: unable to access", command="git clone"
        )
        builder = make_builder()
        with pytest.raises(BuildFailure, match="克隆") as exc_info:
            builder.build()
        assert "unable to access" in exc_info.value.log_tail

    def test_cleanup_removes_stale_source(self, make_builder, settings: Settings):
        stale = settings.paths.build_dir / "stale.o"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")

        builder = make_builder()
        builder.build()
        assert not stale.exists()

        builder.cleanup()
        assert not settings.paths.build_dir.exists()

    def test_clone_timeout(self, make_builder, mock_runner: MockRunner):
        mock_runner.raise_on["git clone"] = subprocess.TimeoutExpired(["git", "clone"], 600)
        with pytest.raises(BuildFailure, match="超时"):
            make_builder().build()

    def test_git_not_installed(self, make_builder, mock_runner: MockRunner):
        mock_runner.raise_on["git clone"] = FileNotFoundError(2, "No such file or directory", "git")
        with pytest.raises(BuildFailure, match="git"):
            make_builder().build()

    def test_make_not_installed(self, mock_runner: MockRunner, settings: Settings, monkeypatch):
        def missing_make(*args, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", "make")

        monkeypatch.setattr(subprocess, "Popen", missing_make)
        builder = MakeBuilder(mock_runner, settings, on_tick=lambda n: None)

        with pytest.raises(BuildFailure, match="make") as exc_info:
            builder.build()
        assert exc_info.value.log_file == str(settings.build.log_file)

    def test_log_file_unwritable(self, make_builder, settings: Settings):
        """日志路径被目录占用时转换为 BuildFailure"""
        settings.build.log_file.mkdir(parents=True)
        with pytest.raises(BuildFailure, match="编译日志"):
            make_builder().build()
