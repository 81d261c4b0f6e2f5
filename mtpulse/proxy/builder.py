"""
MTProxy 编译器

职责:
- 克隆官方 MTProxy 仓库
- 修补大 PID 断言 (Assertion `!(p & 0xffff0000)' failed)
- 后台执行 make，按固定间隔轮询并显示计数器
- 校验退出码与产物，失败时附带编译日志尾部
"""
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

from mtpulse.config import Settings
from mtpulse.core.errors import BuildFailure
from mtpulse.core.ports import IBinaryBuilder, ICommandRunner
from mtpulse.core.utils import logger, tail_text
from mtpulse.lib import ui


_PID_ASSERT = "assert (!(p & 0xffff0000));"
_PID_ASSERT_PATCHED = "// assert (!(p & 0xffff0000));"


def patch_large_pid(source_dir: Path) -> bool:
    """注释掉 common/pid.c 中的 PID 位宽断言

    Returns:
        True 表示进行了修补
    """
    pid_c = source_dir / "common" / "pid.c"
    if not pid_c.exists():
        return False
    content = pid_c.read_text(encoding="utf-8")
    if _PID_ASSERT_PATCHED in content or _PID_ASSERT not in content:
        return False
    pid_c.write_text(content.replace(_PID_ASSERT, _PID_ASSERT_PATCHED), encoding="utf-8")
    return True


class MakeBuilder(IBinaryBuilder):
    """git clone + make"""

    def __init__(
        self,
        runner: ICommandRunner,
        settings: Settings,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.cmd = runner
        self.settings = settings
        self.on_tick = on_tick

    @property
    def source_dir(self) -> Path:
        return self.settings.paths.build_dir.resolve()

    @property
    def log_file(self) -> Path:
        return self.settings.build.log_file

    def build(self) -> Path:
        self.cleanup()
        self._clone()

        if patch_large_pid(self.source_dir):
            logger.info("  -> 已修补 common/pid.c (大 PID 兼容)")

        rc = self._make()
        artifact = self.source_dir / self.settings.build.artifact
        if rc != 0 or not artifact.exists():
            raise BuildFailure(
                f"编译失败 (code={rc})，请检查系统依赖",
                log_tail=self._read_log_tail(),
                log_file=str(self.log_file),
            )

        logger.info(f"  -> ✓ 编译完成: {artifact}")
        return artifact

    def cleanup(self) -> None:
        if self.source_dir.exists():
            shutil.rmtree(self.source_dir)

    # ── Steps ───────────────────────────────────────────

    def _clone(self) -> None:
        repository = self.settings.sources.repository
        logger.info(f"  -> 正在克隆 {repository} ...")
        try:
            self.cmd.run(
                ["git", "clone", repository, str(self.source_dir)],
                timeout=600,
            )
        except subprocess.CalledProcessError as e:
            raise BuildFailure(
                "克隆 MTProxy 仓库失败",
                log_tail=tail_text(e.stderr or "", self.settings.build.log_tail_lines),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BuildFailure(f"克隆 MTProxy 仓库超时 ({e.timeout}s)") from e
        except OSError as e:
            # 未安装 git
            raise BuildFailure(f"无法执行 git: {e}") from e

    def _make(self) -> int:
        """后台 make，轮询直到结束，返回退出码"""
        logger.info("  -> 正在编译源码...")
        interval = self.settings.build.poll_interval
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            log_f = open(self.log_file, "w", encoding="utf-8")
        except OSError as e:
            raise BuildFailure(f"无法写入编译日志 {self.log_file}: {e}") from e

        with log_f:
            try:
                process = subprocess.Popen(
                    ["make"],
                    cwd=self.source_dir,
                    stdout=log_f,
                    stderr=subprocess.STDOUT,
                )
            except OSError as e:
                raise BuildFailure(f"无法启动 make: {e}", log_file=str(self.log_file)) from e
            if self.on_tick is not None:
                self._poll(process, self.on_tick, interval)
            else:
                with ui.create_status("Compiling... [ 0 ]") as status:
                    self._poll(
                        process,
                        lambda n: status.update(f"[bold magenta]Compiling... [ {n} ][/bold magenta]"),
                        interval,
                    )

        return process.wait()

    @staticmethod
    def _poll(process: subprocess.Popen, tick: Callable[[int], None], interval: float) -> None:
        counter = 1
        while process.poll() is None:
            tick(counter)
            counter += 1
            time.sleep(interval)

    def _read_log_tail(self) -> str:
        try:
            return tail_text(
                self.log_file.read_text(encoding="utf-8", errors="replace"),
                self.settings.build.log_tail_lines,
            )
        except OSError:
            return ""
