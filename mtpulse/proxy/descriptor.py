"""
ServiceDescriptor - systemd unit 文件的读写

unit 文件是 ArgVector 的持久化载体：ExecStart 行就是序列化后的 ArgVector，
其余字段（重启策略、文件句柄上限、运行身份、启动依赖）安装后不再变化。

写入采用「临时文件 + os.replace」，任何时刻磁盘上要么是完整的新文件，
要么是未被触碰的旧文件，避免写到一半留下无法解析的 unit。
"""
import configparser
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from textwrap import dedent
from typing import Optional

from mtpulse.core.errors import PersistenceFailure
from mtpulse.core.utils import logger
from mtpulse.proxy.argv import ArgVector, parse, serialize


@dataclass(frozen=True)
class ServiceDescriptor:
    """一个具名 unit 定义"""
    unit_name: str
    argv: ArgVector
    description: str = "MTPulse MTProto Proxy (Official)"
    after: str = "network.target"
    restart: str = "always"
    run_as: str = "root"
    nofile_limit: int = 65536
    wanted_by: str = "multi-user.target"

    def with_argv(self, argv: ArgVector) -> "ServiceDescriptor":
        """安装后唯一允许变化的字段"""
        return replace(self, argv=argv)

    def render(self) -> str:
        return dedent(f"""\
            [Unit]
            Description={self.description}
            After={self.after}

            [Service]
            ExecStart={serialize(self.argv)}
            Restart={self.restart}
            User={self.run_as}
            LimitNOFILE={self.nofile_limit}

            [Install]
            WantedBy={self.wanted_by}
        """)


def parse_unit(unit_name: str, text: str) -> Optional[ServiceDescriptor]:
    """解析 unit 文本，缺少 ExecStart 或 ExecStart 不合法时返回 None"""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str  # type: ignore[assignment]  # systemd 的 key 区分大小写
    try:
        parser.read_string(text)
    except configparser.Error as e:
        logger.debug(f"[Descriptor] unit 文件格式错误: {e}")
        return None

    exec_start = parser.get("Service", "ExecStart", fallback=None)
    if not exec_start:
        return None
    argv = parse(exec_start)
    if argv is None:
        logger.debug(f"[Descriptor] ExecStart 无法解析: {exec_start}")
        return None

    defaults = ServiceDescriptor(unit_name=unit_name, argv=argv)
    try:
        nofile_limit = parser.getint("Service", "LimitNOFILE", fallback=defaults.nofile_limit)
    except ValueError:
        nofile_limit = defaults.nofile_limit

    return ServiceDescriptor(
        unit_name=unit_name,
        argv=argv,
        description=parser.get("Unit", "Description", fallback=defaults.description),
        after=parser.get("Unit", "After", fallback=defaults.after),
        restart=parser.get("Service", "Restart", fallback=defaults.restart),
        run_as=parser.get("Service", "User", fallback=defaults.run_as),
        nofile_limit=nofile_limit,
        wanted_by=parser.get("Install", "WantedBy", fallback=defaults.wanted_by),
    )


class DescriptorStore:
    """unit 文件存储（默认 /etc/systemd/system）"""

    def __init__(self, unit_dir: Path):
        self.unit_dir = unit_dir

    def path_for(self, unit_name: str) -> Path:
        return self.unit_dir / f"{unit_name}.service"

    def exists(self, unit_name: str) -> bool:
        return self.path_for(unit_name).exists()

    def read(self, unit_name: str) -> Optional[ServiceDescriptor]:
        path = self.path_for(unit_name)
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"  -> [WARN] 无法读取 {path}: {e}")
            return None
        return parse_unit(unit_name, text)

    def write(self, descriptor: ServiceDescriptor) -> Path:
        """原子写入 unit 文件

        Raises:
            PersistenceFailure: 写入或替换失败（旧文件保持不变）
        """
        path = self.path_for(descriptor.unit_name)
        content = descriptor.render()
        tmp_path: Optional[Path] = None

        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
            # 临时文件必须与目标同一目录，os.replace 才是原子的
            with tempfile.NamedTemporaryFile(
                "w",
                dir=self.unit_dir,
                prefix=f".{descriptor.unit_name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as f:
                tmp_path = Path(f.name)
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_path.chmod(0o644)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise PersistenceFailure(f"写入 {path} 失败: {e}") from e

        logger.debug(f"[Descriptor] 已写入 {path}")
        return path

    def remove(self, unit_name: str) -> bool:
        """删除 unit 文件，不存在视为成功"""
        path = self.path_for(unit_name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"  -> [WARN] 删除 {path} 失败: {e}")
            return False
        return True
