"""
ServiceDescriptor / DescriptorStore 测试
"""
import os
from pathlib import Path

import pytest

from mtpulse.core.errors import PersistenceFailure
from mtpulse.proxy.argv import ArgVector
from mtpulse.proxy.descriptor import DescriptorStore, ServiceDescriptor, parse_unit


SECRET = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def descriptor() -> ServiceDescriptor:
    argv = ArgVector(
        binary=Path("/usr/local/bin/mtproto-proxy"),
        user="nobody",
        stat_port=8888,
        listen_port=443,
        secret=SECRET,
        secret_source_path=Path("/etc/mtpulse/proxy-secret"),
        config_source_path=Path("/etc/mtpulse/proxy-multi.conf"),
        worker_count=1,
    )
    return ServiceDescriptor(unit_name="mtpulse", argv=argv)


class TestRender:

    def test_sections_and_fixed_fields(self, descriptor: ServiceDescriptor):
        text = descriptor.render()
        assert text.startswith("[Unit]\n")
        for line in (
            "After=network.target",
            "Restart=always",
            "User=root",
            "LimitNOFILE=65536",
            "WantedBy=multi-user.target",
        ):
            assert line in text.splitlines()

    def test_exec_start_is_serialized_argv(self, descriptor: ServiceDescriptor):
        exec_lines = [l for l in descriptor.render().splitlines() if l.startswith("ExecStart=")]
        assert len(exec_lines) == 1
        assert f"-S {SECRET}" in exec_lines[0]


class TestParseUnit:

    def test_round_trip(self, descriptor: ServiceDescriptor):
        assert parse_unit("mtpulse", descriptor.render()) == descriptor

    def test_custom_metadata_preserved(self, descriptor: ServiceDescriptor):
        custom = ServiceDescriptor(
            unit_name="mtpulse",
            argv=descriptor.argv,
            description="Custom",
            restart="on-failure",
            nofile_limit=1024,
        )
        parsed = parse_unit("mtpulse", custom.render())
        assert parsed.description == "Custom"
        assert parsed.restart == "on-failure"
        assert parsed.nofile_limit == 1024

    def test_missing_exec_start(self):
        assert parse_unit("mtpulse", "[Unit]\nDescription=x\n\n[Service]\nRestart=always\n") is None

    def test_garbage_exec_start(self):
        assert parse_unit("mtpulse", "[Service]\nExecStart=/bin/true --foo\n") is None

    def test_not_an_ini_file(self):
        assert parse_unit("mtpulse", "ExecStart=/bin/true") is None


class TestDescriptorStore:

    def test_write_then_read(self, tmp_path: Path, descriptor: ServiceDescriptor):
        store = DescriptorStore(tmp_path / "systemd")
        path = store.write(descriptor)

        assert path == tmp_path / "systemd" / "mtpulse.service"
        assert store.exists("mtpulse")
        assert store.read("mtpulse") == descriptor
        assert oct(path.stat().st_mode & 0o777) == oct(0o644)

    def test_no_temp_files_left(self, tmp_path: Path, descriptor: ServiceDescriptor):
        store = DescriptorStore(tmp_path)
        store.write(descriptor)
        store.write(descriptor.with_argv(descriptor.argv.with_tag("b" * 32)))
        assert [p.name for p in tmp_path.iterdir()] == ["mtpulse.service"]

    def test_read_missing(self, tmp_path: Path):
        assert DescriptorStore(tmp_path).read("mtpulse") is None

    def test_failed_replace_keeps_old_file(
        self, tmp_path: Path, descriptor: ServiceDescriptor, monkeypatch
    ):
        """替换失败时旧文件保持不变，临时文件被清理"""
        store = DescriptorStore(tmp_path)
        path = store.write(descriptor)
        before = path.read_text()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(PersistenceFailure, match="disk full"):
            store.write(descriptor.with_argv(descriptor.argv.with_tag("c" * 32)))

        assert path.read_text() == before
        assert [p.name for p in tmp_path.iterdir()] == ["mtpulse.service"]

    def test_remove_is_idempotent(self, tmp_path: Path, descriptor: ServiceDescriptor):
        store = DescriptorStore(tmp_path)
        store.write(descriptor)
        assert store.remove("mtpulse") is True
        assert store.remove("mtpulse") is True
        assert not store.exists("mtpulse")
