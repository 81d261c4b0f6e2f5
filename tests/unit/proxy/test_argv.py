"""
ArgVector 编解码测试
"""
from pathlib import Path

import pytest

from mtpulse.core.errors import InvalidPort, InvalidTagFormat, ValidationError
from mtpulse.proxy.argv import ArgVector, parse, serialize
from mtpulse.proxy.planner import generate_secret


SECRET = "0123456789abcdef0123456789abcdef"
TAG = "a" * 32


def make_argv(**overrides) -> ArgVector:
    fields = dict(
        binary=Path("/usr/local/bin/mtproto-proxy"),
        user="nobody",
        stat_port=8888,
        listen_port=443,
        secret=SECRET,
        secret_source_path=Path("/etc/mtpulse/proxy-secret"),
        config_source_path=Path("/etc/mtpulse/proxy-multi.conf"),
        worker_count=1,
    )
    fields.update(overrides)
    return ArgVector(**fields)


class TestSerialize:

    def test_canonical_order(self):
        """flag 顺序固定，-P 在最后"""
        line = serialize(make_argv(sponsor_tag=TAG))
        assert line == (
            "/usr/local/bin/mtproto-proxy -u nobody -p 8888 -H 443 "
            f"-S {SECRET} --aes-pwd /etc/mtpulse/proxy-secret "
            f"/etc/mtpulse/proxy-multi.conf -M 1 -P {TAG}"
        )

    def test_no_tag_omits_flag(self):
        assert "-P" not in serialize(make_argv()).split()

    def test_deterministic(self):
        assert serialize(make_argv()) == serialize(make_argv())

    def test_paths_with_spaces_are_quoted(self):
        argv = make_argv(config_source_path=Path("/etc/mt pulse/proxy-multi.conf"))
        line = serialize(argv)
        assert "'/etc/mt pulse/proxy-multi.conf'" in line
        assert parse(line) == argv


class TestParse:

    @pytest.mark.parametrize("tag", [None, TAG])
    @pytest.mark.parametrize("secret", [SECRET, *(generate_secret() for _ in range(3))])
    @pytest.mark.parametrize("port", [1, 443, 65535])
    def test_round_trip(self, port, secret, tag):
        argv = make_argv(listen_port=port, secret=secret, sponsor_tag=tag)
        assert parse(serialize(argv)) == argv

    def test_flags_in_any_order(self):
        """按 flag 名提取，与位置无关"""
        line = (
            f"/bin/mtproto-proxy -P {TAG} -M 2 -S {SECRET} /c.conf "
            "--aes-pwd /s -H 8443 -p 9999 -u proxy"
        )
        argv = parse(line)
        assert argv is not None
        assert argv.listen_port == 8443
        assert argv.stat_port == 9999
        assert argv.user == "proxy"
        assert argv.worker_count == 2
        assert argv.sponsor_tag == TAG
        assert argv.config_source_path == Path("/c.conf")

    @pytest.mark.parametrize("line", [
        "",
        # 缺少 -S
        "/bin/p -u nobody -p 8888 -H 443 --aes-pwd /s /c -M 1",
        # 未知 flag
        f"/bin/p -u nobody -p 8888 -H 443 -S {SECRET} --aes-pwd /s /c -M 1 --http-stats",
        # 重复 flag
        f"/bin/p -u nobody -p 8888 -H 443 -H 444 -S {SECRET} --aes-pwd /s /c -M 1",
        # flag 缺值
        f"/bin/p -u nobody -p 8888 -H 443 -S {SECRET} --aes-pwd /s /c -M",
        # 两个位置参数
        f"/bin/p -u nobody -p 8888 -H 443 -S {SECRET} --aes-pwd /s /c /d -M 1",
        # 端口非数字
        f"/bin/p -u nobody -p 8888 -H abc -S {SECRET} --aes-pwd /s /c -M 1",
        # 端口越界
        f"/bin/p -u nobody -p 8888 -H 70000 -S {SECRET} --aes-pwd /s /c -M 1",
        # 端口带符号、非 ASCII 数字或前导零，回写后会变样
        f"/bin/p -u nobody -p 8888 -H +443 -S {SECRET} --aes-pwd /s /c -M 1",
        f"/bin/p -u nobody -p 8888 -H \u0664\u0664\u0663 -S {SECRET} --aes-pwd /s /c -M 1",
        f"/bin/p -u nobody -p 8888 -H 0443 -S {SECRET} --aes-pwd /s /c -M 1",
        f"/bin/p -u nobody -p 8888 -H 443 -S {SECRET} --aes-pwd /s /c -M +1",
        # Tag 格式错误
        f"/bin/p -u nobody -p 8888 -H 443 -S {SECRET} --aes-pwd /s /c -M 1 -P xyz",
        # 引号未闭合
        "/bin/p -u 'nobody",
    ])
    def test_malformed_returns_none(self, line):
        assert parse(line) is None


class TestValidation:

    def test_invalid_listen_port(self):
        with pytest.raises(InvalidPort):
            make_argv(listen_port=0)

    def test_invalid_secret(self):
        with pytest.raises(ValidationError):
            make_argv(secret="XYZ")

    def test_uppercase_tag_rejected(self):
        with pytest.raises(InvalidTagFormat):
            make_argv(sponsor_tag="A" * 32)

    def test_with_tag_changes_only_tag(self):
        argv = make_argv()
        tagged = argv.with_tag(TAG)
        assert tagged.sponsor_tag == TAG
        assert tagged.with_tag(None) == argv
        assert argv.sponsor_tag is None
