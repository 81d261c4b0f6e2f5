"""
MTPulse - MTProto Proxy 生命周期管理

安装官方 mtproto-proxy、生成并持久化启动参数、以 systemd 服务运行，
支持不重装即可修改 Sponsor Tag。
"""
__version__ = "1.0.0"
