"""
CLI 入口

用法: python -m mtpulse [子命令]
"""
import sys

from mtpulse.main import main


if __name__ == "__main__":
    sys.exit(main())
