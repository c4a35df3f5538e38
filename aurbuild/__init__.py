"""aurbuild - AUR 源码包解析、构建与安装"""

__version__ = "0.3.0"
