"""sandpm - 沙箱内包管理器

在宿主进程内完成依赖解析、tarball 下载解压与落盘，不依赖任何原生进程。
"""

__version__ = "0.1.0"
