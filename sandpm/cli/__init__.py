"""sandpm 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os
from typing import Any, Callable

import click

from sandpm import __version__
from sandpm.core.config import Config
from sandpm.core.exceptions import SandpmError
from sandpm.utils.logger import setup_logging


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """install / analyze / resolve 共用的配置覆盖选项"""
    options = [
        click.option("--config", "-c", "config_path", default="sandpm.yml",
                     help="配置文件路径"),
        click.option("--root", default=None, help="项目根目录（存储内路径）"),
        click.option("--registry", default=None, help="registry 地址"),
        click.option("--workers", "-w", type=int, default=None,
                     help="并发 worker 数（0 表示使用 CPU 数）"),
        click.option("--storage-dir", default=None, help="本地存储根目录"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def load_config(
    config_path: str,
    root: str | None = None,
    registry: str | None = None,
    workers: int | None = None,
    storage_dir: str | None = None,
) -> Config:
    """读取配置文件并应用命令行覆盖，配置错误转为 click 错误"""
    try:
        cfg = Config.from_file(config_path)
        return cfg.override(
            root_dir=root, registry=registry,
            max_workers=workers, storage_dir=storage_dir,
        )
    except SandpmError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """sandpm - 进程内 npm 依赖解析与安装"""
    setup_logging(
        level=os.getenv("SANDPM_LOG_LEVEL", "INFO"),
        json_output=os.getenv("SANDPM_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from sandpm.cli.cmd_install import register as _reg_install  # noqa: E402
from sandpm.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_install(main)
_reg_cache(main)
