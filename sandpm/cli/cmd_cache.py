"""CLI: 运行缓存管理命令"""

from __future__ import annotations

import click

from sandpm.cli import load_config
from sandpm.core.exceptions import SandpmError
from sandpm.core.run_cache import RunCache
from sandpm.core.storage import create_storage


def register(group: click.Group) -> None:
    group.add_command(cache_group)


@click.group(name="cache")
def cache_group() -> None:
    """.depCache / .installCache 管理"""


@cache_group.command(name="clear")
@click.option("--config", "-c", "config_path", default="sandpm.yml", help="配置文件路径")
@click.option("--root", default=None, help="项目根目录（存储内路径）")
@click.option("--storage-dir", default=None, help="本地存储根目录")
def cache_clear(config_path: str, root: str | None, storage_dir: str | None) -> None:
    """删除分析缓存与安装缓存"""
    cfg = load_config(config_path, root=root, storage_dir=storage_dir)
    try:
        RunCache(create_storage(cfg.storage_backend, cfg.storage_dir), cfg.root_dir).clear()
    except SandpmError as e:
        raise click.ClickException(str(e)) from e
    click.echo("缓存已清除")


@cache_group.command(name="show")
@click.option("--config", "-c", "config_path", default="sandpm.yml", help="配置文件路径")
@click.option("--root", default=None, help="项目根目录（存储内路径）")
@click.option("--storage-dir", default=None, help="本地存储根目录")
def cache_show(config_path: str, root: str | None, storage_dir: str | None) -> None:
    """显示缓存中的已解析包与已安装包"""
    cfg = load_config(config_path, root=root, storage_dir=storage_dir)
    cache = RunCache(create_storage(cfg.storage_backend, cfg.storage_dir), cfg.root_dir)
    packages = cache.load_analysis()
    installed = cache.load_installed()
    if not packages and not installed:
        click.echo("没有缓存。")
        return
    for p in sorted(packages, key=lambda p: p.name):
        marker = " [已安装]" if p.name in installed else ""
        click.echo(f"  {p.name:30s} {p.version}{marker}")
