"""CLI: 依赖分析与安装命令"""

from __future__ import annotations

import json

import click

from sandpm.cli import common_options, load_config
from sandpm.core.config import Config
from sandpm.core.exceptions import SandpmError
from sandpm.core.storage import create_storage
from sandpm.services.install_service import InstallService


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(analyze)
    group.add_command(resolve)


def _service(cfg: Config) -> InstallService:
    storage = create_storage(cfg.storage_backend, cfg.storage_dir)
    return InstallService(storage, cfg)


@click.command()
@common_options
@click.option("--clear-cache", is_flag=True, help="安装前清除 .depCache / .installCache")
@click.option("--fail-fast", is_flag=True, help="任一包失败立即中止")
def install(
    config_path: str, root: str | None, registry: str | None,
    workers: int | None, storage_dir: str | None,
    clear_cache: bool, fail_fast: bool,
) -> None:
    """解析 package.json 的依赖并安装到 node_modules"""
    cfg = load_config(config_path, root, registry, workers, storage_dir)
    cfg = cfg.override(
        clear_cache=clear_cache or None,
        continue_on_error=False if fail_fast else None,
    )
    try:
        report = _service(cfg).install()
    except SandpmError as e:
        raise click.ClickException(str(e)) from e

    summary = report.summary()
    click.echo(
        f"解析 {summary['resolved']} 个, 新安装 {summary['installed']} 个, "
        f"失败 {summary['failed']} 个, 耗时 {summary['duration']}s"
    )
    for failure in report.failures:
        click.echo(f"  [{failure.phase}] {failure.key}: {failure.message}", err=True)
    if not report.success:
        raise SystemExit(1)


@click.command()
@common_options
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def analyze(
    config_path: str, root: str | None, registry: str | None,
    workers: int | None, storage_dir: str | None, as_json: bool,
) -> None:
    """只做依赖分析，输出解析后的完整依赖列表"""
    cfg = load_config(config_path, root, registry, workers, storage_dir)
    try:
        packages, report = _service(cfg).analyze()
    except SandpmError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps([p.to_cache_entry() for p in packages],
                              indent=2, ensure_ascii=False))
    else:
        for p in sorted(packages, key=lambda p: p.name):
            click.echo(f"  {p.name:30s} {p.version}")
        click.echo(f"共 {len(packages)} 个包 (本次派发 {report.dispatched} 个)")
    for failure in report.failures:
        click.echo(f"  [失败] {failure.key}: {failure.message}", err=True)
    if not report.ok:
        raise SystemExit(1)


@click.command()
@click.argument("name")
@click.argument("version_range", default="latest")
@common_options
def resolve(
    name: str, version_range: str, config_path: str, root: str | None,
    registry: str | None, workers: int | None, storage_dir: str | None,
) -> None:
    """解析单个包的版本范围，输出具体版本与 tarball 地址"""
    cfg = load_config(config_path, root, registry, workers, storage_dir)
    try:
        pkg = _service(cfg).resolve(name, version_range)
    except SandpmError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{pkg.spec} {pkg.tarball_url}")
    for dep, rng in pkg.dependencies:
        click.echo(f"  {dep} {rng}")
