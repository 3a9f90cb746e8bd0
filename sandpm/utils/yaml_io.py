"""YAML 读取与原子写入工具

配置文件统一经 load_yaml 读取；LocalStorage 的文件写入走 atomic_write，
避免安装中途崩溃留下半截文件。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置文件最大 1MB，正常的 sandpm 配置远小于此
MAX_YAML_SIZE = 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """先写同目录临时文件再 os.replace，str 按 UTF-8 编码写入

    异常:
        OSError: 写入或替换失败（临时文件会被清理）
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    文件不存在、为空或顶层不是映射时返回空字典。

    异常:
        yaml.YAMLError: YAML 格式错误
        ValueError: 文件超过 MAX_YAML_SIZE
    """
    p = Path(path)
    if not p.exists():
        return {}

    size = p.stat().st_size
    if size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({size} 字节), 超过限制 {MAX_YAML_SIZE} 字节"
        )

    with open(p, encoding="utf-8") as f:
        try:
            result = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
            raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 顶层不是映射 (实际类型: %s)，按空配置处理",
            p, type(result).__name__,
        )
        return {}
    return result
