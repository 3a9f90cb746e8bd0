"""网络工具: URL 安全校验 + 简单 GET"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from typing import Callable
from urllib.parse import urlparse

from sandpm.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# 传输函数签名: (url, timeout) -> 响应体字节；测试中可替换为假实现
HttpGet = Callable[[str, float], bytes]


class HttpStatusError(ConnectionError):
    """服务端返回非 2xx 状态码"""

    def __init__(self, url: str, status: int, reason: str = "") -> None:
        super().__init__(f"HTTP {status} {reason}".strip() + f": {url}")
        self.url = url
        self.status = status
        self.reason = reason


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def http_get(url: str, timeout: float = 30.0) -> bytes:
    """GET 请求并返回完整响应体

    Raises:
        ValidationError: URL 协议非法
        HttpStatusError: 非 2xx 状态码
        OSError: 网络错误（URLError 为其子类）
    """
    validate_url_scheme(url, context="http_get")
    req = urllib.request.Request(
        url, headers={"Accept": "application/json, */*"},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            body: bytes = resp.read()
    except urllib.error.HTTPError as e:
        raise HttpStatusError(url, e.code, str(e.reason or "")) from e
    logger.debug("GET %s -> %d 字节", url, len(body))
    return body
