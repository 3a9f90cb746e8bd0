"""安装进度日志流

PackageManager 把进度事件推送到注入的 LogStream，宿主（UI、CLI）通过
subscribe 接收；同时镜像到 sandpm.progress logger，便于统一落日志。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sandpm.utils.logger import PROGRESS_LOGGER

logger = logging.getLogger(__name__)
progress_logger = logging.getLogger(PROGRESS_LOGGER)

_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


@dataclass(frozen=True)
class LogItem:
    """单条进度日志"""

    timestamp: str
    type: str  # "info", "warn", "error"
    message: str


Subscriber = Callable[[LogItem], None]


class LogStream:
    """可订阅的进度日志流（线程安全）"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._closed = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """注册订阅者，返回取消订阅函数"""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def log(self, message: str, type: str = "info") -> LogItem | None:  # noqa: A002
        """推送一条日志；流关闭后忽略"""
        if type not in _LEVELS:
            type = "info"  # noqa: A001
        item = LogItem(
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            type=type,
            message=message,
        )
        with self._lock:
            if self._closed:
                return None
            subscribers = list(self._subscribers)

        progress_logger.log(_LEVELS[type], message)
        for callback in subscribers:
            try:
                callback(item)
            except Exception:
                logger.exception("日志订阅者处理失败: %r", callback)
        return item

    def stop(self) -> None:
        """关闭日志流并清空订阅者"""
        with self._lock:
            self._closed = True
            self._subscribers.clear()

    @property
    def closed(self) -> bool:
        return self._closed
