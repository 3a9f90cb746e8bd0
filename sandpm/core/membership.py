"""跨执行上下文共享的成员集合

容量为 N 的集合，底层是 N x N 个 uint32 槽位，放在共享内存
（multiprocessing.RawArray）中，可传给子进程使用。

  - 槽位值 0 表示空，其余值为 key 的哈希；不支持删除（无墓碑）
  - 写入: 对单个槽位做 compare-and-swap(0 -> hash)，冲突时双重哈希探测
  - 读取: 直接读槽位，不加锁

CPython 没有面向用户的原子 CAS 指令，CAS 由按槽位分段的锁实现，
不存在全局锁；不同分段上的写入互不阻塞。

已知缺陷: 哈希恰好为 0 的 key（例如空串）与空槽位无法区分，
add 之后 has 仍返回 False。

集合只保存哈希，哈希相同的不同 key 互相视为已存在；
需要按精确包名去重时使用 NameClaims。

用法:
    members = ConcurrentMembershipSet(64)
    members.add("lodash")
    members.has("lodash")      # True
    members.claim("react")     # True，首次占用
    members.claim("react")     # False，已被占用
"""

from __future__ import annotations

import ctypes
import logging
import multiprocessing
import threading
from typing import Any

from sandpm.core.exceptions import CapacityExceeded

logger = logging.getLogger(__name__)

UINT32_MASK = 0xFFFFFFFF
EMPTY = 0

# 分段锁数量上限
MAX_LOCK_STRIPES = 16


def hash_key(key: str) -> int:
    """多项式滚动哈希 h = h*31 + code_unit（按 UTF-16 码元，截断为 uint32）"""
    data = key.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        h = (h * 31 + int.from_bytes(data[i:i + 2], "little")) & UINT32_MASK
    return h


class ConcurrentMembershipSet:
    """固定容量、无删除的共享成员集合"""

    def __init__(self, capacity: int, ctx: Any = None) -> None:
        if capacity < 1:
            raise ValueError(f"容量必须为正数: {capacity}")
        ctx = ctx or multiprocessing.get_context()
        self.capacity = capacity
        self._table = ctx.RawArray(ctypes.c_uint32, capacity * capacity)
        self._locks = tuple(ctx.Lock() for _ in range(min(capacity, MAX_LOCK_STRIPES)))
        self._count = ctx.RawValue(ctypes.c_uint32, 0)
        self._count_lock = ctx.Lock()

    def __len__(self) -> int:
        return int(self._count.value)

    # ------------------------------------------------------------------
    # 探测序列
    # ------------------------------------------------------------------

    def _start(self, h: int) -> tuple[int, int]:
        n = self.capacity
        return h % n, (h // n) % n

    def _next(self, row: int, col: int, attempt: int) -> tuple[int, int]:
        n = self.capacity
        prime = max(n - 1, 1)
        step = prime - ((row * n + col) % prime)
        col = (col + attempt * step) % n
        if col == 0:
            row = (row + attempt) % n
        return row, col

    def _compare_exchange(self, index: int, expected: int, value: int) -> int:
        """槽位 CAS，返回写入前的值"""
        with self._locks[index % len(self._locks)]:
            current = int(self._table[index])
            if current == expected:
                self._table[index] = value
            return current

    # ------------------------------------------------------------------
    # 容量计数
    # ------------------------------------------------------------------

    def _reserve(self) -> None:
        with self._count_lock:
            if self._count.value >= self.capacity:
                raise CapacityExceeded(
                    f"成员集合已满 ({self.capacity})，无法继续添加",
                )
            self._count.value += 1

    def _unreserve(self) -> None:
        with self._count_lock:
            self._count.value -= 1

    def _insert(self, h: int, *, claim: bool) -> bool:
        row, col = self._start(h)
        attempt = 0
        while True:
            previous = self._compare_exchange(row * self.capacity + col, EMPTY, h)
            if previous == EMPTY:
                return True
            if claim and previous == h:
                return False
            attempt += 1
            row, col = self._next(row, col, attempt)
            if attempt >= self.capacity:
                raise CapacityExceeded(
                    f"探测 {self.capacity} 次仍未找到空槽位",
                )

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    def add(self, key: str) -> None:
        """写入 key

        Raises:
            CapacityExceeded: 已有 capacity 个 key，或探测次数耗尽
        """
        self._reserve()
        try:
            self._insert(hash_key(key), claim=False)
        except CapacityExceeded:
            self._unreserve()
            raise

    def claim(self, key: str) -> bool:
        """test-and-set: 首次写入返回 True，同哈希的 key 已存在返回 False"""
        if self.has(key):
            return False
        self._reserve()
        try:
            inserted = self._insert(hash_key(key), claim=True)
        except CapacityExceeded:
            self._unreserve()
            raise
        if not inserted:
            self._unreserve()
        return inserted

    def has(self, key: str) -> bool:
        h = hash_key(key)
        row, col = self._start(h)
        attempt = 0
        while True:
            value = int(self._table[row * self.capacity + col])
            if value == EMPTY:
                return False
            if value == h:
                return True
            attempt += 1
            row, col = self._next(row, col, attempt)
            if attempt >= self.capacity:
                return False

    def buffer(self) -> Any:
        """底层共享数组，供子进程直接读取"""
        return self._table


class NameClaims:
    """安装阶段各 worker 共享的包名占用表

    精确包名集合决定是否已被占用；哈希集合同步写入，
    作为跨进程可读的共享视图。哈希相同的不同包名各自都能占用成功。
    """

    def __init__(self, capacity: int, ctx: Any = None) -> None:
        self.members = ConcurrentMembershipSet(capacity, ctx)
        self._lock = threading.Lock()
        self._names: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def claim(self, name: str) -> bool:
        """首次占用返回 True，同名已被占用返回 False"""
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
        try:
            self.members.add(name)
        except CapacityExceeded:
            logger.warning("共享成员集合已满，%s 仅记录在本进程占用表中", name,
                           extra={"package": name})
        return True

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._names
