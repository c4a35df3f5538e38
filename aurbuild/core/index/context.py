"""索引协议、传输重试与单次运行上下文

RunContext 持有一次解析运行内的全部缓存（索引记录 + 已安装快照），
随运行创建、随运行丢弃，不做进程级缓存，避免跨运行读到过期版本。
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, TypeVar

from aurbuild.core.exceptions import PackageNotFoundError, TransportError
from aurbuild.core.models import InstalledSet, PackageRecord, SearchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PackageIndex(Protocol):
    """包索引协议 — AUR RPC、本地清单等实现同一接口"""

    def lookup(self, name: str) -> PackageRecord:
        """查询单个包；不存在抛 PackageNotFoundError，传输失败抛 TransportError"""
        ...

    def search(self, keywords: list[str]) -> list[SearchResult]:
        """按关键字搜索"""
        ...


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 1.0,
    label: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """调用 fn，TransportError 按指数退避重试，最多 attempts 次

    非 retryable 的异常（如 PackageNotFoundError）立即上抛。
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransportError as e:
            if attempt >= attempts:
                logger.error("%s 重试 %d 次后仍失败: %s", label or "索引查询", attempts, e)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "%s 传输失败 (第 %d/%d 次)，%.1f 秒后重试: %s",
                label or "索引查询", attempt, attempts, delay, e,
            )
            sleep(delay)
    raise AssertionError("unreachable")


class RunContext:
    """单次解析运行上下文 — 索引结果按包名缓存，菱形依赖只查询一次"""

    def __init__(
        self,
        index: PackageIndex,
        installed: InstalledSet | None = None,
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.index = index
        self.installed = installed if installed is not None else InstalledSet()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._records: dict[str, PackageRecord] = {}
        self._missing: set[str] = set()
        self.queries = 0

    def lookup(self, name: str) -> PackageRecord:
        if name in self._records:
            return self._records[name]
        if name in self._missing:
            raise PackageNotFoundError(name)

        def _query() -> PackageRecord:
            self.queries += 1
            return self.index.lookup(name)

        try:
            record = retry_call(
                _query, attempts=self.max_attempts,
                backoff_base=self.backoff_base,
                label=f"查询 {name}", sleep=self._sleep,
            )
        except PackageNotFoundError:
            self._missing.add(name)
            raise
        self._records[name] = record
        return record

    @property
    def records(self) -> dict[str, PackageRecord]:
        return dict(self._records)
