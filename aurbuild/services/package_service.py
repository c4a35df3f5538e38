"""包服务 — 解析 / 构建安装 / 搜索 / 列出 / 卸载的统一入口

CLI 与其他调用方只与本服务交互:
  plan()     每次调用新建 RunContext（索引缓存随运行丢弃），读取已安装快照并解析
  install()  解析成功后交给编排器；解析期错误在任何拉取之前直接上抛
  search()   按关键字搜索索引，按热度降序
  list_installed()  列出源码构建的已安装包
  remove()   通过 pacman 卸载并删除对应的源码目录
"""

from __future__ import annotations

import fnmatch
import logging
import re
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator

from aurbuild.core.exceptions import InstallError, ValidationError
from aurbuild.core.index import PackageIndex, RunContext, retry_call
from aurbuild.core.installed import PacmanInspector
from aurbuild.core.installer import PackageManager
from aurbuild.core.models import BuildPlan, BuildReport, InstalledPackage, SearchResult
from aurbuild.core.orchestrator import BuildOrchestrator
from aurbuild.core.resolver import DependencyResolver

logger = logging.getLogger(__name__)


@dataclass
class RemoveResult:
    """单个包的卸载结果"""

    name: str
    uninstalled: bool = False
    source_removed: bool = False
    error: str = ""

    @property
    def success(self) -> bool:
        return self.uninstalled and not self.error


def _matcher(patterns: Iterable[str], regex: bool) -> Callable[[str], bool]:
    """包名匹配: 通配符（默认）或正则；无模式时全部匹配"""
    pats = [p for p in patterns if p]
    if not pats:
        return lambda _name: True
    if regex:
        try:
            compiled = [re.compile(p) for p in pats]
        except re.error as e:
            raise ValidationError(f"无效的正则表达式: {e}") from e
        return lambda name: any(c.search(name) for c in compiled)
    return lambda name: any(fnmatch.fnmatchcase(name, p) for p in pats)


@contextmanager
def _interactive(manager: PackageManager, enabled: bool) -> Iterator[None]:
    """调用期间切换包管理器的交互模式，结束后恢复"""
    previous = manager.interactive
    manager.interactive = enabled
    try:
        yield
    finally:
        manager.interactive = previous


class PackageService:
    """源码包生命周期管理"""

    def __init__(
        self,
        index: PackageIndex,
        inspector: PacmanInspector,
        manager: PackageManager,
        orchestrator: BuildOrchestrator,
        src_dir: str | Path,
        *,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
    ) -> None:
        self.index = index
        self.inspector = inspector
        self.manager = manager
        self.orchestrator = orchestrator
        self.src_dir = Path(src_dir)
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    # ---- 解析 / 安装 ----

    def plan(self, names: list[str]) -> BuildPlan:
        """解析请求的包，返回构建计划

        Raises:
            ValidationError: 未指定包名
            ResolutionError: 未找到 / 循环依赖 / 冲突
            TransportError: 索引多次重试后仍不可达
        """
        if not any(n.strip() for n in names):
            raise ValidationError("至少指定一个包名")
        context = RunContext(
            self.index, self.inspector.snapshot(),
            max_attempts=self.max_attempts, backoff_base=self.backoff_base,
        )
        resolver = DependencyResolver(context, in_repos=self.inspector.in_repos)
        plan = resolver.resolve(names)
        logger.debug("本次解析共查询索引 %d 次", context.queries)
        return plan

    def install(
        self,
        names: list[str],
        cancel: threading.Event | None = None,
        *,
        interactive: bool = False,
    ) -> BuildReport:
        """解析并构建安装，返回逐包报告

        interactive 时 pacman 事务不加 --noconfirm，由用户在终端确认。
        """
        plan = self.plan(names)
        if not plan.nodes:
            logger.info("所有请求的包均已满足，无需构建")
        with _interactive(self.manager, interactive):
            return self.orchestrator.build(plan, cancel=cancel)

    # ---- 查询 ----

    def search(self, keywords: list[str]) -> list[SearchResult]:
        words = [k for k in keywords if k.strip()]
        if not words:
            raise ValidationError("至少指定一个搜索关键字")
        results = retry_call(
            lambda: self.index.search(words),
            attempts=self.max_attempts, backoff_base=self.backoff_base,
            label=f"搜索 {' '.join(words)}",
        )
        return sorted(results, key=lambda r: r.popularity, reverse=True)

    def list_installed(self, patterns: Iterable[str] = (), regex: bool = False) -> list[InstalledPackage]:
        """列出源码构建的已安装包，可按通配符 / 正则过滤"""
        match = _matcher(patterns, regex)
        return sorted(
            (p for p in self.inspector.list_foreign() if match(p.name)),
            key=lambda p: p.name,
        )

    # ---- 卸载 ----

    def _removal_targets(self, names: Iterable[str], regex: bool) -> list[str]:
        pats = [n for n in names if n]
        if not pats:
            raise ValidationError("至少指定一个包名")
        match = _matcher(pats, regex)
        candidates = {p.name for p in self.inspector.list_foreign()}
        if self.src_dir.is_dir():
            candidates.update(
                d.name for d in self.src_dir.iterdir()
                if d.is_dir() and not d.name.startswith(".")
            )
        return sorted(n for n in candidates if match(n))

    def remove(
        self,
        names: list[str],
        *,
        force: bool = False,
        regex: bool = False,
        interactive: bool = False,
        confirm: Callable[[str], bool] | None = None,
    ) -> list[RemoveResult]:
        """卸载包并删除源码目录

        卸载失败时保留源码目录；force 时无论卸载结果都删除，且不再逐个确认。
        """
        with _interactive(self.manager, interactive):
            return self._remove(self._removal_targets(names, regex), force, confirm)

    def _remove(
        self,
        targets: list[str],
        force: bool,
        confirm: Callable[[str], bool] | None,
    ) -> list[RemoveResult]:
        results: list[RemoveResult] = []
        for name in targets:
            if not force and confirm is not None and not confirm(name):
                logger.info("已取消卸载: %s", name)
                continue
            result = RemoveResult(name=name)
            try:
                self.manager.remove([name])
                result.uninstalled = True
            except InstallError as e:
                result.error = str(e)
                logger.error("卸载失败 %s: %s", name, e)

            source = self.src_dir / name
            if (result.uninstalled or force) and source.exists():
                try:
                    shutil.rmtree(source)
                    result.source_removed = True
                    logger.info("已删除源码目录: %s", source)
                except OSError as e:
                    result.error = result.error or f"删除源码目录失败 {source}: {e}"
                    logger.error("删除源码目录失败 %s: %s", source, e)
            results.append(result)
        return results
