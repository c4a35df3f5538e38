"""服务容器 — 统一依赖注入，消除各层之间的裸构造

所有协作者通过容器获取，同一容器内的实例共享（安装锁、执行器等）。
CLI 应通过 get_container() 获取服务，而非直接 import 构造。

依赖关系图（→ 表示依赖）:
  packages     → index, inspector, manager, orchestrator
  orchestrator → fetcher, build_tool, reconciler
  reconciler   → inspector, manager

Config 注入:
  容器接受可选 Config 参数；不提供时使用全局 get_config()。
  executor 参数用于替换所有子进程调用（测试时注入假实现）。

用法:
    container = ServiceContainer()
    report = container.packages.install(["foo"])

    # 全局单例
    from aurbuild.services.container import get_container
    results = get_container().packages.search(["foo"])
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aurbuild.core.buildtool import MakepkgBuildTool
    from aurbuild.core.config import Config
    from aurbuild.core.fetcher import RecipeFetcher
    from aurbuild.core.index import PackageIndex
    from aurbuild.core.installed import PacmanInspector
    from aurbuild.core.installer import PacmanManager
    from aurbuild.core.orchestrator import BuildOrchestrator
    from aurbuild.core.reconciler import InstallReconciler
    from aurbuild.services.package_service import PackageService
    from aurbuild.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 — 每个实例持有一组共享的协作者"""

    def __init__(
        self,
        config: Config | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from aurbuild.core.config import get_config
            config = get_config()
        self._config = config
        self._executor = executor

    @property
    def config(self) -> Config:
        return self._config

    # ---- 外部协作者 ----

    @property
    def index(self) -> PackageIndex:
        if "index" not in self._instances:
            if self._config.index == "manifest":
                from aurbuild.core.index import ManifestIndex
                self._instances["index"] = ManifestIndex(self._config.manifest)
            else:
                from aurbuild.core.index import AurClient
                self._instances["index"] = AurClient(
                    aur_url=self._config.aur_url, timeout=self._config.http_timeout,
                )
        return self._instances["index"]  # type: ignore[return-value]

    @property
    def inspector(self) -> PacmanInspector:
        if "inspector" not in self._instances:
            from aurbuild.core.installed import PacmanInspector
            self._instances["inspector"] = PacmanInspector(
                pacman_cmd=self._config.pacman_cmd, executor=self._executor,
            )
        return self._instances["inspector"]  # type: ignore[return-value]

    @property
    def manager(self) -> PacmanManager:
        if "manager" not in self._instances:
            from aurbuild.core.installer import PacmanManager
            self._instances["manager"] = PacmanManager(
                pacman_cmd=self._config.pacman_cmd,
                use_sudo=self._config.use_sudo,
                executor=self._executor,
            )
        return self._instances["manager"]  # type: ignore[return-value]

    # ---- 构建流水线 ----

    @property
    def fetcher(self) -> RecipeFetcher:
        if "fetcher" not in self._instances:
            from aurbuild.core.fetcher import RecipeFetcher
            self._instances["fetcher"] = RecipeFetcher(
                executor=self._executor, timeout=self._config.http_timeout,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def build_tool(self) -> MakepkgBuildTool:
        if "build_tool" not in self._instances:
            from aurbuild.core.buildtool import MakepkgBuildTool
            self._instances["build_tool"] = MakepkgBuildTool(
                build_cmd=self._config.build_cmd, executor=self._executor,
            )
        return self._instances["build_tool"]  # type: ignore[return-value]

    @property
    def reconciler(self) -> InstallReconciler:
        if "reconciler" not in self._instances:
            from aurbuild.core.reconciler import InstallReconciler
            self._instances["reconciler"] = InstallReconciler(self.inspector, self.manager)
        return self._instances["reconciler"]  # type: ignore[return-value]

    @property
    def orchestrator(self) -> BuildOrchestrator:
        if "orchestrator" not in self._instances:
            from aurbuild.core.orchestrator import BuildOrchestrator
            self._instances["orchestrator"] = BuildOrchestrator(
                fetcher=self.fetcher,
                build_tool=self.build_tool,
                reconciler=self.reconciler,
                src_dir=self._config.src_dir,
                pkg_dir=self._config.pkg_dir,
                max_workers=self._config.max_workers,
                build_timeout=self._config.build_timeout or None,
                cancel_grace=self._config.cancel_grace,
            )
        return self._instances["orchestrator"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def packages(self) -> PackageService:
        if "packages" not in self._instances:
            from aurbuild.services.package_service import PackageService
            self._instances["packages"] = PackageService(
                index=self.index,
                inspector=self.inspector,
                manager=self.manager,
                orchestrator=self.orchestrator,
                src_dir=self._config.src_dir,
                max_attempts=self._config.max_attempts,
                backoff_base=self._config.backoff_base,
            )
        return self._instances["packages"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
