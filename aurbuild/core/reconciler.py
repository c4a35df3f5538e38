"""安装协调器

构建成功后决定是否安装 / 升级产物。

持有唯一的安装锁: 所有已安装集合查询与 pacman 事务都在锁内串行执行，
并发构建的多个 worker 不会同时发起事务。
安装前用即时查询复核版本（而非运行开始时的快照），
期间被其他进程装上同版本或更新版本时直接视为成功。
"""

from __future__ import annotations

import logging
import threading

from aurbuild.core.exceptions import InstallError
from aurbuild.core.installed import InstalledInspector
from aurbuild.core.installer import PackageManager
from aurbuild.core.models import BuildArtifact, NodeStatus, PlanNode
from aurbuild.core.version import vercmp

logger = logging.getLogger(__name__)


class InstallReconciler:
    """串行化的安装协调器"""

    def __init__(self, inspector: InstalledInspector, manager: PackageManager) -> None:
        self.inspector = inspector
        self.manager = manager
        self._lock = threading.Lock()

    def ensure_system_deps(self, names: list[str]) -> None:
        """从系统仓库安装依赖（--needed，已装的不会重装）"""
        if not names:
            return
        with self._lock:
            logger.info("安装系统仓库依赖: %s", ", ".join(names))
            self.manager.install_repo(list(names))

    def reconcile(self, node: PlanNode, artifact: BuildArtifact) -> None:
        """安装 built 状态节点的产物，节点迁移到 installed / failed

        Raises:
            InstallConflictError: 与已安装包文件冲突
            InstallError: 其他安装失败
        """
        with self._lock:
            current = self.inspector.query(node.name)
            if current is not None and vercmp(current.version, artifact.version) >= 0:
                logger.info(
                    "跳过安装 %s: 已安装 %s >= 构建 %s",
                    node.name, current.version, artifact.version,
                )
                node.transition(NodeStatus.INSTALLED, f"already installed {current.version}")
                return

            action = "升级" if current is not None else "安装"
            logger.info(
                "%s %s %s%s", action, node.name, artifact.version,
                "" if node.requested else " (作为依赖)",
            )
            try:
                self.manager.install_files(artifact.files, as_deps=not node.requested)
            except InstallError as e:
                node.transition(NodeStatus.FAILED, str(e))
                raise
            node.transition(NodeStatus.INSTALLED)
