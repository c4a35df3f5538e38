"""构建编排器 — 按计划顺序并行构建、安装

调度规则:
  - 每个节点维护"未完成计划依赖"计数，归零且仍为 pending 才可启动
  - 可启动节点按计划顺序提交到线程池，并发上限 max_workers
  - 单个 worker 完成一个节点的全流程: 系统依赖 → 落盘配方 → 构建 → 安装
  - 某节点失败: 传递依赖它的、尚未处理的节点全部标记 skipped，无关分支继续
  - WorkspaceError 等致命错误: 不再启动新节点，未开始的节点标记 failed (aborted)
  - 取消信号: 不再启动新节点，进行中的构建在宽限期后被终止，
    未开始的节点标记 skipped (aborted: cancelled)

计数器与节点调度只在协调线程内修改；已安装集合的查询与事务由安装协调器串行化。
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

from aurbuild.core.buildtool import BuildTool
from aurbuild.core.exceptions import AbortedError, AurBuildError, WorkspaceError
from aurbuild.core.fetcher import RecipeFetcher
from aurbuild.core.models import (
    BuildPlan,
    BuildReport,
    NodeStatus,
    PlanNode,
    ReportEntry,
)
from aurbuild.core.reconciler import InstallReconciler

logger = logging.getLogger(__name__)

CANCELLED_DETAIL = "aborted: cancelled"


class BuildOrchestrator:
    """构建计划执行器"""

    def __init__(
        self,
        fetcher: RecipeFetcher,
        build_tool: BuildTool,
        reconciler: InstallReconciler,
        src_dir: str | Path,
        pkg_dir: str | Path,
        *,
        max_workers: int = 1,
        build_timeout: float | None = None,
        cancel_grace: float = 0.0,
    ) -> None:
        self.fetcher = fetcher
        self.build_tool = build_tool
        self.reconciler = reconciler
        self.src_dir = Path(src_dir)
        self.pkg_dir = Path(pkg_dir)
        self.max_workers = max(1, max_workers)
        self.build_timeout = build_timeout
        self.cancel_grace = cancel_grace

    # ------------------------------------------------------------------
    # 单节点流程（worker 线程）
    # ------------------------------------------------------------------

    def _process(self, node: PlanNode, cancel: threading.Event) -> None:
        """building 状态的节点走完全流程，结束时节点处于 installed / failed

        单包错误记录到节点上；WorkspaceError 记录后继续上抛，由协调线程中止整次运行。
        """
        try:
            self.reconciler.ensure_system_deps(node.system_deps)
            if cancel.is_set():
                raise AbortedError("cancelled")
            handle = self.fetcher.materialize(node.record, self.src_dir)
            if cancel.is_set():
                raise AbortedError("cancelled")
            artifact = self.build_tool.build(
                handle, self.pkg_dir / node.name,
                timeout=self.build_timeout, cancel=cancel, grace=self.cancel_grace,
            )
            node.transition(NodeStatus.BUILT)
            self.reconciler.reconcile(node, artifact)
        except AbortedError as e:
            node.transition(NodeStatus.FAILED, f"aborted: {e}")
        except AurBuildError as e:
            if node.status is not NodeStatus.FAILED:
                node.transition(NodeStatus.FAILED, str(e))
            logger.error("%s 失败 [%s]: %s", node.name, e.code, e, extra={"package": node.name})
            if isinstance(e, WorkspaceError):
                raise

    # ------------------------------------------------------------------
    # 协调线程
    # ------------------------------------------------------------------

    def build(self, plan: BuildPlan, cancel: threading.Event | None = None) -> BuildReport:
        """执行计划，返回覆盖全部计划节点与已满足依赖的报告"""
        cancel = cancel or threading.Event()
        unfinished = {n.name: len(n.dependencies) for n in plan.nodes}
        started: dict[str, float] = {}
        durations: dict[str, float] = {}
        running: dict[Future[None], PlanNode] = {}
        abort_reason = ""

        logger.info("开始构建: %d 个包, 并发 %d", len(plan), self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                if not abort_reason and not cancel.is_set():
                    for node in plan.nodes:
                        if len(running) >= self.max_workers:
                            break
                        if node.status is NodeStatus.PENDING and unfinished[node.name] == 0:
                            node.transition(NodeStatus.BUILDING)
                            started[node.name] = time.monotonic()
                            logger.info("[%d/%d] 开始: %s %s", plan.index(node.name) + 1,
                                        len(plan), node.name, node.record.version,
                                        extra={"package": node.name})
                            running[pool.submit(self._process, node, cancel)] = node
                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    node = running.pop(future)
                    durations[node.name] = time.monotonic() - started[node.name]
                    try:
                        future.result()
                    except WorkspaceError as e:
                        abort_reason = f"aborted: {e}"
                        logger.error("工作目录错误，中止剩余构建: %s", e)
                    except Exception as e:  # noqa: BLE001
                        logger.exception("%s 处理时出现未预期错误，中止剩余构建", node.name)
                        if not node.status.terminal:
                            node.status = NodeStatus.FAILED
                            node.detail = str(e)
                        abort_reason = f"aborted: {e}"

                    # 中止或取消后不再传播失败，未开始的节点统一由 _finish_unstarted 标记
                    if node.status is NodeStatus.INSTALLED:
                        for dependent in plan.dependents(node.name):
                            unfinished[dependent.name] -= 1
                    elif not abort_reason and not cancel.is_set():
                        self._propagate_failure(plan, node)
                    logger.info("完成: %s -> %s (%.1f秒)", node.name, node.status.value,
                                durations[node.name], extra={"package": node.name})

        self._finish_unstarted(plan, abort_reason, cancel.is_set())
        report = self._report(plan, durations)
        logger.info(
            "构建结束: 安装 %d, 失败 %d, 跳过 %d, 已满足 %d",
            report.count("installed"), report.count("failed"),
            report.count("skipped"), len(report.satisfied),
        )
        return report

    @staticmethod
    def _propagate_failure(plan: BuildPlan, failed: PlanNode) -> None:
        for dependent in plan.transitive_dependents(failed.name):
            if dependent.status is NodeStatus.PENDING:
                dependent.transition(NodeStatus.SKIPPED, f"dependency failed: {failed.name}")
                logger.warning("跳过 %s: 依赖 %s 失败", dependent.name, failed.name,
                               extra={"package": dependent.name})

    @staticmethod
    def _finish_unstarted(plan: BuildPlan, abort_reason: str, cancelled: bool) -> None:
        """运行结束时不留 pending 节点"""
        for node in plan.nodes:
            if node.status is not NodeStatus.PENDING:
                continue
            if abort_reason:
                node.transition(NodeStatus.FAILED, abort_reason)
            else:
                node.transition(NodeStatus.SKIPPED, CANCELLED_DETAIL if cancelled else "aborted")

    @staticmethod
    def _report(plan: BuildPlan, durations: dict[str, float]) -> BuildReport:
        entries = [
            ReportEntry(
                name=n.name, status=n.status.value, version=n.record.version,
                detail=n.detail, duration=round(durations.get(n.name, 0.0), 3),
            )
            for n in plan.nodes
        ]
        satisfied = [
            ReportEntry(name=p.name, status="satisfied", version=p.version)
            for p in plan.satisfied.values()
        ]
        return BuildReport(entries=entries, satisfied=satisfied, requested=list(plan.requested))
