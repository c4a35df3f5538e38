"""依赖解析器

把请求的包名解析为依赖优先的构建计划:

  1. 从每个请求名出发做深度优先遍历（请求顺序 + 记录内依赖顺序，结果可复现）
  2. 依赖已被本地安装的包（按包名或 provides）满足 → 记入 plan.satisfied，不查询索引
  3. 系统仓库可提供的依赖 → 记为节点的 system_deps，由安装协调器在构建前安装
  4. 其余依赖查询索引，递归解析；索引版本不满足约束即冲突
  5. 节点的全部依赖完成后才输出该节点（后序），保证依赖总在依赖方之前
  6. 遍历维护进行中集合，再次遇到进行中的包名即判定为环

解析期任何错误都在构建开始前中止整次运行，不返回部分计划。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable

from aurbuild.core.exceptions import (
    ConflictDetectedError,
    CycleDetectedError,
    PackageNotFoundError,
)
from aurbuild.core.models import BuildPlan, PackageRecord, PlanNode
from aurbuild.core.version import DependencySpec, vercmp

if TYPE_CHECKING:
    from aurbuild.core.index.context import RunContext

logger = logging.getLogger(__name__)


class DependencyResolver:
    """基于 RunContext（索引缓存 + 已安装快照）的依赖解析器"""

    def __init__(
        self,
        context: RunContext,
        in_repos: Callable[[str], bool] | None = None,
    ) -> None:
        """
        参数:
            context: 本次运行上下文（索引缓存 + 已安装快照）
            in_repos: 判断系统仓库能否提供某依赖约束，不传则所有依赖都走索引
        """
        self.ctx = context
        self._in_repos = in_repos

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def resolve(self, requested: Iterable[str]) -> BuildPlan:
        names = list(dict.fromkeys(n.strip() for n in requested if n and n.strip()))
        plan = BuildPlan(requested=names)
        self._plan = plan
        self._in_progress: list[str] = []
        self._repo_cache: dict[str, bool] = {}

        for name in names:
            self._visit_requested(name)

        self._check_conflicts(plan)
        logger.info(
            "解析完成: 构建 %d 个 [%s], 已满足 %d 个, 系统依赖 %d 个",
            len(plan), ", ".join(plan.names), len(plan.satisfied), len(plan.system_deps),
        )
        return plan

    # ------------------------------------------------------------------
    # 遍历
    # ------------------------------------------------------------------

    def _visit_requested(self, name: str) -> None:
        if name in self._plan:
            self._plan.node(name).requested = True
            return
        record = self.ctx.lookup(name)
        installed = self.ctx.installed.get(name)
        if installed is not None and vercmp(installed.version, record.version) >= 0:
            logger.info("已是最新: %s %s (索引 %s)", name, installed.version, record.version)
            self._plan.satisfied[name] = installed
            return
        self._visit(record, requested=True)

    def _visit(self, record: PackageRecord, *, requested: bool = False) -> None:
        name = record.name
        if name in self._plan:
            return

        self._in_progress.append(name)
        dependencies: list[str] = []
        system_deps: list[str] = []
        for raw in record.all_requirements:
            spec = DependencySpec.parse(raw)
            dep = self._resolve_dependency(name, spec)
            if dep is None:
                continue
            kind, dep_name = dep
            target = dependencies if kind == "plan" else system_deps
            if dep_name not in target:
                target.append(dep_name)
        self._in_progress.pop()

        self._plan.add(PlanNode(
            name=name, record=record, dependencies=dependencies,
            system_deps=system_deps, requested=requested,
        ))
        for dep_name in system_deps:
            if dep_name not in self._plan.system_deps:
                self._plan.system_deps.append(dep_name)
        logger.debug("计划节点: %s %s <- %s", name, record.version, dependencies)

    def _resolve_dependency(self, parent: str, spec: DependencySpec) -> tuple[str, str] | None:
        """解析单个依赖，返回 ("plan", 名) / ("system", 约束) / None（已满足）"""
        if spec.name in self._in_progress:
            cycle = self._in_progress[self._in_progress.index(spec.name):] + [spec.name]
            raise CycleDetectedError(cycle)

        if spec.name in self._plan:
            planned = self._plan.node(spec.name).record
            self._require_version(parent, spec, planned)
            return ("plan", spec.name)
        for node in self._plan.nodes:
            if spec.matches(node.record.name, node.record.version, node.record.provides):
                return ("plan", node.name)

        provider = self.ctx.installed.find_provider(spec)
        if provider is not None:
            self._plan.satisfied.setdefault(provider.name, provider)
            return None

        if self._repo_provides(str(spec)):
            return ("system", str(spec))

        try:
            record = self.ctx.lookup(spec.name)
        except PackageNotFoundError as e:
            raise PackageNotFoundError(
                spec.name, f"{parent} 的依赖 {spec} 既不在系统仓库也不在索引中",
            ) from e
        self._require_version(parent, spec, record)
        self._visit(record)
        return ("plan", spec.name)

    def _repo_provides(self, spec: str) -> bool:
        if self._in_repos is None:
            return False
        if spec not in self._repo_cache:
            self._repo_cache[spec] = self._in_repos(spec)
        return self._repo_cache[spec]

    @staticmethod
    def _require_version(parent: str, spec: DependencySpec, record: PackageRecord) -> None:
        if not spec.satisfied_by(record.version):
            raise ConflictDetectedError(
                f"{parent} 需要 {spec}，但索引版本为 {record.name} {record.version}",
                packages=(parent, record.name),
            )

    # ------------------------------------------------------------------
    # 冲突检查
    # ------------------------------------------------------------------

    def _check_conflicts(self, plan: BuildPlan) -> None:
        """双向检查冲突: 计划内记录的 conflicts 不得命中其他计划包或已安装包，
        已安装包声明的 conflicts 也不得命中计划内记录

        已安装的同名包视为被升级替换，不算冲突。
        """
        for node in plan.nodes:
            for raw in node.record.conflicts:
                spec = DependencySpec.parse(raw)
                for other in plan.nodes:
                    other_rec = other.record
                    if other.name != node.name and spec.matches(
                        other_rec.name, other_rec.version, other_rec.provides,
                    ):
                        raise ConflictDetectedError(
                            f"{node.name} 与 {other.name} 冲突 ({spec})",
                            packages=(node.name, other.name),
                        )
                for installed in self.ctx.installed.packages.values():
                    # 计划内的包会被新版本替换，已在上面按新记录判断
                    if installed.name == node.name or installed.name in plan:
                        continue
                    if not spec.matches(installed.name, installed.version, installed.provides):
                        continue
                    raise ConflictDetectedError(
                        f"{node.name} 与已安装的 {installed.name} {installed.version} 冲突 ({spec})",
                        packages=(node.name, installed.name),
                    )
        for installed in self.ctx.installed.packages.values():
            if installed.name in plan:
                continue
            for raw in installed.conflicts:
                spec = DependencySpec.parse(raw)
                for node in plan.nodes:
                    rec = node.record
                    if spec.matches(rec.name, rec.version, rec.provides):
                        raise ConflictDetectedError(
                            f"已安装的 {installed.name} {installed.version} 与 {node.name} 冲突 ({spec})",
                            packages=(installed.name, node.name),
                        )
