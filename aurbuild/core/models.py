"""核心数据模型

所有核心数据类集中定义，解析器 / 拉取器 / 编排器 / 安装协调器统一从此处导入。

所有权约定:
  BuildPlan 是一次运行内全部 PlanNode 的唯一持有者；
  PlanNode.dependencies 只保存包名，依赖关系通过 plan.node(name) 查找，
  即使索引中的依赖图有环也不会形成对象引用环。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from aurbuild.core.exceptions import InvalidTransitionError
from aurbuild.core.version import DependencySpec

# 配方目录完成标记，存在即表示该目录已完整落盘
COMPLETE_MARKER = ".aurbuild-complete"


# =========================================================================
# 索引记录
# =========================================================================


@dataclass(frozen=True)
class PackageRecord:
    """索引中的单个包记录，一次解析运行内不可变"""

    name: str
    version: str
    depends: tuple[str, ...] = ()
    makedepends: tuple[str, ...] = ()
    checkdepends: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    location: str = ""          # 配方地址: git URL / tarball URL / 本地目录
    package_base: str = ""
    digest: str = ""            # 可选 sha256
    description: str = ""

    @property
    def build_requirements(self) -> tuple[str, ...]:
        return self.makedepends + self.checkdepends

    @property
    def all_requirements(self) -> tuple[str, ...]:
        """运行依赖在前，构建依赖在后，保持记录内顺序"""
        return self.depends + self.build_requirements


@dataclass
class SearchResult:
    """索引搜索结果条目"""

    name: str
    version: str = ""
    description: str = ""
    maintainer: str = ""
    popularity: float = 0.0
    num_votes: int = 0
    out_of_date: int | None = None
    url: str = ""


# =========================================================================
# 本地已安装集合
# =========================================================================


class Provenance(str, Enum):
    """已安装包来源"""

    SOURCE = "source"   # 由配方构建（pacman 视角下的 foreign 包）
    SYSTEM = "system"   # 来自系统仓库


@dataclass
class InstalledPackage:
    name: str
    version: str
    provenance: Provenance = Provenance.SYSTEM
    provides: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()


@dataclass
class InstalledSet:
    """运行开始时读取的已安装包快照"""

    packages: dict[str, InstalledPackage] = field(default_factory=dict)

    @classmethod
    def of(cls, items: Iterable[InstalledPackage]) -> InstalledSet:
        return cls(packages={p.name: p for p in items})

    def get(self, name: str) -> InstalledPackage | None:
        return self.packages.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def __len__(self) -> int:
        return len(self.packages)

    def find_provider(self, spec: DependencySpec) -> InstalledPackage | None:
        """查找满足约束的已安装包：先按包名，再按 provides

        provides 未带版本时只能满足无版本约束（与 pacman 一致）。
        """
        pkg = self.packages.get(spec.name)
        if pkg is not None and spec.satisfied_by(pkg.version):
            return pkg
        for candidate in self.packages.values():
            if spec.matches(candidate.name, candidate.version, candidate.provides):
                return candidate
        return None


# =========================================================================
# 构建计划
# =========================================================================


class NodeStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    BUILT = "built"
    INSTALLED = "installed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (NodeStatus.INSTALLED, NodeStatus.FAILED, NodeStatus.SKIPPED)


# pending -> failed 仅用于运行中止
_TRANSITIONS: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.BUILDING, NodeStatus.SKIPPED, NodeStatus.FAILED}),
    NodeStatus.BUILDING: frozenset({NodeStatus.BUILT, NodeStatus.FAILED}),
    NodeStatus.BUILT: frozenset({NodeStatus.INSTALLED, NodeStatus.FAILED}),
    NodeStatus.INSTALLED: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.SKIPPED: frozenset(),
}


@dataclass
class PlanNode:
    """计划中的一个待构建包"""

    name: str
    record: PackageRecord
    dependencies: list[str] = field(default_factory=list)   # 计划内依赖（仅包名）
    system_deps: list[str] = field(default_factory=list)    # 需从系统仓库安装的依赖
    requested: bool = False
    status: NodeStatus = NodeStatus.PENDING
    detail: str = ""

    def transition(self, status: NodeStatus, detail: str = "") -> None:
        """状态只能前进；非法迁移抛 InvalidTransitionError"""
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.name}: 非法状态迁移 {self.status.value} -> {status.value}"
            )
        self.status = status
        if detail:
            self.detail = detail


@dataclass
class BuildPlan:
    """依赖优先的有序构建计划，按包名去重"""

    requested: list[str] = field(default_factory=list)
    satisfied: dict[str, InstalledPackage] = field(default_factory=dict)
    system_deps: list[str] = field(default_factory=list)
    _nodes: dict[str, PlanNode] = field(default_factory=dict, repr=False)

    def add(self, node: PlanNode) -> None:
        if node.name in self._nodes:
            raise ValueError(f"计划中已存在节点: {node.name}")
        missing = [d for d in node.dependencies if d not in self._nodes]
        if missing:
            raise ValueError(f"{node.name} 的依赖尚未入计划: {missing}")
        self._nodes[node.name] = node

    @property
    def nodes(self) -> list[PlanNode]:
        return list(self._nodes.values())

    @property
    def names(self) -> list[str]:
        return list(self._nodes)

    def node(self, name: str) -> PlanNode:
        return self._nodes[name]

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def index(self, name: str) -> int:
        return self.names.index(name)

    def dependents(self, name: str) -> list[PlanNode]:
        """直接依赖 name 的节点，按计划顺序"""
        return [n for n in self._nodes.values() if name in n.dependencies]

    def transitive_dependents(self, name: str) -> list[PlanNode]:
        """传递依赖 name 的全部节点，按计划顺序

        计划是拓扑序，依赖方一定排在后面，单次正向扫描即可。
        """
        affected = {name}
        result: list[PlanNode] = []
        for node in self._nodes.values():
            if any(d in affected for d in node.dependencies):
                affected.add(node.name)
                result.append(node)
        return result


# =========================================================================
# 配方与产物
# =========================================================================


@dataclass
class RecipeHandle:
    """已落盘的构建配方目录"""

    name: str
    path: Path
    version: str = ""
    digest: str = ""

    def is_complete(self) -> bool:
        return (self.path / COMPLETE_MARKER).is_file()


@dataclass
class BuildArtifact:
    """构建工具产出的可安装包文件"""

    name: str
    version: str
    files: list[Path] = field(default_factory=list)
    log: str = ""


# =========================================================================
# 报告
# =========================================================================


@dataclass
class ReportEntry:
    name: str
    status: str              # NodeStatus 取值，或 "satisfied"
    version: str = ""
    detail: str = ""
    duration: float = 0.0


@dataclass
class BuildReport:
    """一次运行的逐包结果，按计划顺序"""

    entries: list[ReportEntry] = field(default_factory=list)
    satisfied: list[ReportEntry] = field(default_factory=list)
    requested: list[str] = field(default_factory=list)

    def get(self, name: str) -> ReportEntry | None:
        for e in self.entries + self.satisfied:
            if e.name == name:
                return e
        return None

    @property
    def success(self) -> bool:
        """所有请求的包都已安装或已满足"""
        for name in self.requested:
            entry = self.get(name)
            if entry is None or entry.status not in ("installed", "satisfied"):
                return False
        return True

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def count(self, status: str) -> int:
        return sum(1 for e in self.entries if e.status == status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested": list(self.requested),
            "success": self.success,
            "entries": [asdict(e) for e in self.entries],
            "satisfied": [asdict(e) for e in self.satisfied],
        }
