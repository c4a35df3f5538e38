"""依赖解析器测试"""

from __future__ import annotations

import pytest

from aurbuild.core.exceptions import (
    ConflictDetectedError,
    CycleDetectedError,
    PackageNotFoundError,
    TransportError,
)
from aurbuild.core.index import RunContext
from aurbuild.core.resolver import DependencyResolver
from tests.fakes import FakeIndex, FakeInspector, record


def _resolver(
    records, installed=None, repos=None, provides=None, transport_failures=0,
    conflicts=None,
) -> tuple[DependencyResolver, FakeIndex, FakeInspector]:
    index = FakeIndex(records, transport_failures=transport_failures)
    inspector = FakeInspector(
        installed=installed, repos=repos, provides=provides, conflicts=conflicts,
    )
    ctx = RunContext(index, inspector.snapshot(), sleep=lambda _s: None)
    return DependencyResolver(ctx, in_repos=inspector.in_repos), index, inspector


def _assert_topological(plan) -> None:
    seen: set[str] = set()
    for node in plan.nodes:
        for dep in node.dependencies:
            assert dep in seen, f"{dep} 应排在 {node.name} 之前"
        seen.add(node.name)


class TestResolveOrder:
    def test_simple_chain(self) -> None:
        """foo 依赖 bar，计划为 [bar, foo]"""
        resolver, _, _ = _resolver([record("foo", depends=["bar"]), record("bar")])
        plan = resolver.resolve(["foo"])
        assert plan.names == ["bar", "foo"]
        assert plan.node("foo").dependencies == ["bar"]
        assert plan.node("foo").requested is True
        assert plan.node("bar").requested is False

    def test_diamond_deduplicated(self) -> None:
        """菱形依赖: d 只出现一次，且只查询一次"""
        resolver, index, _ = _resolver([
            record("a", depends=["b", "c"]),
            record("b", depends=["d"]),
            record("c", depends=["d"]),
            record("d"),
        ])
        plan = resolver.resolve(["a"])
        assert plan.names == ["d", "b", "c", "a"]
        assert index.lookups.count("d") == 1
        _assert_topological(plan)

    def test_requested_order_and_dedup(self) -> None:
        resolver, _, _ = _resolver([record("x"), record("y", depends=["x"])])
        plan = resolver.resolve(["y", "x", "y", " "])
        assert plan.requested == ["y", "x"]
        assert plan.names == ["x", "y"]
        assert plan.node("x").requested is True

    def test_makedepends_after_depends(self) -> None:
        resolver, _, _ = _resolver([
            record("app", depends=["rt"], makedepends=["tool"], checkdepends=["tester"]),
            record("rt"), record("tool"), record("tester"),
        ])
        plan = resolver.resolve(["app"])
        assert plan.names == ["rt", "tool", "tester", "app"]

    def test_wide_graph_is_topological(self) -> None:
        records = [record(f"p{i}", depends=[f"p{j}" for j in range(i) if (i + j) % 3 == 0])
                   for i in range(12)]
        resolver, _, _ = _resolver(records)
        plan = resolver.resolve([f"p{i}" for i in range(11, -1, -1)])
        assert len(plan.names) == len(set(plan.names)) == 12
        _assert_topological(plan)


class TestAlreadySatisfied:
    def test_installed_dependency_excluded(self) -> None:
        """A 需要 B>=2，已安装 B=3: B 不在计划中但在已满足集合中"""
        resolver, index, _ = _resolver(
            [record("a", depends=["b>=2"]), record("b", "3")],
            installed={"b": "3"},
        )
        plan = resolver.resolve(["a"])
        assert plan.names == ["a"]
        assert "b" in plan.satisfied
        assert plan.node("a").dependencies == []
        assert "b" not in index.lookups

    def test_installed_too_old_is_rebuilt(self) -> None:
        resolver, _, _ = _resolver(
            [record("a", depends=["b>=2"]), record("b", "2.5")],
            installed={"b": "1.0"},
        )
        plan = resolver.resolve(["a"])
        assert plan.names == ["b", "a"]

    def test_satisfied_via_installed_provides(self) -> None:
        resolver, index, _ = _resolver(
            [record("a", depends=["libfoo>=1"])],
            installed={"foo-git": "r10"},
            provides={"foo-git": ("libfoo=1.5",)},
        )
        plan = resolver.resolve(["a"])
        assert plan.names == ["a"]
        assert "foo-git" in plan.satisfied
        assert "libfoo" not in index.lookups

    def test_requested_up_to_date(self) -> None:
        resolver, _, _ = _resolver([record("foo", "1.0-1")], installed={"foo": "1.0-1"})
        plan = resolver.resolve(["foo"])
        assert len(plan) == 0
        assert plan.satisfied["foo"].version == "1.0-1"

    def test_requested_outdated_is_upgraded(self) -> None:
        resolver, _, _ = _resolver([record("foo", "1.1-1")], installed={"foo": "1.0-1"})
        plan = resolver.resolve(["foo"])
        assert plan.names == ["foo"]


class TestSystemDeps:
    def test_repo_dependency_not_looked_up(self) -> None:
        resolver, index, _ = _resolver(
            [record("foo", depends=["glibc"], makedepends=["cmake"])],
            repos={"glibc", "cmake"},
        )
        plan = resolver.resolve(["foo"])
        assert plan.names == ["foo"]
        assert plan.node("foo").system_deps == ["glibc", "cmake"]
        assert plan.system_deps == ["glibc", "cmake"]
        assert index.lookups == ["foo"]

    def test_repo_lookup_cached(self) -> None:
        resolver, _, inspector = _resolver(
            [record("a", depends=["b", "cmake"]), record("b", depends=["cmake"])],
            repos={"cmake"},
        )
        plan = resolver.resolve(["a"])
        assert inspector.repo_queries.count("cmake") == 1
        assert plan.system_deps == ["cmake"]

    def test_dependency_provided_by_planned_record(self) -> None:
        resolver, _, _ = _resolver([
            record("app", depends=["libx", "java-runtime"]),
            record("libx", provides=["java-runtime"]),
        ])
        plan = resolver.resolve(["app"])
        assert plan.names == ["libx", "app"]
        assert plan.node("app").dependencies == ["libx"]


class TestResolveErrors:
    def test_not_found(self) -> None:
        resolver, _, _ = _resolver([])
        with pytest.raises(PackageNotFoundError) as exc:
            resolver.resolve(["nope"])
        assert exc.value.name == "nope"

    def test_missing_dependency_names_parent(self) -> None:
        resolver, _, _ = _resolver([record("foo", depends=["ghost"])])
        with pytest.raises(PackageNotFoundError, match="foo 的依赖 ghost"):
            resolver.resolve(["foo"])

    def test_cycle(self) -> None:
        resolver, _, _ = _resolver([
            record("a", depends=["b"]),
            record("b", depends=["c"]),
            record("c", depends=["a"]),
        ])
        with pytest.raises(CycleDetectedError) as exc:
            resolver.resolve(["a"])
        assert exc.value.cycle == ["a", "b", "c", "a"]

    def test_self_cycle(self) -> None:
        resolver, _, _ = _resolver([record("a", makedepends=["a"])])
        with pytest.raises(CycleDetectedError):
            resolver.resolve(["a"])

    def test_index_version_too_old(self) -> None:
        resolver, _, _ = _resolver([record("a", depends=["b>=2"]), record("b", "1.0")])
        with pytest.raises(ConflictDetectedError, match="a 需要 b>=2"):
            resolver.resolve(["a"])

    def test_planned_version_mismatch(self) -> None:
        resolver, _, _ = _resolver([
            record("a", depends=["b=1.0"]),
            record("b", "2.0"),
        ])
        with pytest.raises(ConflictDetectedError):
            resolver.resolve(["b", "a"])

    def test_conflict_between_planned(self) -> None:
        resolver, _, _ = _resolver([
            record("x", conflicts=["y"]),
            record("y"),
        ])
        with pytest.raises(ConflictDetectedError) as exc:
            resolver.resolve(["x", "y"])
        assert set(exc.value.packages) == {"x", "y"}

    def test_conflict_via_provides(self) -> None:
        resolver, _, _ = _resolver([
            record("foo-git", conflicts=["foo"]),
            record("foo-bin", provides=["foo"]),
        ])
        with pytest.raises(ConflictDetectedError):
            resolver.resolve(["foo-git", "foo-bin"])

    def test_conflict_with_installed(self) -> None:
        resolver, _, _ = _resolver([record("foo-git", conflicts=["foo"])], installed={"foo": "1.0"})
        with pytest.raises(ConflictDetectedError, match="已安装的 foo"):
            resolver.resolve(["foo-git"])

    def test_upgrade_of_same_name_is_not_conflict(self) -> None:
        resolver, _, _ = _resolver([record("foo", "2.0", conflicts=["foo"])], installed={"foo": "1.0"})
        plan = resolver.resolve(["foo"])
        assert plan.names == ["foo"]

    def test_installed_package_declares_conflict(self) -> None:
        """已安装的 oldfoo 声明与 foo 冲突，计划安装 foo 时报错"""
        resolver, _, _ = _resolver(
            [record("foo")],
            installed={"oldfoo": "1.0"},
            conflicts={"oldfoo": ("foo",)},
        )
        with pytest.raises(ConflictDetectedError, match="已安装的 oldfoo 1.0 与 foo 冲突") as exc:
            resolver.resolve(["foo"])
        assert exc.value.packages == ("oldfoo", "foo")

    def test_installed_conflict_matches_provides(self) -> None:
        """已安装包的 conflicts 通过计划记录的 provides 命中"""
        resolver, _, _ = _resolver(
            [record("libbar-git", provides=["libbar=2.0"])],
            installed={"app": "1.0"},
            conflicts={"app": ("libbar>=2",)},
        )
        with pytest.raises(ConflictDetectedError):
            resolver.resolve(["libbar-git"])

    def test_installed_conflict_with_itself_replaced_is_ignored(self) -> None:
        """被升级替换的已安装包不再参与反向冲突检查"""
        resolver, _, _ = _resolver(
            [record("foo", "2.0")],
            installed={"foo": "1.0"},
            conflicts={"foo": ("foo",)},
        )
        assert resolver.resolve(["foo"]).names == ["foo"]

    def test_transport_retried_then_raised(self) -> None:
        resolver, index, _ = _resolver([record("foo")], transport_failures=5)
        with pytest.raises(TransportError):
            resolver.resolve(["foo"])
        assert index.lookups == ["foo"] * 3

    def test_transport_recovers(self) -> None:
        resolver, _, _ = _resolver([record("foo")], transport_failures=2)
        assert resolver.resolve(["foo"]).names == ["foo"]
