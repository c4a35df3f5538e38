"""CLI 端到端测试: 真实服务容器 + 模拟 pacman / makepkg"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

import aurbuild.core.config as cfgmod
import aurbuild.services.container as containermod
from aurbuild.cli import main
from aurbuild.cli.cmd_manage import format_search_entry, wrap_description
from aurbuild.core.models import SearchResult
from aurbuild.utils.logger import reset_logging
from tests.fakes import SystemSim, sim_container, write_recipe

PACKAGES = {
    "foo": {"depends": ["bar", "glibc"], "description": "Foo tool"},
    "bar": {"version": "2.0-1", "description": "Bar library"},
    "broken": {"depends": ["bar"]},
}


@pytest.fixture()
def sim() -> SystemSim:
    return SystemSim(repos={"glibc"}, fail_build={"broken"})


@pytest.fixture()
def runner(tmp_path: Path, sim: SystemSim, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AURBUILD_CONFIG", str(tmp_path / "absent.yml"))
    monkeypatch.setenv("AURBUILD_LOG_LEVEL", "ERROR")
    monkeypatch.setattr(cfgmod, "_current", None)
    monkeypatch.setattr(containermod, "_global", sim_container(tmp_path, sim, PACKAGES))
    yield CliRunner()
    reset_logging()


class TestInstall:
    def test_install_chain(self, runner: CliRunner, sim: SystemSim) -> None:
        result = runner.invoke(main, ["install", "foo"])
        assert result.exit_code == 0, result.output
        assert "✓ bar" in result.output
        assert "✓ foo" in result.output
        assert "installed=2 failed=0" in result.output
        assert [t[0] for t in sim.transactions] == ["-U", "-S", "-U"]
        assert sim.transactions[1][1:] == ["glibc"]
        assert sim.installed["foo"] == "1.0-1"
        assert sim.installed["bar"] == "2.0-1"

    def test_second_run_is_satisfied(self, runner: CliRunner, sim: SystemSim) -> None:
        runner.invoke(main, ["install", "foo"])
        sim.transactions.clear()
        result = runner.invoke(main, ["install", "foo"])
        assert result.exit_code == 0
        assert "satisfied" in result.output
        assert sim.transactions == []

    def test_build_failure_exit_code(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["install", "broken"])
        assert result.exit_code == 1
        assert "✓ bar" in result.output
        assert "✗ broken" in result.output

    def test_json_report(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["install", "--json", "bar"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["success"] is True
        assert [(e["name"], e["status"]) for e in data["entries"]] == [("bar", "installed")]

    def test_not_found(self, runner: CliRunner, sim: SystemSim) -> None:
        result = runner.invoke(main, ["install", "ghost"])
        assert result.exit_code == 1
        assert "[NOT_FOUND]" in result.output
        assert sim.transactions == []

    def test_noconfirm_by_default(self, runner: CliRunner, sim: SystemSim) -> None:
        """非交互安装的 pacman 事务带 --noconfirm"""
        runner.invoke(main, ["install", "bar"])
        writes = [c for c in sim.pacman_calls if c[1] in ("-U", "-S")]
        assert writes and all("--noconfirm" in c for c in writes)

    def test_interactive_install(self, runner: CliRunner, sim: SystemSim) -> None:
        """-i 在前台安装，pacman 事务不带 --noconfirm"""
        result = runner.invoke(main, ["install", "-i", "foo"])
        assert result.exit_code == 0, result.output
        assert "installed=2 failed=0" in result.output
        writes = [c for c in sim.pacman_calls if c[1] in ("-U", "-S")]
        assert [c[1] for c in writes] == ["-U", "-S", "-U"]
        assert all("--noconfirm" not in c for c in writes)
        assert containermod._global.manager.interactive is False


class TestPlan:
    def test_plan(self, runner: CliRunner, sim: SystemSim) -> None:
        result = runner.invoke(main, ["plan", "foo"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        order = [line.split()[1].lstrip("*") for line in lines if line.strip()[:1].isdigit()]
        assert order == ["bar", "foo"]
        assert "  glibc" in lines
        assert sim.transactions == []


class TestSearchAndList:
    def test_search(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["search", "library"])
        assert result.exit_code == 0
        assert result.output.startswith("bar 2.0-1 [0]")
        assert "    Bar library" in result.output

    def test_search_no_match(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["search", "nothing-like-this"])
        assert "没有匹配的包" in result.output

    def test_list(self, runner: CliRunner) -> None:
        assert "没有源码构建的已安装包" in runner.invoke(main, ["list"]).output
        runner.invoke(main, ["install", "foo"])
        result = runner.invoke(main, ["list", "b*"])
        assert result.exit_code == 0
        assert "bar" in result.output
        assert "foo" not in result.output

    def test_list_invalid_regex(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["list", "-r", "("])
        assert result.exit_code == 1
        assert "[VALIDATION_ERROR]" in result.output


class TestRemove:
    def test_remove_force(self, runner: CliRunner, sim: SystemSim, tmp_path: Path) -> None:
        runner.invoke(main, ["install", "bar"])
        assert (tmp_path / "src" / "bar").is_dir()
        result = runner.invoke(main, ["remove", "--force", "bar"])
        assert result.exit_code == 0
        assert "已卸载: bar" in result.output
        assert "bar" not in sim.installed
        assert not (tmp_path / "src" / "bar").exists()

    def test_remove_confirm_declined(self, runner: CliRunner, sim: SystemSim) -> None:
        runner.invoke(main, ["install", "bar"])
        result = runner.invoke(main, ["remove", "bar"], input="n\n")
        assert "bar" in sim.installed
        assert "已卸载" not in result.output

    def test_remove_interactive(self, runner: CliRunner, sim: SystemSim) -> None:
        """remove -i 调用 pacman -Rns 时不带 --noconfirm"""
        runner.invoke(main, ["install", "bar"])
        result = runner.invoke(main, ["remove", "-f", "-i", "bar"])
        assert result.exit_code == 0, result.output
        assert sim.pacman_calls[-1] == ["pacman", "-Rns", "bar"]
        assert "bar" not in sim.installed

    def test_remove_failure_exit_code(self, runner: CliRunner, tmp_path: Path) -> None:
        write_recipe(tmp_path / "src", "stale")
        result = runner.invoke(main, ["remove", "stale"], input="y\n")
        assert result.exit_code == 1
        assert (tmp_path / "src" / "stale").exists()


class TestFormatting:
    def test_search_entry(self) -> None:
        r = SearchResult(name="yay", version="12.3.5-1", maintainer="jguer",
                         popularity=27.5, description="Yet another yogurt")
        assert format_search_entry(r) == "jguer/yay 12.3.5-1 [27.5]\n    Yet another yogurt"

    def test_out_of_date_marked(self) -> None:
        r = SearchResult(name="old", version="1", out_of_date=1600000000)
        assert format_search_entry(r) == "old 1 [0] (out of date)"

    def test_wrap_description(self) -> None:
        text = wrap_description("alpha beta gamma delta", 16)
        assert text.splitlines() == ["    alpha beta", "    gamma delta"]
        assert all(line.startswith("    ") for line in text.splitlines())

    def test_wrap_without_width(self) -> None:
        assert wrap_description("one two", None) == "    one two"
        assert wrap_description("", 80) == ""
