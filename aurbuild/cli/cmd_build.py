"""CLI — 解析与构建安装命令"""

from __future__ import annotations

import json
import threading

import click

from aurbuild.cli import _fail, _svc
from aurbuild.core.exceptions import AurBuildError
from aurbuild.core.models import BuildPlan, BuildReport

_STATUS_MARK = {
    "installed": "✓",
    "satisfied": "=",
    "failed": "✗",
    "skipped": "-",
}


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(plan_cmd)


def _echo_plan(plan: BuildPlan) -> None:
    if plan.satisfied:
        click.echo("已满足:")
        for pkg in plan.satisfied.values():
            click.echo(f"  {pkg.name:30s} {pkg.version}")
    if plan.system_deps:
        click.echo("系统仓库依赖:")
        for dep in plan.system_deps:
            click.echo(f"  {dep}")
    if not plan.nodes:
        click.echo("无需构建。")
        return
    click.echo("构建顺序:")
    for i, node in enumerate(plan.nodes, 1):
        deps = f"  <- {', '.join(node.dependencies)}" if node.dependencies else ""
        mark = "*" if node.requested else " "
        click.echo(f"  {i:3d}. {mark}{node.name:30s} {node.record.version}{deps}")


def _echo_report(report: BuildReport) -> None:
    for e in report.entries + report.satisfied:
        mark = _STATUS_MARK.get(e.status, "?")
        line = f"  {mark} {e.name:30s} {e.version:20s} {e.status}"
        if e.duration:
            line += f" ({e.duration:.1f}s)"
        click.echo(line)
        if e.detail and e.status != "installed":
            click.echo(f"      {e.detail.splitlines()[0]}")
    click.echo(
        f"汇总: installed={report.count('installed')} failed={report.count('failed')} "
        f"skipped={report.count('skipped')} satisfied={len(report.satisfied)}"
    )


def _install_cancellable(names: list[str]) -> BuildReport:
    """后台线程执行安装，Ctrl-C 置位取消信号并等待收尾"""
    cancel = threading.Event()
    outcome: dict[str, object] = {}

    def _run() -> None:
        try:
            outcome["report"] = _svc().packages.install(names, cancel=cancel)
        except AurBuildError as e:
            outcome["error"] = e

    worker = threading.Thread(target=_run, name="aurbuild-install", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.5)
    except KeyboardInterrupt:
        click.echo("收到中断，不再启动新的构建，等待进行中的构建结束...", err=True)
        cancel.set()
        worker.join()

    error = outcome.get("error")
    if isinstance(error, AurBuildError):
        raise _fail(error)
    report = outcome.get("report")
    if not isinstance(report, BuildReport):
        raise click.ClickException("安装未产生报告")
    return report


@click.command(name="install")
@click.argument("names", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出报告")
@click.option("--interactive", "-i", is_flag=True, help="交互式运行 pacman（不加 --noconfirm）")
def install(names: tuple[str, ...], as_json: bool, interactive: bool) -> None:
    """解析依赖，构建并安装包"""
    if interactive:
        # pacman 需要前台终端，不走后台线程
        try:
            report = _svc().packages.install(list(names), interactive=True)
        except AurBuildError as e:
            raise _fail(e) from e
    else:
        report = _install_cancellable(list(names))
    if as_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        _echo_report(report)
    click.get_current_context().exit(report.exit_code)


@click.command(name="plan")
@click.argument("names", nargs=-1, required=True)
def plan_cmd(names: tuple[str, ...]) -> None:
    """只解析依赖，显示构建计划（不构建）"""
    try:
        plan = _svc().packages.plan(list(names))
    except AurBuildError as e:
        raise _fail(e) from e
    _echo_plan(plan)
