"""CLI — 搜索、列出、卸载命令"""

from __future__ import annotations

import shutil

import click

from aurbuild.cli import _fail, _svc
from aurbuild.core.exceptions import AurBuildError
from aurbuild.core.models import SearchResult

TAB_SIZE = 4


def register(group: click.Group) -> None:
    group.add_command(search)
    group.add_command(list_cmd)
    group.add_command(remove)


def wrap_description(text: str, cols: int | None) -> str:
    """描述按终端宽度折行，每行缩进 TAB_SIZE；cols 为空时不折行"""
    indent = " " * TAB_SIZE
    if not text:
        return ""
    if not cols:
        return indent + text
    lines: list[str] = []
    line = indent
    for word in text.split():
        if line.strip() and len(line) + 1 + len(word) > cols:
            lines.append(line)
            line = indent + word
        else:
            line = f"{line} {word}" if line.strip() else line + word
    lines.append(line)
    return "\n".join(lines)


def format_search_entry(result: SearchResult, cols: int | None = None) -> str:
    """maintainer/name version [popularity]，描述另起一行"""
    head = f"{result.maintainer}/" if result.maintainer else ""
    head += result.name
    if result.version:
        head += f" {result.version}"
    head += f" [{result.popularity:g}]"
    if result.out_of_date:
        head += " (out of date)"
    description = wrap_description(result.description, cols)
    return f"{head}\n{description}" if description else head


@click.command(name="search")
@click.argument("keywords", nargs=-1, required=True)
def search(keywords: tuple[str, ...]) -> None:
    """按关键字搜索包（按热度排序）"""
    try:
        results = _svc().packages.search(list(keywords))
    except AurBuildError as e:
        raise _fail(e) from e
    if not results:
        click.echo("没有匹配的包。")
        return
    cols = shutil.get_terminal_size(fallback=(0, 0)).columns or None
    for r in results:
        click.echo(format_search_entry(r, cols))


@click.command(name="list")
@click.argument("patterns", nargs=-1)
@click.option("--regex", "-r", is_flag=True, help="按正则表达式匹配包名")
def list_cmd(patterns: tuple[str, ...], regex: bool) -> None:
    """列出源码构建的已安装包"""
    try:
        packages = _svc().packages.list_installed(patterns, regex=regex)
    except AurBuildError as e:
        raise _fail(e) from e
    if not packages:
        click.echo("没有源码构建的已安装包。")
        return
    for p in packages:
        click.echo(f"  {p.name:30s} {p.version}")


@click.command(name="remove")
@click.argument("names", nargs=-1, required=True)
@click.option("--force", "-f", is_flag=True, help="不确认；卸载失败也删除源码目录")
@click.option("--regex", "-r", is_flag=True, help="按正则表达式匹配包名")
@click.option("--interactive", "-i", is_flag=True, help="交互式运行 pacman（不加 --noconfirm）")
def remove(names: tuple[str, ...], force: bool, regex: bool, interactive: bool) -> None:
    """卸载包并删除其源码目录"""
    try:
        results = _svc().packages.remove(
            list(names), force=force, regex=regex, interactive=interactive,
            confirm=lambda name: click.confirm(f"卸载 '{name}'?", default=False),
        )
    except AurBuildError as e:
        raise _fail(e) from e
    if not results:
        click.echo("没有匹配的包。")
        return
    errors = 0
    for r in results:
        if r.success:
            click.echo(f"已卸载: {r.name}")
        else:
            errors += 1
            click.echo(f"卸载失败: {r.name}: {r.error}", err=True)
    if errors:
        click.get_current_context().exit(1)
