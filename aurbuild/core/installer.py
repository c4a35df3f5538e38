"""系统包管理器操作（pacman）

安装构建产物、安装仓库依赖、卸载。调用方负责串行化：
pacman 数据库同一时间只允许一个事务。
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Protocol

from aurbuild.core.exceptions import InstallConflictError, InstallError
from aurbuild.utils.shell import CommandExecutor, CommandResult, get_executor

logger = logging.getLogger(__name__)

# pacman 冲突输出: "foo: /usr/bin/foo exists in filesystem" / "foo and bar are in conflict"
_CONFLICT_RE = re.compile(
    r"conflicting files|exists in filesystem|are in conflict", re.IGNORECASE,
)


class PackageManager(Protocol):
    """系统包管理器协议

    interactive 为真时事务交给用户在终端确认。
    """

    interactive: bool

    def install_files(self, files: list[Path], *, as_deps: bool = False) -> None:
        ...

    def install_repo(self, names: list[str]) -> None:
        ...

    def remove(self, names: list[str]) -> None:
        ...


class PacmanManager:
    """pacman 事务封装，非 root 用户自动加 sudo

    默认附加 --noconfirm 并捕获输出；interactive 时不加 --noconfirm，
    pacman 直接使用终端，由用户回答提示。
    """

    def __init__(
        self,
        pacman_cmd: str = "pacman",
        *,
        use_sudo: bool = False,
        interactive: bool = False,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.pacman_cmd = pacman_cmd
        self.use_sudo = use_sudo
        self.interactive = interactive
        self._executor = executor

    def _command(self, *args: str) -> list[str]:
        cmd = [self.pacman_cmd, *args]
        if not self.interactive:
            cmd.append("--noconfirm")
        return ["sudo", *cmd] if self.use_sudo else cmd

    def _run(self, label: str, *args: str) -> CommandResult:
        cmd = self._command(*args)
        logger.info("> %s", shlex.join(cmd))
        executor = self._executor or get_executor()
        try:
            r = executor.execute(
                cmd, env={**os.environ, "LC_ALL": "C"}, capture=not self.interactive,
            )
        except OSError as e:
            raise InstallError(f"{label}失败，无法执行 {cmd[0]}: {e}") from e
        if r.success:
            return r
        if _CONFLICT_RE.search(r.output):
            raise InstallConflictError(f"{label}冲突 (rc={r.returncode}): {r.output[-500:]}")
        raise InstallError(f"{label}失败 (rc={r.returncode}): {r.output[-500:]}")

    def install_files(self, files: list[Path], *, as_deps: bool = False) -> None:
        if not files:
            raise InstallError("没有可安装的包文件")
        args = ["-U"]
        if as_deps:
            args.append("--asdeps")
        self._run("安装", *args, *(str(f) for f in files))

    def install_repo(self, names: list[str]) -> None:
        if not names:
            return
        self._run("安装仓库依赖", "-S", "--needed", "--asdeps", *names)

    def remove(self, names: list[str]) -> None:
        if not names:
            return
        self._run("卸载", "-Rns", *names)
