"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，pacman / makepkg / git 调用都经过此处，
测试时注入 mock 实现即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Protocol

from aurbuild.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# communicate() 轮询间隔（秒），决定超时 / 取消的响应粒度
_POLL_INTERVAL = 0.2
# terminate 后等待进程退出的时间，超过则 kill
_KILL_AFTER = 5.0


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str
    terminated: bool = False  # 因取消被强制终止

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.terminated

    @property
    def output(self) -> str:
        """合并 stdout / stderr，用于失败诊断"""
        return "\n".join(s for s in (self.stdout, self.stderr) if s)


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    timeout 到期时进程被终止并抛出 subprocess.TimeoutExpired；
    cancel 置位后等待 grace 秒，进程仍未退出则终止，结果 terminated=True。
    capture=False 时子进程直接继承终端（交互式 pacman），结果不含输出。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        grace: float = 0.0,
        capture: bool = True,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

def _terminate(proc: subprocess.Popen[str]) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=_KILL_AFTER)
    except subprocess.TimeoutExpired:
        proc.kill()


class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        grace: float = 0.0,
        capture: bool = True,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        pipe = subprocess.PIPE if capture else None
        proc = subprocess.Popen(
            args, stdout=pipe, stderr=pipe,
            text=True, cwd=cwd, env=env,
        )
        start = time.monotonic()
        cancelled_at: float | None = None
        terminated = False
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                now = time.monotonic()
                if timeout is not None and now - start >= timeout:
                    _terminate(proc)
                    stdout, stderr = proc.communicate()
                    raise subprocess.TimeoutExpired(
                        args, timeout, output=stdout, stderr=stderr,
                    ) from None
                if cancel is not None and cancel.is_set():
                    if cancelled_at is None:
                        cancelled_at = now
                        logger.info("收到取消信号，等待进程退出 (%.0f秒): %s", grace, args[0])
                    elif now - cancelled_at >= grace:
                        _terminate(proc)
                        terminated = True
                        stdout, stderr = proc.communicate()
                        break
        return CommandResult(
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            terminated=terminated,
        )


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor


def run_cmd(
    cmd: str | list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    label: str = "cmd",
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令，失败抛 ExecutionError

    Args:
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        label: 日志标签
        executor: 指定执行器，不传则使用全局默认
    """
    shown = cmd if isinstance(cmd, str) else shlex.join(cmd)
    logger.debug("  %s: %s (cwd=%s)", label, shown, cwd)
    r = (executor or get_executor()).execute(cmd, cwd=cwd, env=env)
    if not r.success:
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}")
    return r
