"""构建工具（makepkg）

职责:
- 在配方目录内执行构建命令
- 产物输出到按包隔离的 PKGDEST 目录
- 收集 *.pkg.tar* 产物；失败 / 超时 / 被取消均视为构建失败
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Protocol

from aurbuild.core.exceptions import BuildFailureError
from aurbuild.core.models import BuildArtifact, RecipeHandle
from aurbuild.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

_ARTIFACT_GLOB = "*.pkg.tar*"


class BuildTool(Protocol):
    """构建工具协议"""

    def build(
        self,
        handle: RecipeHandle,
        output_dir: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        grace: float = 0.0,
    ) -> BuildArtifact:
        ...


def _tail(text: str, lines: int = 40) -> str:
    return "\n".join(text.splitlines()[-lines:])


def artifact_version(path: Path, name: str) -> str | None:
    """从包文件名读取版本

    <name>-<pkgver>-<pkgrel>-<arch>.pkg.tar.* -> "<pkgver>-<pkgrel>"；
    文件名不属于 name 或格式不符时返回 None。
    """
    stem, sep, _ = path.name.partition(".pkg.tar")
    if not sep:
        return None
    parts = stem.rsplit("-", 3)
    if len(parts) != 4 or parts[0] != name:
        return None
    return f"{parts[1]}-{parts[2]}"


class MakepkgBuildTool:
    """makepkg 构建封装

    依赖已由安装协调器事先装好，构建命令默认不带 -s，makepkg 不会自行发起 pacman 事务。
    """

    def __init__(
        self,
        build_cmd: str = "makepkg -f --noconfirm",
        executor: CommandExecutor | None = None,
    ) -> None:
        self.build_cmd = build_cmd
        self._executor = executor

    def build(
        self,
        handle: RecipeHandle,
        output_dir: Path,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        grace: float = 0.0,
    ) -> BuildArtifact:
        """构建配方，返回产物

        Raises:
            BuildFailureError: 构建命令失败 / 超时 / 被取消终止 / 无产物
        """
        if not handle.is_complete():
            raise BuildFailureError(f"配方目录不完整: {handle.path}")

        output_dir = Path(output_dir)
        if output_dir.exists():
            shutil.rmtree(output_dir)
        output_dir.mkdir(parents=True)

        env = {**os.environ, "PKGDEST": str(output_dir.resolve())}
        executor = self._executor or get_executor()
        logger.info("构建: %s %s (%s)", handle.name, handle.version, self.build_cmd)
        start = time.monotonic()
        try:
            r = executor.execute(
                self.build_cmd, cwd=str(handle.path), env=env,
                timeout=timeout, cancel=cancel, grace=grace,
            )
        except OSError as e:
            raise BuildFailureError(f"无法启动构建命令 {self.build_cmd}: {e}") from e
        except subprocess.TimeoutExpired as e:
            output = "\n".join(
                s.decode() if isinstance(s, bytes) else s
                for s in (e.output, e.stderr) if s
            )
            raise BuildFailureError(
                f"构建超时 {handle.name} ({timeout}秒)，进程已终止", output=_tail(output),
            ) from e
        duration = time.monotonic() - start

        if r.terminated:
            raise BuildFailureError(f"构建被取消 {handle.name}", output=_tail(r.output))
        if not r.success:
            logger.error("构建失败 %s (rc=%d, %.1f秒)", handle.name, r.returncode, duration)
            raise BuildFailureError(
                f"构建失败 {handle.name} (rc={r.returncode})", output=_tail(r.output),
            )

        files = sorted(p for p in output_dir.glob(_ARTIFACT_GLOB) if not p.name.endswith(".sig"))
        if not files:
            raise BuildFailureError(
                f"构建未产出包文件 {handle.name}: {output_dir}", output=_tail(r.output),
            )
        logger.info("构建完成: %s (%.1f秒) -> %s", handle.name, duration, [f.name for f in files])

        # VCS 包在构建时才确定 pkgver，以产物文件名为准
        version = handle.version
        for f in files:
            built = artifact_version(f, handle.name)
            if built:
                version = built
                break
        if version != handle.version:
            logger.info("产物版本与索引不同: %s %s -> %s", handle.name, handle.version, version)
        return BuildArtifact(name=handle.name, version=version, files=files, log=r.output)
