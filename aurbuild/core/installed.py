"""本地已安装包查询（pacman）

只读查询，不修改系统:
  - snapshot():  `pacman -Qi` 全量快照 + `pacman -Qqm` 标记源码构建的包
  - query():     单包即时查询，安装协调器用它复核最新状态
  - in_repos():  系统仓库能否提供某依赖（`pacman -Sp`）
  - list_foreign(): 列出源码构建的包

所有调用强制 LC_ALL=C，保证 -Qi 字段名为英文。
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from aurbuild.core.exceptions import InspectorError
from aurbuild.core.models import InstalledPackage, InstalledSet, Provenance
from aurbuild.utils.shell import CommandExecutor, CommandResult, get_executor

logger = logging.getLogger(__name__)


class InstalledInspector(Protocol):
    """已安装集合查询协议"""

    def snapshot(self) -> InstalledSet:
        ...

    def query(self, name: str) -> InstalledPackage | None:
        ...

    def in_repos(self, spec: str) -> bool:
        ...


def parse_query_info(text: str) -> list[dict[str, str]]:
    """解析 `pacman -Qi` 输出为字段字典列表

    每个包一段，段间空行；续行以空白开头，拼接到上一个字段。
    """
    blocks: list[dict[str, str]] = []
    current: dict[str, str] = {}
    last_key = ""
    for line in text.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current, last_key = {}, ""
            continue
        if line[0].isspace() and last_key:
            current[last_key] += " " + line.strip()
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        last_key = key.strip()
        current[last_key] = value.strip()
    if current:
        blocks.append(current)
    return blocks


def _field_list(field_value: str) -> tuple[str, ...]:
    if not field_value or field_value == "None":
        return ()
    return tuple(field_value.split())


class PacmanInspector:
    """基于 pacman 的已安装集合查询"""

    def __init__(self, pacman_cmd: str = "pacman", executor: CommandExecutor | None = None) -> None:
        self.pacman_cmd = pacman_cmd
        self._executor = executor

    def _run(self, *args: str) -> CommandResult:
        executor = self._executor or get_executor()
        env = {**os.environ, "LC_ALL": "C"}
        try:
            return executor.execute([self.pacman_cmd, *args], env=env)
        except OSError as e:
            raise InspectorError(f"无法执行 {self.pacman_cmd}: {e}") from e

    def _foreign_names(self) -> set[str]:
        r = self._run("-Qqm")
        # 没有 foreign 包时 pacman 返回 1 且无输出
        if r.returncode not in (0, 1):
            raise InspectorError(f"pacman -Qqm 失败 (rc={r.returncode}): {r.stderr[:300]}")
        return {line.strip() for line in r.stdout.splitlines() if line.strip()}

    def snapshot(self) -> InstalledSet:
        r = self._run("-Qi")
        if not r.success:
            raise InspectorError(f"pacman -Qi 失败 (rc={r.returncode}): {r.stderr[:300]}")
        foreign = self._foreign_names()
        packages = []
        for block in parse_query_info(r.stdout):
            name = block.get("Name")
            if not name:
                continue
            packages.append(InstalledPackage(
                name=name,
                version=block.get("Version", ""),
                provenance=Provenance.SOURCE if name in foreign else Provenance.SYSTEM,
                provides=_field_list(block.get("Provides", "")),
                conflicts=_field_list(block.get("Conflicts With", "")),
            ))
        logger.info("已读取本地安装快照: %d 个包 (源码构建 %d)", len(packages), len(foreign))
        return InstalledSet.of(packages)

    def query(self, name: str) -> InstalledPackage | None:
        r = self._run("-Qi", name)
        if not r.success:
            return None
        blocks = parse_query_info(r.stdout)
        if not blocks:
            return None
        block = blocks[0]
        foreign = self._run("-Qqm", name).success
        return InstalledPackage(
            name=block.get("Name", name),
            version=block.get("Version", ""),
            provenance=Provenance.SOURCE if foreign else Provenance.SYSTEM,
            provides=_field_list(block.get("Provides", "")),
            conflicts=_field_list(block.get("Conflicts With", "")),
        )

    def in_repos(self, spec: str) -> bool:
        r = self._run("-Sp", "--print-format", "%n", spec)
        return r.success and bool(r.stdout.strip())

    def list_foreign(self) -> list[InstalledPackage]:
        r = self._run("-Qm")
        if r.returncode not in (0, 1):
            raise InspectorError(f"pacman -Qm 失败 (rc={r.returncode}): {r.stderr[:300]}")
        result = []
        for line in r.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                result.append(InstalledPackage(
                    name=parts[0], version=parts[1], provenance=Provenance.SOURCE,
                ))
        return result
