"""构建配方拉取器

把包记录中的配方（PKGBUILD 及其附带文件）落盘到 destination/<包名>/。

落盘流程（保证不会留下半成品目录被误当成完整配方）:
  1. 在 destination 内创建临时目录 .<包名>.tmp-xxxx
  2. 按来源类型拉取到临时目录（git clone / tar 包下载解压 / 本地目录复制）
  3. 校验 PKGBUILD 存在；索引给出 digest 时校验 sha256
  4. 写入完成标记，原子替换到 destination/<包名>/
  5. 任何失败都删除临时目录，旧的完整目录保持不动

同版本同摘要的完整目录直接复用（本地优先）。
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import uuid
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import yaml

from aurbuild.core.exceptions import (
    ExecutionError,
    FetchError,
    IntegrityError,
    TransportError,
    ValidationError,
    WorkspaceError,
)
from aurbuild.core.models import COMPLETE_MARKER, PackageRecord, RecipeHandle
from aurbuild.utils.net import download
from aurbuild.utils.shell import CommandExecutor, run_cmd
from aurbuild.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".tar.zst", ".tar")


def sha256_file(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


# =========================================================================
# 配方来源
# =========================================================================


class RecipeSource(Protocol):
    """配方来源协议: 拉取到 tree 目录，返回用于校验的摘要（无归档时返回空串）"""

    def fetch(self, record: PackageRecord, tree: Path, staging: Path) -> str:
        ...


class GitRecipeSource:
    """Git 仓库来源（AUR 默认）"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self._executor = executor

    def fetch(self, record: PackageRecord, tree: Path, staging: Path) -> str:
        url = record.location.removeprefix("git+")
        try:
            run_cmd(
                ["git", "clone", "--depth", "1", url, str(tree)],
                cwd=str(staging), label="git clone", executor=self._executor,
            )
        except ExecutionError as e:
            raise FetchError(f"拉取配方失败 {record.name}: {e}") from e
        return ""


class TarRecipeSource:
    """tar 包来源（远程下载后安全解压）"""

    def __init__(self, timeout: float = 60.0) -> None:
        self.timeout = timeout

    def fetch(self, record: PackageRecord, tree: Path, staging: Path) -> str:
        archive = staging / "recipe.archive"
        try:
            download(record.location, archive, timeout=self.timeout)
        except (TransportError, ValidationError) as e:
            raise FetchError(f"配方下载失败 {record.name}: {e}") from e
        digest = sha256_file(archive)
        try:
            with tarfile.open(archive) as tf:
                tf.extractall(path=str(tree), filter="data")  # noqa: S202
        except (OSError, tarfile.TarError) as e:
            raise FetchError(f"配方解压失败 {record.name}: {e}") from e
        _flatten_single_dir(tree)
        return digest


class LocalRecipeSource:
    """本地目录来源（file:// 或绝对路径）"""

    def fetch(self, record: PackageRecord, tree: Path, staging: Path) -> str:
        src = Path(urlparse(record.location).path if record.location.startswith("file://")
                   else record.location)
        if not src.is_dir():
            raise FetchError(f"本地配方目录不存在 {record.name}: {src}")
        shutil.copytree(src, tree, ignore=shutil.ignore_patterns(".git", COMPLETE_MARKER))
        return ""


def _flatten_single_dir(tree: Path) -> None:
    """tar 包常带一层顶级目录（foo/PKGBUILD），展开到 tree 根"""
    if (tree / "PKGBUILD").exists():
        return
    children = list(tree.iterdir())
    if len(children) != 1 or not children[0].is_dir():
        return
    inner = children[0]
    for item in inner.iterdir():
        os.replace(item, tree / item.name)
    inner.rmdir()


def select_source(location: str) -> str:
    """根据配方地址选择来源类型: git / tar / local"""
    if not location:
        raise FetchError("配方地址为空")
    parsed = urlparse(location)
    if location.startswith("git+") or parsed.scheme in ("git", "ssh") or location.endswith(".git"):
        return "git"
    if parsed.scheme in ("http", "https"):
        if parsed.path.endswith(_TAR_SUFFIXES):
            return "tar"
        raise FetchError(f"无法识别的配方地址: {location}")
    if parsed.scheme in ("", "file"):
        return "local"
    raise FetchError(f"不支持的配方协议 '{parsed.scheme}': {location}")


# =========================================================================
# 拉取器
# =========================================================================


class RecipeFetcher:
    """配方落盘器 — 临时目录 + 原子替换，可重复调用"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.sources: dict[str, RecipeSource] = {
            "git": GitRecipeSource(executor),
            "tar": TarRecipeSource(timeout),
            "local": LocalRecipeSource(),
        }

    def materialize(self, record: PackageRecord, destination: str | Path) -> RecipeHandle:
        """落盘配方，返回完整的配方目录句柄

        Raises:
            FetchError: 地址不可达 / 内容无效
            IntegrityError: 摘要不一致
            WorkspaceError: destination 不可写
        """
        dest_root = Path(destination)
        target = dest_root / record.name
        handle = RecipeHandle(
            name=record.name, path=target,
            version=record.version, digest=record.digest,
        )
        if self._reusable(handle):
            logger.info("配方已就绪，直接使用: %s %s -> %s", record.name, record.version, target)
            return handle

        source = self.sources[select_source(record.location)]
        try:
            dest_root.mkdir(parents=True, exist_ok=True)
            self._clean_stale(dest_root, record.name)
            staging = Path(tempfile.mkdtemp(prefix=f".{record.name}.tmp-", dir=str(dest_root)))
        except OSError as e:
            raise WorkspaceError(f"工作目录不可写: {dest_root} - {e}") from e

        try:
            tree = staging / "recipe"
            logger.info("拉取配方: %s %s <- %s", record.name, record.version, record.location)
            archive_digest = source.fetch(record, tree, staging)
            pkgbuild = tree / "PKGBUILD"
            if not pkgbuild.is_file():
                raise FetchError(f"配方缺少 PKGBUILD: {record.name} ({record.location})")
            if record.digest:
                actual = archive_digest or sha256_file(pkgbuild)
                if actual != record.digest:
                    raise IntegrityError(
                        f"配方摘要不匹配 {record.name}: 期望 {record.digest}, 实际 {actual}"
                    )
                logger.info("  摘要校验通过: %s", record.name)
            save_yaml(tree / COMPLETE_MARKER, {
                "name": record.name,
                "version": record.version,
                "digest": record.digest,
            })
            self._promote(tree, target)
        except OSError as e:
            raise FetchError(f"配方落盘失败 {record.name}: {e}") from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info("配方就绪: %s -> %s", record.name, target)
        return handle

    @staticmethod
    def _reusable(handle: RecipeHandle) -> bool:
        if not handle.is_complete():
            return False
        try:
            meta = load_yaml(handle.path / COMPLETE_MARKER)
        except (OSError, yaml.YAMLError, ValueError):
            return False
        return meta.get("version") == handle.version and meta.get("digest") == handle.digest

    @staticmethod
    def _clean_stale(dest_root: Path, name: str) -> None:
        """清理上次中断残留的临时目录与备份目录"""
        leftovers = [*dest_root.glob(f".{name}.tmp-*"), *dest_root.glob(f".{name}.old-*")]
        for leftover in leftovers:
            if leftover.is_dir():
                logger.debug("清理残留目录: %s", leftover)
                shutil.rmtree(leftover, ignore_errors=True)

    @staticmethod
    def _promote(tree: Path, target: Path) -> None:
        """原子替换: 旧目录先改名备份，新目录 rename 到位后再删备份"""
        backup: Path | None = None
        if target.exists():
            backup = target.with_name(f".{target.name}.old-{uuid.uuid4().hex[:8]}")
            os.replace(target, backup)
        try:
            os.replace(tree, target)
        except OSError:
            if backup is not None:
                os.replace(backup, target)
            raise
        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
