"""本地清单索引

从 YAML 清单文件加载包定义，用于离线构建、自建配方仓库和测试。

清单格式:
    packages:
      foo:
        version: 1.0-1
        depends: [bar]
        makedepends: [cmake]
        provides: [foo-bin]
        conflicts: []
        location: recipes/foo      # 相对路径按清单所在目录解析
        digest: <sha256>           # 可选
        description: ...
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from aurbuild.core.exceptions import ConfigError, PackageNotFoundError
from aurbuild.core.models import PackageRecord, SearchResult
from aurbuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


def _str_list(info: dict[str, Any], key: str, name: str) -> tuple[str, ...]:
    value = info.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"清单中 {name}.{key} 必须是列表")
    return tuple(str(v) for v in value)


class ManifestIndex:
    """YAML 清单索引"""

    def __init__(self, manifest_path: str | Path) -> None:
        self.manifest_path = Path(manifest_path)
        self.records: dict[str, PackageRecord] = {}
        self._load()

    def _load(self) -> None:
        if not self.manifest_path.exists():
            logger.warning("清单文件不存在: %s", self.manifest_path)
            return

        try:
            data = load_yaml(self.manifest_path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"清单文件无法解析 {self.manifest_path}: {e}") from e
        if not isinstance(data.get("packages") or {}, dict):
            raise ConfigError(f"清单 packages 必须是映射: {self.manifest_path}")
        root = self.manifest_path.parent
        for name, info in (data.get("packages") or {}).items():
            if info is None:
                continue
            if not isinstance(info, dict):
                raise ConfigError(f"清单中 {name} 的定义必须是映射")
            location = str(info.get("location", ""))
            if location and "://" not in location and not Path(location).is_absolute():
                location = str((root / location).resolve())
            self.records[name] = PackageRecord(
                name=name,
                version=str(info.get("version", "")),
                depends=_str_list(info, "depends", name),
                makedepends=_str_list(info, "makedepends", name),
                checkdepends=_str_list(info, "checkdepends", name),
                provides=_str_list(info, "provides", name),
                conflicts=_str_list(info, "conflicts", name),
                location=location,
                package_base=str(info.get("package_base", name)),
                digest=str(info.get("digest", "")),
                description=str(info.get("description", "")),
            )

        logger.info("已加载 %d 个清单包: %s", len(self.records), self.manifest_path)

    def lookup(self, name: str) -> PackageRecord:
        record = self.records.get(name)
        if record is None:
            raise PackageNotFoundError(name, f"清单中不存在包: {name}")
        return record

    def search(self, keywords: list[str]) -> list[SearchResult]:
        words = [k.lower() for k in keywords]
        results = []
        for r in self.records.values():
            text = f"{r.name} {r.description}".lower()
            if all(w in text for w in words):
                results.append(SearchResult(
                    name=r.name, version=r.version, description=r.description,
                ))
        return results
