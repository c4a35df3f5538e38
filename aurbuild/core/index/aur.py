"""AUR RPC 客户端

接口: {aur_url}rpc/?v=5&type=info&arg[]=<name>
      {aur_url}rpc/?v=5&type=search&arg=<keywords>

配方地址取 {aur_url}<PackageBase>.git，由拉取器 clone。
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from aurbuild.core.exceptions import PackageNotFoundError, TransportError
from aurbuild.core.models import PackageRecord, SearchResult
from aurbuild.utils.net import fetch_json, validate_url_scheme

logger = logging.getLogger(__name__)

RPC_VERSION = 5


class AurClient:
    """AUR 元数据客户端（无本地副作用的纯查询）"""

    def __init__(self, aur_url: str = "https://aur.archlinux.org/", timeout: float = 30.0) -> None:
        validate_url_scheme(aur_url, context="aur_url")
        self.aur_url = aur_url if aur_url.endswith("/") else aur_url + "/"
        self.timeout = timeout

    def _rpc(self, params: list[tuple[str, str]]) -> list[dict[str, Any]]:
        url = f"{self.aur_url}rpc/?{urlencode([('v', str(RPC_VERSION)), *params])}"
        data = fetch_json(url, timeout=self.timeout)
        if not isinstance(data, dict):
            raise TransportError(f"AUR 响应格式无效: {url}")
        if data.get("type") == "error":
            raise TransportError(f"AUR 返回错误: {data.get('error', '未知错误')}")
        results = data.get("results") or []
        if not isinstance(results, list):
            raise TransportError(f"AUR 响应 results 字段无效: {url}")
        return results

    def lookup(self, name: str) -> PackageRecord:
        results = self._rpc([("type", "info"), ("arg[]", name)])
        for item in results:
            if item.get("Name") == name:
                record = self._to_record(item)
                logger.debug("AUR 命中: %s %s", record.name, record.version)
                return record
        raise PackageNotFoundError(name, f"AUR 中不存在包: {name}")

    def search(self, keywords: list[str]) -> list[SearchResult]:
        results = self._rpc([("type", "search"), ("arg", " ".join(keywords))])
        entries = [
            SearchResult(
                name=item.get("Name", ""),
                version=item.get("Version") or "",
                description=item.get("Description") or "",
                maintainer=item.get("Maintainer") or "",
                popularity=float(item.get("Popularity") or 0.0),
                num_votes=int(item.get("NumVotes") or 0),
                out_of_date=item.get("OutOfDate"),
                url=item.get("URL") or "",
            )
            for item in results
        ]
        entries.sort(key=lambda r: r.popularity, reverse=True)
        return entries

    def _to_record(self, item: dict[str, Any]) -> PackageRecord:
        name = item["Name"]
        base = item.get("PackageBase") or name
        return PackageRecord(
            name=name,
            version=item.get("Version") or "",
            depends=tuple(item.get("Depends") or ()),
            makedepends=tuple(item.get("MakeDepends") or ()),
            checkdepends=tuple(item.get("CheckDepends") or ()),
            provides=tuple(item.get("Provides") or ()),
            conflicts=tuple(item.get("Conflicts") or ()),
            location=f"{self.aur_url}{base}.git",
            package_base=base,
            description=item.get("Description") or "",
        )
