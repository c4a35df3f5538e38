"""网络工具 — URL 安全校验 + JSON 查询 + 文件下载

索引客户端和配方拉取器共用，传输层错误统一映射为 TransportError。
"""

from __future__ import annotations

import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from aurbuild import __version__
from aurbuild.core.exceptions import TransportError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))
_USER_AGENT = f"aurbuild/{__version__}"


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def fetch_json(url: str, *, timeout: float = 30.0) -> Any:
    """GET 并解析 JSON 响应

    Raises:
        TransportError: 网络错误、HTTP 错误或响应不是合法 JSON
    """
    validate_url_scheme(url, context="json query")
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            body = resp.read()
    except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
        raise TransportError(f"请求失败: {url} - {e}") from e
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TransportError(f"响应不是合法 JSON: {url} - {e}") from e


def download(url: str, dest: Path, *, timeout: float = 60.0) -> Path:
    """下载文件到 dest，失败时删除不完整文件

    Raises:
        TransportError: 下载失败
    """
    validate_url_scheme(url, context="download")
    dest.parent.mkdir(parents=True, exist_ok=True)
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    logger.info("  下载: %s", url)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            with open(dest, "wb") as f:
                shutil.copyfileobj(resp, f)
    except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
        dest.unlink(missing_ok=True)
        raise TransportError(f"下载失败: {url} - {e}") from e
    return dest
