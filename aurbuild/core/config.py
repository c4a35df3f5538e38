"""集中配置管理

替代各模块散落的默认常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from aurbuild.core.exceptions import ConfigError
from aurbuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/default.yml"


def _default_home() -> str:
    """源码与产物根目录，默认 $XDG_CACHE_HOME/aurbuild"""
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return str(Path(base) / "aurbuild")


@dataclass
class Config:
    """全局配置"""

    # 索引
    index: str = "aur"                      # "aur" | "manifest"
    aur_url: str = "https://aur.archlinux.org/"
    manifest: str = "configs/manifest.yml"  # index=manifest 时的本地清单
    http_timeout: float = 30.0
    max_attempts: int = 3                   # 传输错误最大尝试次数
    backoff_base: float = 1.0               # 退避基数（秒），第 n 次重试等待 base * 2^(n-1)

    # 目录
    src_dir: str = field(default_factory=lambda: str(Path(_default_home()) / "src"))
    pkg_dir: str = field(default_factory=lambda: str(Path(_default_home()) / "pkg"))

    # 构建
    max_workers: int = 1
    build_cmd: str = "makepkg -f --noconfirm"
    build_timeout: float = 3600.0           # 单包构建上限（秒）
    cancel_grace: float = 30.0              # 取消后等待进行中构建的时间（秒）

    # 系统包管理器
    pacman_cmd: str = "pacman"
    use_sudo: bool = field(default_factory=lambda: os.getenv("USER", "") != "root")

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.index not in ("aur", "manifest"):
            raise ConfigError(f"不支持的索引类型: {self.index}（可选 aur / manifest）")
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts 必须 >= 1: {self.max_attempts}")
        self.max_workers = max(1, int(self.max_workers))

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_PATH) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无法解析 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "") -> Config:
    """从文件初始化全局配置，路径缺省取 $AURBUILD_CONFIG"""
    global _current  # noqa: PLW0603
    path = path or os.getenv("AURBUILD_CONFIG", DEFAULT_CONFIG_PATH)
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
