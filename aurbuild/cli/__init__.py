"""aurbuild 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os
from typing import Any

import click

from aurbuild import __version__
from aurbuild.core.config import init_config
from aurbuild.core.exceptions import AurBuildError
from aurbuild.services.container import get_container
from aurbuild.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


def _fail(e: AurBuildError) -> click.ClickException:
    """业务异常转为 CLI 错误（非零退出码）"""
    return click.ClickException(f"[{e.code}] {e}")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default="",
              help="配置文件路径（默认 $AURBUILD_CONFIG 或 configs/default.yml）")
def main(config_path: str) -> None:
    """aurbuild - 从 AUR 搜索、构建并安装源码包"""
    setup_logging(
        level=os.getenv("AURBUILD_LOG_LEVEL", "INFO"),
        json_output=os.getenv("AURBUILD_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except AurBuildError as e:
        raise _fail(e) from e


# 注册各领域子命令
from aurbuild.cli.cmd_build import register as _reg_build  # noqa: E402
from aurbuild.cli.cmd_manage import register as _reg_manage  # noqa: E402

_reg_build(main)
_reg_manage(main)
