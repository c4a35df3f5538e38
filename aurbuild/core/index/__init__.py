"""包索引模块

拆分说明:
- context.py: 索引协议、传输重试、单次运行缓存
- aur.py: AUR RPC 客户端
- manifest.py: 本地 YAML 清单索引
"""

from aurbuild.core.index.aur import AurClient
from aurbuild.core.index.context import PackageIndex, RunContext, retry_call
from aurbuild.core.index.manifest import ManifestIndex

__all__ = [
    "AurClient",
    "ManifestIndex",
    "PackageIndex",
    "RunContext",
    "retry_call",
]
