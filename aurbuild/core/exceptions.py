"""统一异常体系

所有业务异常继承 AurBuildError，替代散落的 ValueError / RuntimeError。
code 用于 CLI 输出与报告归类，retryable 标记调用方是否可重试。

分类:
  - 解析期 (ResolutionError): 未找到 / 循环 / 冲突，任一出现即中止整次运行
  - 传输期 (TransportError): 索引不可达，内部按退避重试后才上抛
  - 单包期 (FetchError / BuildFailureError / InstallError): 只影响该包及其依赖方
  - 运行期 (WorkspaceError / AbortedError): 中止所有尚未开始的包
"""

from __future__ import annotations


class AurBuildError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(AurBuildError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(AurBuildError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExecutionError(AurBuildError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


class InvalidTransitionError(AurBuildError):
    """计划节点状态只能前进，回退或跳转即抛出"""

    code = "INVALID_TRANSITION"


# =========================================================================
# 解析期
# =========================================================================


class ResolutionError(AurBuildError):
    """依赖解析失败，整次运行在构建开始前中止"""

    code = "RESOLUTION_ERROR"


class PackageNotFoundError(ResolutionError):
    """索引中不存在该包名（永久错误，不重试）"""

    code = "NOT_FOUND"

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(message or f"索引中不存在包: {name}")
        self.name = name


class CycleDetectedError(ResolutionError):
    """依赖图存在环"""

    code = "CYCLE"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(cycle)}")
        self.cycle = cycle


class ConflictDetectedError(ResolutionError):
    """两个包互相冲突，或索引版本无法满足依赖约束"""

    code = "CONFLICT"

    def __init__(self, message: str, packages: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.packages = packages


class TransportError(AurBuildError):
    """索引访问失败（网络 / 服务不可用），可按退避重试"""

    code = "TRANSPORT"
    retryable = True


# =========================================================================
# 单包期
# =========================================================================


class FetchError(AurBuildError):
    """构建配方拉取失败（地址不可达 / 内容无效）"""

    code = "FETCH_ERROR"


class IntegrityError(FetchError):
    """配方内容摘要与索引声明不一致"""

    code = "INTEGRITY_ERROR"


class BuildFailureError(AurBuildError):
    """构建工具返回失败"""

    code = "BUILD_FAILURE"

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class InstallError(AurBuildError):
    """构建成功但安装失败"""

    code = "INSTALL_FAILURE"


class InstallConflictError(InstallError):
    """安装时与已安装包文件冲突"""

    code = "INSTALL_CONFLICT"


class InspectorError(AurBuildError):
    """查询本地已安装包失败"""

    code = "INSPECTOR_ERROR"


# =========================================================================
# 运行期
# =========================================================================


class WorkspaceError(AurBuildError):
    """工作目录不可写等致命问题，中止剩余所有包"""

    code = "WORKSPACE_ERROR"


class AbortedError(AurBuildError):
    """运行被取消或因致命错误中止"""

    code = "ABORTED"
