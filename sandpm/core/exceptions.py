"""统一异常体系

所有业务异常继承 SandpmError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出友好提示，调度器可据此记录失败类型。
"""

from __future__ import annotations


class SandpmError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(SandpmError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(SandpmError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestError(SandpmError):
    """package.json 缺失或格式错误"""

    code = "MANIFEST_ERROR"


class RegistryUnavailable(SandpmError):
    """registry 返回非成功状态或元数据不可用"""

    code = "REGISTRY_UNAVAILABLE"


class UnsatisfiableRange(SandpmError):
    """没有已发布版本满足版本范围"""

    code = "UNSATISFIABLE_RANGE"


class FetchError(SandpmError):
    """tarball 下载失败"""

    code = "FETCH_ERROR"


class ExtractError(SandpmError):
    """gzip / tar 流损坏，解压中止"""

    code = "EXTRACT_ERROR"


class StorageError(SandpmError):
    """存储层读写失败"""

    code = "STORAGE_ERROR"


class CapacityExceeded(SandpmError):
    """共享成员集合已满"""

    code = "CAPACITY_EXCEEDED"


class AnalysisError(SandpmError):
    """依赖分析失败（附带 name@range 上下文）"""

    code = "ANALYSIS_ERROR"


class InstallError(SandpmError):
    """依赖安装失败（附带 name@version 上下文）"""

    code = "INSTALL_ERROR"
