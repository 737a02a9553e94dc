"""传输引擎错误分类

ConfigError / SigningError / ValidationError / ProviderError 为致命错误，不重试；
TransientNetworkError 由引擎按退避策略重试，超过上限后升级为任务 Error。
"""

from typing import Any

# 非本库异常落入任务终态时使用的兜底错误码
DEFAULT_ERROR_CODE = "UPLOAD_ERROR"


class R2UploaderError(Exception):
    """所有引擎错误的基类"""

    default_code = DEFAULT_ERROR_CODE

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_status(self):
        """转换为任务终态 Error"""
        from .transfer.status import Error

        return Error(message=self.message, code=self.code)


class ConfigError(R2UploaderError):
    """存储桶配置不合法或无法识别"""

    default_code = "ConfigError"


class SigningError(R2UploaderError):
    """凭证异常或签名计算失败"""

    default_code = "SigningError"


class TransientNetworkError(R2UploaderError):
    """可重试的网络错误（超时、连接失败、限流、5xx）"""

    default_code = "TransientNetworkError"


class ValidationError(R2UploaderError):
    """调用参数违反协议约束，说明调用方存在逻辑缺陷"""

    default_code = "ValidationError"


class ProviderError(R2UploaderError):
    """存储服务返回的业务错误，code 保留服务端原始错误码"""

    default_code = "ProviderError"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.status = status


def error_status(exc: BaseException):
    """任意异常 → 任务终态 Error"""
    if isinstance(exc, R2UploaderError):
        return exc.to_status()
    from .transfer.status import Error

    return Error(message=str(exc) or exc.__class__.__name__, code=DEFAULT_ERROR_CODE)
