"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 CLI 层或对话引擎中做统一捕获与用户提示。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "API_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、tool_name 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


# ---- 工具相关 ----


class InvocationError(BusinessError):
    """工具调用失败，message 保留远端原始错误信息。"""

    def __init__(self, tool_name: str, message: str, **extra):
        super().__init__(code="TOOL_INVOCATION_ERROR", message=message, tool_name=tool_name, **extra)
        self.tool_name = tool_name


class ToolNotFound(InvocationError):
    """注册表中不存在该工具。"""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool {tool_name!r} not registered")
        self.code = "TOOL_NOT_FOUND"


class ProviderListError(BusinessError):
    """某个工具服务器无法列出工具；注册表会把它视为零贡献。"""

    def __init__(self, provider: str, message: str):
        super().__init__(code="PROVIDER_LIST_ERROR", message=message, provider=provider)
        self.provider = provider


# ---- 模型调用相关 ----


class ModelCallError(BusinessError):
    """模型调用失败的基类。"""

    default_code = "MODEL_CALL_ERROR"

    def __init__(self, message: str, attempts: int = 1, cause: Optional[BaseException] = None):
        super().__init__(code=self.default_code, message=message, attempts=attempts)
        self.attempts = attempts
        self.cause = cause


class TransientModelError(ModelCallError):
    """可重试的模型错误（过载 / 503 等）。"""

    default_code = "MODEL_TRANSIENT_ERROR"


class FatalModelError(ModelCallError):
    """不可重试或重试耗尽的模型错误，会直接中止对话。"""

    default_code = "MODEL_FATAL_ERROR"
