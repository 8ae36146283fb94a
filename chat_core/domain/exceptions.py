"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在服务层或 UI 层做统一捕获与用户提示。

流式管线中的错误分为两类：
- 软失败（TransportError / EmptyResponseError）：只在 FallbackOrchestrator 内部处理，
  触发切换到下一个 Provider，永远不会抛给调用方。
- 致命错误（AllProvidersExhausted）：本轮对话失败，需要向用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、attempts 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class TransportError(BusinessError):
    """HTTP 层失败：非 2xx 状态码、响应体缺失或连接异常。属于软失败。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(ApiError):
    """Provider 限流错误，由编排层切换到下一个 Provider。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ParseError(BusinessError):
    """单个帧的 JSON 解析失败。仅在 FrameNormalizer 内部使用，帧被丢弃。"""


class EmptyResponseError(BusinessError):
    """流已结束但没有任何可见文本。属于软失败。"""


class AllProvidersExhausted(BusinessError):
    """所有 Provider 均失败，本轮对话不会产生助手消息。"""


class PersistenceError(BusinessError):
    """存储读写失败。服务层只记录日志，不中断对话流程。"""


class ExchangeInProgressError(BusinessError):
    """上一轮对话仍在进行时再次发送。"""
