"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 UI 层做统一捕获与用户提示。

分类：
- MissingCredentialError: 需要 API Key 的 Provider 未提供 Key（发请求前拦截）。
- UnsupportedProviderError: 分发目标不认识。
- NoValidMessagesError: 过滤角色/空内容后没有可发送的消息。
- VendorHttpError: 厂商返回非 2xx。
- VendorEmptyResponseError: 2xx 但没有可用的回答文本。
- NetworkError: 连接失败、超时等，尚未拿到 HTTP 状态码。
- StorageUnavailableError: 持久化读写本身失败。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "VENDOR_HTTP_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、reason 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    @property
    def provider(self):
        return self.extra.get("provider")


class ValidationError(BusinessError):
    """参数、消息或存储文档校验失败。"""


class MissingCredentialError(ValidationError):
    """Provider 需要 API Key 但未提供。"""


class UnsupportedProviderError(BusinessError):
    """Provider 标识不在注册表中。"""


class NoValidMessagesError(ValidationError):
    """过滤后没有任何可以发给厂商的消息。"""


class NetworkError(BusinessError):
    """网络层错误，例如 DNS 失败、连接超时等。"""


class VendorHttpError(BusinessError):
    """厂商 API 返回非 2xx；http_status 为厂商返回的状态码。"""


class VendorEmptyResponseError(BusinessError):
    """厂商返回 2xx 但没有可用内容。

    reason 取值：safety / recitation / other / empty / malformed。
    """

    @property
    def reason(self) -> str:
        return self.extra.get("reason", "empty")


class StorageUnavailableError(BusinessError):
    """宿主持久化读写失败。"""
