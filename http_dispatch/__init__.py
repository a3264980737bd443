"""http-dispatch: execute declaratively described HTTP requests."""

from http_dispatch.executor import (
    BodyDecodeError,
    ErrorKind,
    Executor,
    ExecutorError,
    InvalidMethodError,
    RequestError,
    TransportConfigError,
    send_http,
)
from http_dispatch.models import (
    BodyType,
    ExecutorConfig,
    HttpRequest,
    HttpResponse,
    KeyValueItem,
    RequestSettings,
)

__version__ = "0.1.0"

__all__ = [
    "BodyDecodeError",
    "BodyType",
    "ErrorKind",
    "Executor",
    "ExecutorConfig",
    "ExecutorError",
    "HttpRequest",
    "HttpResponse",
    "InvalidMethodError",
    "KeyValueItem",
    "RequestError",
    "RequestSettings",
    "TransportConfigError",
    "send_http",
]
