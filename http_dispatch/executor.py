"""Executor - Sends one described request and normalizes the response.

Each call validates the method, builds its own transport client configured
for that request's policy, encodes headers and body, sends, and converts
the reply into an HttpResponse. Nothing is shared between calls: a client
built with TLS verification off can never serve a call that wants it on.
"""

from __future__ import annotations

import logging
import ssl
import time
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from http_dispatch.encoding import (
    clean_headers,
    decode_text,
    encode_body,
    flatten_headers,
    has_header,
    is_valid_method,
)
from http_dispatch.models import (
    ExecutorConfig,
    HttpRequest,
    HttpResponse,
    RequestSettings,
)

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Which stage of a call failed."""

    INVALID_METHOD = "invalid_method"
    TRANSPORT_CONFIG = "transport_config"
    REQUEST_FAILED = "request_failed"
    BODY_DECODE = "body_decode"


class ExecutorError(Exception):
    """Base class for executor errors.

    str(error) is the message shown to the user.
    """

    kind: ErrorKind


class InvalidMethodError(ExecutorError):
    """Raised when the method is not a valid HTTP token."""

    kind = ErrorKind.INVALID_METHOD


class TransportConfigError(ExecutorError):
    """Raised when the client cannot be built for the requested policy."""

    kind = ErrorKind.TRANSPORT_CONFIG


class RequestError(ExecutorError):
    """Raised when a request fails (connection error, timeout, etc.)."""

    kind = ErrorKind.REQUEST_FAILED


class BodyDecodeError(ExecutorError):
    """Raised when the response body is not decodable as text."""

    kind = ErrorKind.BODY_DECODE


class Executor:
    """Executes described requests, one fresh client per call.

    Usage:
        executor = Executor(ExecutorConfig(timeout=10.0))
        response = await executor.execute(request)

    The executor holds only immutable config, so one instance can serve any
    number of concurrent calls.
    """

    def __init__(self, config: ExecutorConfig | None = None) -> None:
        self._config = config or ExecutorConfig()

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    def _build_client_kwargs(self, settings: RequestSettings) -> dict[str, Any]:
        """Build kwargs for httpx.AsyncClient from the per-request policy.

        Raises:
            TransportConfigError: If the CA bundle cannot be loaded.
        """
        kwargs: dict[str, Any] = {
            "timeout": self._config.timeout,
            "follow_redirects": settings.follow_redirects,
        }
        if settings.follow_redirects:
            kwargs["max_redirects"] = self._config.max_redirects

        if self._config.user_agent:
            kwargs["headers"] = {"User-Agent": self._config.user_agent}

        if not settings.verify_ssl:
            # Disables both chain validation and hostname checks
            kwargs["verify"] = False
        elif self._config.ca_bundle:
            try:
                kwargs["verify"] = ssl.create_default_context(cafile=self._config.ca_bundle)
            except (OSError, ValueError) as e:
                raise TransportConfigError(
                    f"client build failed: cannot load CA bundle "
                    f"'{self._config.ca_bundle}': {e}"
                ) from e
        # else: use httpx default (system trust store, verification on)

        return kwargs

    def _build_client(self, settings: RequestSettings) -> httpx.AsyncClient:
        kwargs = self._build_client_kwargs(settings)
        try:
            return httpx.AsyncClient(**kwargs)
        except (OSError, ValueError, TypeError) as e:
            raise TransportConfigError(f"client build failed: {e}") from e

    async def execute(self, request: HttpRequest) -> HttpResponse:
        """Execute one request.

        Args:
            request: The request to execute.

        Returns:
            The normalized response.

        Raises:
            InvalidMethodError: If the method is not a valid token.
            TransportConfigError: If the client cannot be configured.
            RequestError: If the request fails at the network level.
            BodyDecodeError: If the response body is not text.
        """
        if not is_valid_method(request.method):
            raise InvalidMethodError(f"invalid method: {request.method!r}")

        headers = clean_headers(request.headers)
        try:
            body_kwargs = encode_body(request)
        except UnicodeEncodeError as e:
            raise RequestError(
                f"request failed: body is not encodable as UTF-8: "
                f"{e.object[e.start:e.end]!r}"
            ) from e
        # Transport-chosen defaults (multipart boundary) never override the caller
        for name, value in body_kwargs.pop("headers", []):
            if not has_header(headers, name):
                headers.append((name, value.encode("ascii")))
        client = self._build_client(request.settings)

        logger.debug(
            "Sending %s %s (follow_redirects=%s, verify_ssl=%s)",
            request.method,
            request.url,
            request.settings.follow_redirects,
            request.settings.verify_ssl,
        )

        async with client:
            try:
                start_time = time.perf_counter()
                http_response = await client.request(
                    method=request.method,
                    url=request.url,
                    headers=headers,
                    **body_kwargs,
                )
                elapsed_ms = (time.perf_counter() - start_time) * 1000
            except httpx.TimeoutException as e:
                raise RequestError(f"request failed: timeout: {e}") from e
            except httpx.ConnectError as e:
                raise RequestError(f"request failed: connection error: {e}") from e
            except httpx.RequestError as e:
                raise RequestError(f"request failed: {e}") from e
            except httpx.InvalidURL as e:
                raise RequestError(f"request failed: invalid URL: {e}") from e
            except UnicodeEncodeError as e:
                raise RequestError(
                    f"request failed: non-ASCII characters where HTTP requires "
                    f"ASCII: {e.object[e.start:e.end]!r}"
                ) from e

        logger.debug(
            "Received %d from %s in %.1f ms",
            http_response.status_code,
            request.url,
            elapsed_ms,
        )
        return self._convert_response(http_response, elapsed_ms)

    def _convert_response(
        self,
        response: httpx.Response,
        elapsed_ms: float,
    ) -> HttpResponse:
        """Convert an httpx Response to HttpResponse.

        Raises:
            BodyDecodeError: If the payload is not valid text.
        """
        try:
            body = decode_text(response.content, response.charset_encoding)
        except UnicodeDecodeError as e:
            raise BodyDecodeError(
                f"read body failed: response body is not valid text ({e.reason} "
                f"at byte {e.start})"
            ) from e
        except (UnicodeError, LookupError) as e:
            raise BodyDecodeError(f"read body failed: {e}") from e

        return HttpResponse(
            status=response.status_code,
            status_text=httpx.codes.get_reason_phrase(response.status_code),
            headers=flatten_headers(response.headers.raw),
            body=body,
            elapsed_ms=elapsed_ms,
            http_version=response.http_version,
        )


async def send_http(
    request: HttpRequest | dict[str, Any],
    config: ExecutorConfig | None = None,
) -> HttpResponse:
    """Execute a request given as a model or as its dict form.

    This is the entry point for a host application that passes plain data.

    Raises:
        RequestError: If the dict does not describe a request.
    """
    if not isinstance(request, HttpRequest):
        try:
            request = HttpRequest.model_validate(request)
        except ValidationError as e:
            raise RequestError(f"request failed: malformed request: {_format_errors(e)}") from e
    return await Executor(config).execute(request)


def _format_errors(error: ValidationError) -> str:
    """One line naming each bad field, e.g. ``settings.verify_ssl: ...``."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}"
        for err in error.errors()
    )
