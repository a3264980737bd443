"""Data models for http-dispatch.

All models use Pydantic v2. Request-side models are frozen: a request is
immutable once received and is consumed by exactly one executor call.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Request Models
# =============================================================================


class RequestSettings(BaseModel):
    """Per-request transport policy. Built fresh for every call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    follow_redirects: bool = Field(default=True, description="Follow Location redirects")
    verify_ssl: bool = Field(
        default=True, description="Validate certificate chain and hostname"
    )


class KeyValueItem(BaseModel):
    """One editor row: a form field, query param or header."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(description="Field name")
    value: str = Field(default="", description="Field value")
    enabled: bool = Field(default=True, description="Whether the row is included")


class BodyType(str, Enum):
    """How the request body is encoded."""

    RAW = "raw"
    URLENCODED = "x-www-form-urlencoded"
    FORM_DATA = "form-data"
    NONE = "none"  # Also the landing spot for any unrecognized tag


class HttpRequest(BaseModel):
    """Declarative description of one HTTP request.

    Headers are ordered (name, value) pairs; repeated names are kept as
    separate entries. `body` is used for raw and url-encoded bodies,
    `form_data` only for multipart bodies.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: str = Field(description="HTTP method, sent as given")
    url: str = Field(description="Absolute URL")
    headers: list[tuple[str, str]] = Field(
        default_factory=list, description="Ordered header pairs, duplicates allowed"
    )
    body_type: BodyType = Field(default=BodyType.NONE, description="Body encoding")
    body: str | None = Field(default=None, description="Raw or url-encoded payload")
    form_data: list[KeyValueItem] = Field(
        default_factory=list, description="Multipart fields"
    )
    settings: RequestSettings = Field(
        default_factory=RequestSettings, description="Transport policy for this call"
    )

    @field_validator("body_type", mode="before")
    @classmethod
    def coerce_unknown_body_type(cls, v: Any) -> Any:
        # Unknown tags mean "no body", never a validation failure
        if isinstance(v, BodyType):
            return v
        try:
            return BodyType(v)
        except ValueError:
            return BodyType.NONE


class RawType(str, Enum):
    """Editor flavour of a raw body; decides the implicit Content-Type."""

    TEXT = "text"
    JSON = "json"
    JAVASCRIPT = "javascript"
    HTML = "html"
    XML = "xml"


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api-key"
    BEARER = "bearer"
    BASIC = "basic"


class AuthConfig(BaseModel):
    """Credentials turned into headers (or a query param) by the request builder.

    Only the fields for the selected type are read.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: AuthType = Field(default=AuthType.NONE, description="Authentication scheme")
    api_key_name: str = Field(default="", description="Header or query param name")
    api_key_value: str = Field(default="", description="API key value")
    api_key_add_to: str = Field(default="header", description="'header' or 'query'")
    bearer_token: str = Field(default="", description="Bearer token")
    username: str = Field(default="", description="Basic auth username")
    password: str = Field(default="", description="Basic auth password")

    @field_validator("api_key_add_to")
    @classmethod
    def validate_add_to(cls, v: str) -> str:
        if v not in ("header", "query"):
            raise ValueError("api_key_add_to must be 'header' or 'query'")
        return v


# =============================================================================
# Response Models
# =============================================================================


class HttpResponse(BaseModel):
    """Normalized response returned to the host application.

    Header names are lowercase as exposed by the transport; one pair per
    value instance.
    """

    model_config = ConfigDict(extra="forbid")

    status: int = Field(description="HTTP status code")
    status_text: str = Field(default="", description="Canonical reason phrase, or empty")
    headers: list[tuple[str, str]] = Field(
        default_factory=list, description="Flattened response headers"
    )
    body: str = Field(default="", description="Response payload decoded as text")
    elapsed_ms: float = Field(default=0.0, description="Send and read time in milliseconds")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")

    def header_values(self, name: str) -> list[str]:
        """All values for a header name (case-insensitive), in received order."""
        lowered = name.lower()
        return [value for key, value in self.headers if key.lower() == lowered]


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ExecutorConfig(BaseModel):
    """Settings shared by every call an Executor makes.

    Per-request policy (redirects, TLS verification) lives on
    RequestSettings; this only holds the defaults the transport needs.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout: float = Field(default=30.0, gt=0, description="Transport timeout in seconds")
    max_redirects: int = Field(
        default=10, ge=0, description="Redirect hop limit when following redirects"
    )
    ca_bundle: str | None = Field(
        default=None, description="Extra CA bundle used when verifying certificates"
    )
    user_agent: str | None = Field(
        default=None, description="User-Agent sent when the request has none"
    )
