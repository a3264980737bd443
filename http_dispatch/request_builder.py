"""Request Builder - Turns editor-style inputs into an HttpRequest.

A request editor works with rows of key/value items (params, headers, form
fields), an auth selection and a body flavour. This module folds those into
the flat HttpRequest the Executor consumes:

- enabled query params are appended to the URL
- auth becomes an Authorization/API-key header or query param
- a Content-Type is implied from the body flavour when none was given
- url-encoded forms are serialized into the body string
"""

from __future__ import annotations

import base64
from typing import Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit

from http_dispatch.encoding import has_header
from http_dispatch.models import (
    AuthConfig,
    AuthType,
    BodyType,
    HttpRequest,
    KeyValueItem,
    RawType,
    RequestSettings,
)


_RAW_CONTENT_TYPES: dict[RawType, str] = {
    RawType.JSON: "application/json",
    RawType.TEXT: "text/plain",
    RawType.JAVASCRIPT: "application/javascript",
    RawType.HTML: "text/html",
    RawType.XML: "application/xml",
}


def _active_pairs(items: Sequence[KeyValueItem]) -> list[tuple[str, str]]:
    """Enabled rows with a non-blank key, key trimmed."""
    return [(item.key.strip(), item.value) for item in items if item.enabled and item.key.strip()]


def _set_header(headers: list[tuple[str, str]], name: str, value: str) -> list[tuple[str, str]]:
    """Replace every header called *name* with a single new one at the end."""
    lowered = name.lower()
    result = [(key, val) for key, val in headers if key.lower() != lowered]
    result.append((name, value))
    return result


def merge_query_params(url: str, params: Sequence[tuple[str, str]]) -> str:
    """Append params to the URL's query string, keeping what is already there."""
    if not params:
        return url
    parts = urlsplit(url)
    extra = urlencode(list(params))
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def auth_headers(auth: AuthConfig) -> list[tuple[str, str]]:
    """Headers contributed by the auth selection.

    Incomplete credentials (no token, no username, no key name) contribute
    nothing. API keys bound for the query string are handled by auth_params.
    """
    if auth.type == AuthType.NONE:
        return []
    if auth.type == AuthType.API_KEY:
        if auth.api_key_add_to == "header" and auth.api_key_name:
            return [(auth.api_key_name, auth.api_key_value)]
        return []
    if auth.type == AuthType.BEARER:
        if auth.bearer_token:
            return [("Authorization", f"Bearer {auth.bearer_token}")]
        return []
    # AuthType.BASIC
    if auth.username:
        credentials = f"{auth.username}:{auth.password}".encode("utf-8")
        return [("Authorization", f"Basic {base64.b64encode(credentials).decode('ascii')}")]
    return []


def auth_params(auth: AuthConfig) -> list[tuple[str, str]]:
    """Query params contributed by the auth selection (API key in query only)."""
    if auth.type == AuthType.API_KEY and auth.api_key_add_to == "query" and auth.api_key_name:
        return [(auth.api_key_name, auth.api_key_value)]
    return []


def implicit_content_type(body_type: BodyType, raw_type: RawType = RawType.TEXT) -> str | None:
    """Content-Type implied by the body flavour, or None.

    Multipart is left to the transport, which must add the boundary itself.
    """
    if body_type == BodyType.RAW:
        return _RAW_CONTENT_TYPES[raw_type]
    if body_type == BodyType.URLENCODED:
        return "application/x-www-form-urlencoded"
    return None


def urlencode_items(items: Sequence[KeyValueItem]) -> str:
    """Serialize enabled rows as an application/x-www-form-urlencoded body."""
    return urlencode(_active_pairs(items))


def build_request(
    method: str,
    url: str,
    *,
    headers: Sequence[KeyValueItem] = (),
    params: Sequence[KeyValueItem] = (),
    auth: AuthConfig | None = None,
    body_type: BodyType | str = BodyType.NONE,
    raw_type: RawType = RawType.TEXT,
    raw_body: str | None = None,
    form_items: Sequence[KeyValueItem] = (),
    settings: RequestSettings | None = None,
) -> HttpRequest:
    """Assemble an HttpRequest from editor inputs.

    Args:
        method: HTTP method as typed.
        url: Base URL; params are appended to it.
        headers: Header rows. Disabled and blank-key rows are dropped.
        params: Query param rows. Disabled and blank-key rows are dropped.
        auth: Auth selection; its header replaces any same-named header row.
        body_type: Body flavour. Unknown values mean no body.
        raw_type: Flavour of a raw body, used for the implicit Content-Type.
        raw_body: Payload for raw bodies.
        form_items: Rows for url-encoded and multipart bodies.
        settings: Transport policy; defaults to following redirects and
            verifying certificates.

    Returns:
        The request, ready for Executor.execute().
    """
    auth = auth or AuthConfig()
    if not isinstance(body_type, BodyType):
        try:
            body_type = BodyType(body_type)
        except ValueError:
            body_type = BodyType.NONE

    header_pairs = _active_pairs(headers)
    for name, value in auth_headers(auth):
        header_pairs = _set_header(header_pairs, name, value)

    content_type = implicit_content_type(body_type, raw_type)
    if content_type and not has_header(header_pairs, "Content-Type"):
        header_pairs.append(("Content-Type", content_type))

    full_url = merge_query_params(url, _active_pairs(params) + auth_params(auth))

    body: str | None = None
    form_data: list[KeyValueItem] = []
    if body_type == BodyType.RAW:
        body = raw_body
    elif body_type == BodyType.URLENCODED:
        body = urlencode_items(form_items)
    elif body_type == BodyType.FORM_DATA:
        form_data = list(form_items)

    return HttpRequest(
        method=method,
        url=full_url,
        headers=header_pairs,
        body_type=body_type,
        body=body,
        form_data=form_data,
        settings=settings or RequestSettings(),
    )
