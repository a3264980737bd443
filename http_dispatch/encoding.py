"""Request encoding and response decoding helpers.

Pure functions used by the Executor. They never touch the network, so each
step (method check, header cleaning, body encoding, header flattening, text
decoding) can be tested in isolation.

Malformed input is filtered here rather than rejected: a bad header line or
a blank form row is dropped and the rest of the request still goes out.
"""

from __future__ import annotations

import codecs
import logging
import os
import re
from typing import Any, Iterable, Sequence

from http_dispatch.models import BodyType, HttpRequest, KeyValueItem

logger = logging.getLogger(__name__)

# RFC 7230 section 3.2.6: token = 1*tchar
_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

# Field values may not carry control characters other than HTAB. Bytes at or
# above 0x80 (obs-text) are accepted and sent UTF-8 encoded.
_FIELD_VALUE_FORBIDDEN = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")

# What a response header value must look like to be exposed as text
_VISIBLE_ASCII = re.compile(rb"[\t\x20-\x7e]*")


def is_valid_method(method: str) -> bool:
    """True if *method* is a syntactically valid HTTP method token."""
    return bool(_TOKEN.fullmatch(method))


def _is_utf8_encodable(value: str) -> bool:
    # Lone surrogates (e.g. "\ud800" from a JSON host) have no UTF-8 form
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def is_valid_header(name: str, value: str) -> bool:
    """True if the pair can be put on the wire as a single header line."""
    return (
        bool(_TOKEN.fullmatch(name))
        and not _FIELD_VALUE_FORBIDDEN.search(value)
        and _is_utf8_encodable(value)
    )


def clean_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, bytes]]:
    """Drop malformed header pairs, keeping order and duplicates.

    Values are stripped of surrounding spaces/tabs and encoded as UTF-8 so
    non-ASCII text survives instead of failing the whole request.
    """
    cleaned: list[tuple[str, bytes]] = []
    for name, value in headers:
        if not is_valid_header(name, value):
            logger.debug("Skipping malformed header %r", name)
            continue
        cleaned.append((name, value.strip(" \t").encode("utf-8")))
    return cleaned


def has_header(headers: Iterable[tuple[str, Any]], name: str) -> bool:
    """True if a header called *name* (any case) is present."""
    lowered = name.lower()
    return any(key.lower() == lowered for key, _ in headers)


def form_fields(items: Sequence[KeyValueItem]) -> list[tuple[str, str]]:
    """Enabled items with a non-blank key, in order.

    The key is sent exactly as typed; trimming only decides inclusion.
    """
    fields = []
    for item in items:
        if not item.enabled or not item.key.strip():
            continue
        fields.append((item.key, item.value))
    dropped = len(items) - len(fields)
    if dropped:
        logger.debug("Dropped %d disabled or unnamed form field(s)", dropped)
    return fields


def empty_multipart(boundary: str | None = None) -> tuple[str, bytes]:
    """Content-Type and payload of a multipart form with no parts.

    httpx sends nothing at all for an empty ``files`` list, so the closing
    delimiter is framed here.
    """
    boundary = boundary or os.urandom(16).hex()
    return f"multipart/form-data; boundary={boundary}", f"--{boundary}--\r\n".encode("ascii")


def encode_body(request: HttpRequest) -> dict[str, Any]:
    """Build the body keyword arguments for httpx's request().

    Returns:
        ``{"content": bytes}`` for raw and url-encoded bodies,
        ``{"files": [...]}`` for multipart bodies, or ``{}`` for no body.
        An empty multipart form is ``{"content": bytes, "headers": [...]}``
        where ``headers`` carries the Content-Type with its boundary.

    Raises:
        UnicodeEncodeError: If the body or a form value has no UTF-8 form.
    """
    if request.body_type == BodyType.FORM_DATA:
        fields = form_fields(request.form_data)
        if not fields:
            content_type, content = empty_multipart()
            return {"content": content, "headers": [("Content-Type", content_type)]}
        # A (None, bytes) tuple renders as a plain text part with no filename
        return {
            "files": [(key, (None, value.encode("utf-8"))) for key, value in fields]
        }

    if request.body_type in (BodyType.RAW, BodyType.URLENCODED):
        if request.body is None:
            return {}
        return {"content": request.body.encode("utf-8")}

    return {}


def flatten_headers(raw_headers: Iterable[tuple[bytes, bytes]]) -> list[tuple[str, str]]:
    """Flatten raw response headers into (name, value) text pairs.

    Names are lowercased and grouped in the order each name first appears;
    values keep the server's order within a name. Values that are not
    visible ASCII are dropped.
    """
    grouped: dict[str, list[str]] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1").lower()
        values = grouped.setdefault(name, [])
        if not _VISIBLE_ASCII.fullmatch(raw_value):
            logger.debug("Dropping non-ASCII value for response header %r", name)
            continue
        values.append(raw_value.decode("ascii"))

    return [(name, value) for name, values in grouped.items() for value in values]


def decode_text(content: bytes, charset: str | None) -> str:
    """Decode a response payload strictly as text.

    Uses the declared charset, falling back to UTF-8 when none is declared,
    the name is unknown, or it names a bytes-to-bytes codec such as base64.

    Raises:
        UnicodeError: If the payload is not valid text in that charset.
    """
    encoding = "utf-8"
    if charset:
        try:
            info = codecs.lookup(charset)
        except LookupError:
            logger.debug("Unknown response charset %r, decoding as UTF-8", charset)
        else:
            # The same flag bytes.decode() checks before refusing a codec
            if info._is_text_encoding:
                encoding = info.name
            else:
                logger.debug("Charset %r is not a text encoding, decoding as UTF-8", charset)
    return content.decode(encoding)
