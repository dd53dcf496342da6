"""
Chirpline Backend — Body and Cookie Decoders
=============================================

What:  Pure functions that turn raw request bytes and headers into the
       structured values stored on RequestContext.
How:   JSON via the stdlib decoder in strict mode, URL-encoded forms via
       parse_qsl plus bracket-key expansion, cookies via Starlette's
       cookie_parser, compressed bodies via zlib.
Who:   Called by BodyParsingMiddleware; unit-tested directly.

Every decoder raises a ChirplineError subclass on bad input, never a bare
ValueError, so the middleware can turn the failure into a 4xx response.

Nested form keys (bracket notation):
    user[name]=ada               → {"user": {"name": "ada"}}
    tags[]=a&tags[]=b            → {"tags": ["a", "b"]}
    tags=a&tags=b                → {"tags": ["a", "b"]}
    items[1]=b&items[0]=a        → {"items": ["a", "b"]}
    a[b][c][d][e][f][g]=x        → depth capped at 5, rest kept as "[g]"
"""

import json
import re
import zlib
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, unquote

from starlette.requests import cookie_parser

from chirpline.exceptions import (
    MalformedBodyError,
    PayloadTooLargeError,
    TooManyParametersError,
    UnsupportedMediaTypeError,
)

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

# Bracket nesting depth and the largest explicit list index for form keys
FORM_MAX_DEPTH = 5
FORM_ARRAY_LIMIT = 20

_BRACKET_SEGMENT = re.compile(r"\[([^\[\]]*)\]")
_JSON_WHITESPACE = " \t\n\r"


# ══════════════════════════════════════════════════════════════════════════
# Headers
# ══════════════════════════════════════════════════════════════════════════

def parse_content_type(header: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """Split a Content-Type header into (lowercased media type, params)."""
    if not header:
        return "", {}
    media_type, _, rest = header.partition(";")
    params: Dict[str, str] = {}
    for part in rest.split(";"):
        key, sep, value = part.partition("=")
        if sep:
            params[key.strip().lower()] = value.strip().strip('"')
    return media_type.strip().lower(), params


def parse_cookies(header: Optional[str]) -> Dict[str, str]:
    """
    Parse a Cookie header into a flat name → value mapping.

    The first occurrence of a name wins. Values are percent-decoded; a
    value that is not valid UTF-8 once decoded is kept verbatim. Fragments
    without a name are dropped.
    """
    if not header:
        return {}
    cookies: Dict[str, str] = {}
    # One pair per call: cookie_parser alone lets a later duplicate win
    for pair in header.split(";"):
        for name, value in cookie_parser(pair).items():
            if name and name not in cookies:
                cookies[name] = _decode_cookie_value(value)
    return cookies


def _decode_cookie_value(value: str) -> str:
    if "%" not in value:
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


# ══════════════════════════════════════════════════════════════════════════
# Content-Encoding
# ══════════════════════════════════════════════════════════════════════════

def inflate(raw: bytes, encoding: Optional[str], limit: int) -> bytes:
    """
    Undo gzip/deflate Content-Encoding, enforcing the limit on the output.

    Raises:
        UnsupportedMediaTypeError: encoding other than identity/gzip/deflate
        PayloadTooLargeError:      inflated body exceeds limit
        MalformedBodyError:        corrupt compressed stream
    """
    encoding = (encoding or "identity").strip().lower()
    if encoding == "identity":
        return raw
    if encoding == "gzip":
        decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    elif encoding == "deflate":
        decompressor = zlib.decompressobj()
    else:
        raise UnsupportedMediaTypeError(
            f"Unsupported content encoding '{encoding}'",
            context={"encoding": encoding},
        )

    try:
        inflated = decompressor.decompress(raw, limit + 1)
    except zlib.error as e:
        raise MalformedBodyError(
            "Compressed request body is corrupt",
            context={"encoding": encoding, "error": str(e)},
        ) from e
    if len(inflated) > limit:
        raise PayloadTooLargeError(limit, context={"encoding": encoding})
    return inflated


# ══════════════════════════════════════════════════════════════════════════
# JSON
# ══════════════════════════════════════════════════════════════════════════

def _reject_constant(name: str) -> Any:
    raise MalformedBodyError(f"Invalid JSON token '{name}'")


def decode_json(raw: bytes, charset: Optional[str] = None) -> Any:
    """
    Decode a JSON body in strict mode.

    Only objects and arrays are accepted at the top level, and the
    non-standard NaN/Infinity tokens are rejected. An empty body decodes
    to an empty mapping.
    """
    if not raw:
        return {}

    charset = (charset or "utf-8").lower()
    if not charset.startswith("utf-"):
        raise UnsupportedMediaTypeError(
            f"Unsupported charset '{charset.upper()}'",
            context={"charset": charset},
        )
    try:
        # utf-8-sig drops a leading BOM
        text = raw.decode("utf-8-sig" if charset == "utf-8" else charset)
    except LookupError as e:
        raise UnsupportedMediaTypeError(
            f"Unsupported charset '{charset.upper()}'",
            context={"charset": charset},
        ) from e
    except UnicodeDecodeError as e:
        raise MalformedBodyError(
            "Request body is not valid text in the declared charset",
            context={"charset": charset},
        ) from e

    first = text.lstrip(_JSON_WHITESPACE)[:1]
    if first not in ("{", "["):
        raise MalformedBodyError(
            "JSON body must be an object or an array",
            context={"first_char": first},
        )

    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise MalformedBodyError(
            f"Invalid JSON: {e.msg} at position {e.pos}",
            context={"position": e.pos},
        ) from e
    except RecursionError as e:
        # Nesting deeper than the decoder's recursion limit
        raise MalformedBodyError(
            "JSON body is nested too deeply",
            context={"size": len(raw)},
        ) from e


# ══════════════════════════════════════════════════════════════════════════
# URL-encoded Forms
# ══════════════════════════════════════════════════════════════════════════

def decode_form(
    raw: bytes,
    charset: Optional[str] = None,
    parameter_limit: int = 1000,
    depth: int = FORM_MAX_DEPTH,
) -> Dict[str, Any]:
    """
    Decode an application/x-www-form-urlencoded body with nested keys.

    Raises:
        UnsupportedMediaTypeError: charset other than UTF-8
        TooManyParametersError:    more than parameter_limit fields
        MalformedBodyError:        body is not valid UTF-8
    """
    charset = (charset or "utf-8").lower()
    if charset != "utf-8":
        raise UnsupportedMediaTypeError(
            f"Unsupported charset '{charset.upper()}'",
            context={"charset": charset},
        )
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedBodyError("Form body is not valid UTF-8") from e

    if not text:
        return {}
    if text.count("&") + 1 > parameter_limit:
        raise TooManyParametersError(parameter_limit)

    root: Dict[str, Any] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        segments = split_form_key(key, depth)
        if segments:
            _assign(root, segments, value)
    # The top level stays a mapping even when every key is numeric
    return {key: _compact(value) for key, value in root.items()}


def split_form_key(key: str, depth: int = FORM_MAX_DEPTH) -> List[str]:
    """
    Break a bracketed form key into path segments.

    ``a[b][]`` → ``["a", "b", ""]``. Brackets beyond depth stay together
    as one literal segment.
    """
    matches = list(_BRACKET_SEGMENT.finditer(key))
    if depth <= 0 or not matches:
        return [key] if key else []

    segments: List[str] = []
    parent = key[: matches[0].start()]
    if parent:
        segments.append(parent)
    for match in matches[:depth]:
        segments.append(match.group(1))
    if len(matches) > depth:
        segments.append(key[matches[depth].start():])
    return segments


def _assign(node: Dict[str, Any], segments: List[str], value: str) -> None:
    head, rest = segments[0], segments[1:]
    if head == "":
        head = str(len(node))

    if not rest:
        existing = node.get(head)
        if existing is None:
            node[head] = value
        elif isinstance(existing, dict):
            existing[str(len(existing))] = value
        else:
            # Repeated scalar key, collect into a list
            node[head] = {"0": existing, "1": value}
        return

    child = node.get(head)
    if not isinstance(child, dict):
        child = {} if child is None else {"0": child}
        node[head] = child
    _assign(child, rest, value)


def _compact(node: Any) -> Any:
    """Turn index-keyed mappings into lists, recursively."""
    if not isinstance(node, dict):
        return node
    compacted = {key: _compact(value) for key, value in node.items()}
    if compacted and all(key.isdigit() and str(int(key)) == key for key in compacted):
        indices = sorted(int(key) for key in compacted)
        sequential = indices == list(range(len(indices)))
        if sequential or indices[-1] <= FORM_ARRAY_LIMIT:
            return [compacted[str(i)] for i in indices]
    return compacted
