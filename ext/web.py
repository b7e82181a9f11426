"""RSL extension: blocking HTTP natives.

Requests run synchronously on the calling thread. Services config keys:
``http_timeout`` (seconds, default 5.0) and ``http_transport`` (an
``httpx.BaseTransport``, used by hosts and tests to route requests).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from extensions import ExtensionAPI
from interpreter import TYPE_STR, Interpreter, RSLRuntimeError, Value, expect, make_str

RSL_EXTENSION_NAME = "web"
RSL_EXTENSION_API_VERSION = 1


def _client(interpreter: Interpreter) -> httpx.Client:
    config = interpreter.services.config
    timeout = float(config.get("http_timeout", 5.0))
    transport = config.get("http_transport")
    return httpx.Client(timeout=timeout, follow_redirects=True, transport=transport)


def _request(
    interpreter: Interpreter,
    method: str,
    url: str,
    location: Any,
    *,
    body: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Value:
    request_headers = dict(headers or {})
    content = None
    if body is not None:
        content = body.encode("utf-8")
        request_headers.setdefault("Content-Type", "text/plain; charset=utf-8")
    try:
        with _client(interpreter) as client:
            resp = client.request(method, url, headers=request_headers, content=content)
    except httpx.HTTPError as exc:
        raise RSLRuntimeError(f"{method} {url} failed: {exc}", location=location, kind="http") from exc
    interpreter.io_log.append({"event": "http", "method": method, "url": url, "status": resp.status_code})
    if not 200 <= resp.status_code < 300:
        preview = (resp.text or "")[:200]
        raise RSLRuntimeError(f"HTTP {resp.status_code} for {url}: {preview}", location=location, kind="http")
    return make_str(resp.text)


def _get_request(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    url = expect(args[0], TYPE_STR, "getRequest", location)
    return _request(interpreter, "GET", url, location)


def _post_request(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    url = expect(args[0], TYPE_STR, "postRequest", location)
    body = expect(args[1], TYPE_STR, "postRequest", location)
    return _request(interpreter, "POST", url, location, body=body)


def _post_request_with_bearer_token(interpreter: Interpreter, args: List[Value], location: Any) -> Value:
    url = expect(args[0], TYPE_STR, "postRequestWithBearerToken", location)
    body = expect(args[1], TYPE_STR, "postRequestWithBearerToken", location)
    token = expect(args[2], TYPE_STR, "postRequestWithBearerToken", location)
    return _request(interpreter, "POST", url, location, body=body, headers={"Authorization": f"Bearer {token}"})


def rsl_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="web", version="0.1.0")
    ext.register_native("getRequest", 1, 1, _get_request, doc="getRequest(url) -> STR body")
    ext.register_native("postRequest", 2, 2, _post_request, doc="postRequest(url, body) -> STR body")
    ext.register_native(
        "postRequestWithBearerToken",
        3,
        3,
        _post_request_with_bearer_token,
        doc="postRequestWithBearerToken(url, body, token) -> STR body",
    )
