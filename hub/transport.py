"""
HTTP 传输层：URL 拼接、发送请求、响应分类。

所有连接器共用这一层，保证错误分类一致：
登录页 (HTML) -> AuthenticationFailure，即使状态码是 2xx。
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup

from hub.auth.headers import TransportOptions
from hub.errors import (
    AuthenticationFailure,
    InputError,
    MalformedResponse,
    TransportError,
    UpstreamApiError,
)

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200

_MARKUP_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
_MARKUP_SIGNATURES = ("<!doctype html", "<html")


def join_url(base_url: str, path: str) -> str:
    """绝对 URL 原样返回；否则 base 与 path 之间只保留一个 '/'。"""
    if path.startswith(("http://", "https://")):
        return path
    if not path:
        return base_url
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


def _is_markup(content_type: str, text: str) -> bool:
    if any(ct in content_type for ct in _MARKUP_CONTENT_TYPES):
        return True
    # 声明为 JSON 的响应只做 JSON 解析，字段值里的 <html> 不算登录页
    if "json" in content_type:
        return False
    head = text.lstrip()[:512].lower()
    if not (any(head.startswith(sig) for sig in _MARKUP_SIGNATURES) or "<html>" in head):
        return False
    return _try_json(text) is None


def _markup_detail(text: str) -> str:
    """登录页一般带 <title>，比原文片段更易读。"""
    soup = BeautifulSoup(text, "lxml")
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return excerpt(soup.get_text(" "))


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def classify_response(response: httpx.Response) -> Any:
    """
    将响应分类为数据或具体的错误类型。

    Returns:
        JSON 响应解析后的对象；非 JSON 响应尝试解析，失败则返回原文。
    Raises:
        AuthenticationFailure / UpstreamApiError / MalformedResponse
    """
    status = response.status_code
    content_type = response.headers.get("content-type", "").lower()
    text = response.text

    if _is_markup(content_type, text):
        detail = _markup_detail(text)
        if status == 403:
            message = f"Access forbidden (403): the account lacks permission or the session was rejected - {detail}"
        elif status == 401:
            message = f"Authentication required (401): check the configured credentials - {detail}"
        else:
            message = f"Received an HTML page instead of API data (HTTP {status}), usually a login redirect - {detail}"
        raise AuthenticationFailure(message, status_code=status, excerpt=excerpt(text))

    if status in (401, 403):
        raise AuthenticationFailure(
            f"Authentication failed (HTTP {status})", status_code=status, excerpt=excerpt(text)
        )

    if not 200 <= status < 300:
        payload = _try_json(text) if text else None
        raise UpstreamApiError(
            f"Upstream API returned HTTP {status} {response.reason_phrase}".rstrip(),
            status_code=status,
            payload=payload,
            excerpt=excerpt(text),
        )

    if not text:
        return None

    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedResponse(f"Response declared JSON but could not be parsed: {e}", excerpt=excerpt(text))

    parsed = _try_json(text)
    return parsed if parsed is not None else text


async def send(
    method: str,
    url: str,
    options: TransportOptions,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    data: Any = None,
    content: Optional[str | bytes] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """发送单个请求；网络层异常统一转换为 TransportError。"""
    try:
        async with httpx.AsyncClient(
            verify=options.verify,
            timeout=options.timeout_seconds,
            transport=transport,
        ) as client:
            return await client.request(
                method.upper(),
                url,
                headers=headers,
                params=params,
                json=json_body,
                data=data,
                content=content,
            )
    except httpx.TimeoutException as e:
        raise TransportError(f"Request to {url} timed out after {options.timeout_ms} ms ({type(e).__name__})")
    except httpx.TransportError as e:
        raise TransportError(f"Request to {url} failed: {type(e).__name__}: {e}")
    except httpx.InvalidURL as e:
        raise InputError(f"Invalid URL '{url}': {e}")
