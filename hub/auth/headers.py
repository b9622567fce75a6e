"""
鉴权 Header 构建：根据实例的 auth 配置生成请求头与传输参数。

纯函数，不做任何网络调用；每种 AuthType 对应一个处理函数。
"""

import base64
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from hub.config_loader import (
    ApiKeyAuth,
    AuthType,
    BasicAuth,
    BearerAuth,
    CustomAuth,
    OAuthConfig,
    SystemInstance,
)

DEFAULT_TIMEOUT_MS = 30000

_Handler = Callable[[object, str], Dict[str, str]]


def _basic(auth: BasicAuth, default_header: str) -> Dict[str, str]:
    if not auth.username or not auth.password:
        return {}
    encoded = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}


def _bearer(auth: BearerAuth, default_header: str) -> Dict[str, str]:
    if not auth.token:
        return {}
    return {"Authorization": f"Bearer {auth.token}"}


def _api_key(auth: ApiKeyAuth, default_header: str) -> Dict[str, str]:
    if not auth.key:
        return {}
    return {auth.header or default_header: auth.key}


def _oauth(auth: OAuthConfig, default_header: str) -> Dict[str, str]:
    # 只使用已存储的 access_token，不发起 token 交换
    if not auth.access_token:
        return {}
    return {"Authorization": f"Bearer {auth.access_token}"}


def _custom(auth: CustomAuth, default_header: str) -> Dict[str, str]:
    return dict(auth.custom_headers)


def _none(auth: object, default_header: str) -> Dict[str, str]:
    return {}


_HANDLERS: Dict[AuthType, _Handler] = {
    AuthType.NONE: _none,
    AuthType.BASIC: _basic,
    AuthType.BEARER: _bearer,
    AuthType.API_KEY: _api_key,
    AuthType.OAUTH: _oauth,
    AuthType.CUSTOM: _custom,
}

_missing = set(AuthType) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"AuthType 缺少 header 处理函数: {sorted(t.value for t in _missing)}")


def build_headers(instance: SystemInstance, default_api_key_header: str = "Authorization") -> Dict[str, str]:
    """Return the auth headers for an instance. Empty credentials produce no header."""
    handler = _HANDLERS[instance.auth_type]
    return handler(instance.auth, default_api_key_header)


@dataclass(frozen=True)
class TransportOptions:
    verify: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def build_transport_options(instance: SystemInstance, default_timeout_ms: Optional[int] = None) -> TransportOptions:
    """TLS 校验与超时。reject_unauthorized=False 或 allow_self_signed=True 时关闭证书校验。"""
    ssl = instance.ssl
    verify = not (ssl.reject_unauthorized is False or ssl.allow_self_signed is True)
    timeout_ms = ssl.timeout_ms or default_timeout_ms or DEFAULT_TIMEOUT_MS
    return TransportOptions(verify=verify, timeout_ms=timeout_ms)
