"""
连接器错误分类：所有外部系统调用失败都归入以下几类。

Connector 抛出能确定的最具体类型，Gateway 不会把具体类型放宽成通用错误。
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INPUT_ERROR = "input_error"
    INSTANCE_NOT_FOUND = "instance_not_found"
    INSTANCE_INACTIVE = "instance_inactive"
    AUTHENTICATION_FAILURE = "authentication_failure"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT_ERROR = "transport_error"
    UPSTREAM_API_ERROR = "upstream_api_error"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


# 配置类错误：运维需要修改配置，而不是等待重试
CONFIGURATION_KINDS = frozenset({
    ErrorKind.INPUT_ERROR,
    ErrorKind.INSTANCE_NOT_FOUND,
    ErrorKind.INSTANCE_INACTIVE,
    ErrorKind.AUTHENTICATION_FAILURE,
})


class ConnectorError(Exception):
    """Base class for every classified connector failure."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    http_status: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class InputError(ConnectorError):
    """缺少标识符或查询语法错误，在任何网络调用之前发现。"""
    kind = ErrorKind.INPUT_ERROR
    http_status = 400


class ConnectorNotFound(InputError):
    http_status = 404

    def __init__(self, system_name: str):
        self.system_name = system_name
        super().__init__(f"No connector registered for system '{system_name}'")


class InstanceNotFound(ConnectorError):
    kind = ErrorKind.INSTANCE_NOT_FOUND
    http_status = 404

    def __init__(self, system_name: str, instance_id: str):
        self.system_name = system_name
        self.instance_id = instance_id
        super().__init__(f"{system_name} instance '{instance_id}' not found")


class InstanceInactive(ConnectorError):
    kind = ErrorKind.INSTANCE_INACTIVE
    http_status = 409

    def __init__(self, system_name: str, instance_id: str, enabled_env_var: Optional[str] = None):
        self.system_name = system_name
        self.instance_id = instance_id
        hint = "set is_active: true in the instance configuration"
        if enabled_env_var:
            hint += f" or {enabled_env_var}=true in the environment"
        super().__init__(f"{system_name} instance '{instance_id}' is disabled (is_active=false) - {hint}")


class AuthenticationFailure(ConnectorError):
    """401/403，或 2xx 但返回的是登录页面 (HTML)。"""
    kind = ErrorKind.AUTHENTICATION_FAILURE
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, excerpt: str = ""):
        self.status_code = status_code
        self.excerpt = excerpt
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "status_code": self.status_code, "excerpt": self.excerpt}


class MalformedResponse(ConnectorError):
    kind = ErrorKind.MALFORMED_RESPONSE
    http_status = 502

    def __init__(self, message: str, excerpt: str = ""):
        self.excerpt = excerpt
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "excerpt": self.excerpt}


class TransportError(ConnectorError):
    """DNS / connect / TLS / timeout."""
    kind = ErrorKind.TRANSPORT_ERROR
    http_status = 504


class UpstreamApiError(ConnectorError):
    kind = ErrorKind.UPSTREAM_API_ERROR
    http_status = 502

    def __init__(self, message: str, status_code: int, payload: Any = None, excerpt: str = ""):
        self.status_code = status_code
        self.payload = payload
        self.excerpt = excerpt
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "status_code": self.status_code, "excerpt": self.excerpt}


class RateLimitExceeded(ConnectorError):
    kind = ErrorKind.RATE_LIMITED
    http_status = 429

    def __init__(self, system_name: str, instance_id: str, requests_per_minute: int):
        self.system_name = system_name
        self.instance_id = instance_id
        super().__init__(
            f"{system_name} instance '{instance_id}' exceeded its rate limit "
            f"({requests_per_minute} requests/minute)"
        )


HTTP_STATUS_BY_KIND = {
    ErrorKind.INPUT_ERROR: InputError.http_status,
    ErrorKind.INSTANCE_NOT_FOUND: InstanceNotFound.http_status,
    ErrorKind.INSTANCE_INACTIVE: InstanceInactive.http_status,
    ErrorKind.AUTHENTICATION_FAILURE: AuthenticationFailure.http_status,
    ErrorKind.MALFORMED_RESPONSE: MalformedResponse.http_status,
    ErrorKind.TRANSPORT_ERROR: TransportError.http_status,
    ErrorKind.UPSTREAM_API_ERROR: UpstreamApiError.http_status,
    ErrorKind.RATE_LIMITED: RateLimitExceeded.http_status,
    ErrorKind.INTERNAL_ERROR: ConnectorError.http_status,
}
