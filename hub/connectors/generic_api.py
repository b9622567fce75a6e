"""
通用 REST 连接器：查询本身是一个 JSON 请求描述。

    {"method": "POST", "endpoint": "/tenants", "headers": {...}, "body": {...},
     "query_params": {...}, "timeout": 10000, "verify_ssl": false}

返回值包含状态码与响应头，而不只是响应体。
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hub.auth.headers import TransportOptions
from hub.config_loader import AuthType, HttpMethod, QueryDef, SystemInstance
from hub.connectors.base import Connector
from hub.errors import InputError
from hub.query_lang import QueryType
from hub.transport import classify_response

logger = logging.getLogger(__name__)

_BODY_METHODS = ("POST", "PUT", "PATCH")


class GenericApiRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    method: HttpMethod = HttpMethod.GET
    endpoint: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    query_params: Dict[str, Any] = Field(default_factory=dict, alias="queryParams")
    timeout: Optional[int] = Field(default=None, gt=0)
    verify_ssl: Optional[bool] = Field(default=None, alias="verifySsl")


def parse_request(query: str) -> GenericApiRequest:
    try:
        return GenericApiRequest.model_validate(json.loads(query))
    except (ValueError, ValidationError) as e:
        raise InputError(
            f"Query must be a JSON object with method, endpoint, and optional headers/body: {e}"
        )


class GenericApiConnector(Connector):
    system_name = "generic-api"
    display_name = "Generic REST API"
    query_type = QueryType.GENERIC_JSON
    env_prefix = "GENERIC_API"
    fallback_url = "https://api.example.com"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "api-key"

    default_queries = (
        QueryDef(id="health-check", method=HttpMethod.GET,
                 path=json.dumps({"method": "GET", "endpoint": "/health"}),
                 description="API Health Check"),
        QueryDef(id="tenant-basic-data", method=HttpMethod.POST,
                 path=json.dumps({
                     "method": "POST",
                     "endpoint": "/tenant-visibility/basic-data",
                     "body": {
                         "paginationAndSorting": {"currentPage": 1, "pageSize": 10,
                                                  "sortProperty": "id", "sortDirection": "ASC"},
                         "command": {"tenantId": ["{tenant_id}"]},
                     },
                 }),
                 description="Tenant basic data"),
    )

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        req = parse_request(query)
        options = self.transport_options(instance)
        if req.timeout is not None or req.verify_ssl is not None:
            options = TransportOptions(
                verify=options.verify if req.verify_ssl is None else req.verify_ssl,
                timeout_ms=req.timeout or options.timeout_ms,
            )

        http_method = req.method.value
        body = req.body if http_method in _BODY_METHODS else None
        headers = {"Content-Type": "application/json", **req.headers}
        params = {k: v for k, v in req.query_params.items() if v is not None} or None

        response = await self.send(
            instance,
            http_method,
            req.endpoint,
            params=params,
            json_body=body if not isinstance(body, str) else None,
            content=body if isinstance(body, str) else None,
            headers=headers,
            options=options,
        )
        data = classify_response(response)
        return {
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
