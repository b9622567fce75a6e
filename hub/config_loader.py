"""
配置加载器：将 YAML 配置文件解析为 Pydantic 模型。

实例来源优先级：YAML 显式配置 > 环境变量默认值 > 连接器内置的兜底实例。
"""

import copy
import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


# ── 枚举 ──────────────────────────────────────────────

class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    API_KEY = "api_key"
    OAUTH = "oauth"
    CUSTOM = "custom"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


# ── 鉴权配置 (tagged union) ────────────────────────────

class _AuthVariant(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class NoAuth(_AuthVariant):
    type: Literal["none"] = "none"


class BasicAuth(_AuthVariant):
    type: Literal["basic"] = "basic"
    username: str = ""
    password: str = ""


class BearerAuth(_AuthVariant):
    type: Literal["bearer"] = "bearer"
    token: str = ""


class ApiKeyAuth(_AuthVariant):
    type: Literal["api_key"] = "api_key"
    key: str = ""
    # None -> 使用连接器约定的默认 header
    header: Optional[str] = None


class OAuthConfig(_AuthVariant):
    """只存储配置与已获取的 token，不负责刷新流程。"""
    type: Literal["oauth"] = "oauth"
    client_id: str = ""
    client_secret: str = ""
    token_url: str = ""
    scope: str = ""
    access_token: Optional[str] = None


class CustomAuth(_AuthVariant):
    type: Literal["custom"] = "custom"
    custom_headers: Dict[str, str] = Field(default_factory=dict)


AuthConfig = Annotated[
    Union[NoAuth, BasicAuth, BearerAuth, ApiKeyAuth, OAuthConfig, CustomAuth],
    Field(discriminator="type"),
]


# ── 实例配置 ──────────────────────────────────────────

class SslConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    reject_unauthorized: bool = True
    allow_self_signed: bool = False
    timeout_ms: Optional[int] = Field(default=None, gt=0)


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(default=60, ge=1)
    burst_size: int = Field(default=10, ge=1)


class SystemInstance(BaseModel):
    """One configured connection to a concrete external deployment."""

    model_config = ConfigDict(frozen=True)

    id: str
    system_name: str
    display_name: str = ""
    base_url: str = ""
    is_active: bool = True
    auth: AuthConfig = Field(default_factory=NoAuth)
    ssl: SslConfig = Field(default_factory=SslConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_auth(cls, data: Any) -> Any:
        # 兼容 {auth_type, auth_config} 的扁平写法
        if isinstance(data, dict) and "auth" not in data and "auth_type" in data:
            data = dict(data)
            auth_type = data.pop("auth_type") or AuthType.NONE.value
            auth_config = data.pop("auth_config", None) or {}
            data["auth"] = {"type": auth_type, **auth_config}
        return data

    @property
    def auth_type(self) -> AuthType:
        return AuthType(self.auth.type)

    @property
    def key(self) -> str:
        return f"{self.system_name}/{self.id}"

    def summary(self) -> dict[str, Any]:
        """不含凭证的实例摘要，供 API 展示。"""
        return {
            "id": self.id,
            "system_name": self.system_name,
            "display_name": self.display_name,
            "base_url": self.base_url,
            "auth_type": self.auth_type.value,
            "is_active": self.is_active,
            "tags": list(self.tags),
            "rate_limit": self.rate_limit.model_dump(),
        }


class QueryDef(BaseModel):
    """A named catalogue query bound to one system family."""

    model_config = ConfigDict(frozen=True)

    id: str
    method: HttpMethod = HttpMethod.GET
    path: str
    description: str = ""


# ── 顶层配置 ──────────────────────────────────────────

class HubSettings(BaseModel):
    max_concurrent_refreshes: int = Field(default=8, ge=1)
    default_timeout_ms: int = Field(default=30000, gt=0)
    retain_data_on_error: bool = False
    enforce_rate_limits: bool = True


class SystemConfig(BaseModel):
    # 原始实例定义，与环境变量默认值合并后再校验
    instances: List[Dict[str, Any]] = Field(default_factory=list)


class AppConfig(BaseModel):
    systems: Dict[str, SystemConfig] = Field(default_factory=dict)
    settings: HubSettings = Field(default_factory=HubSettings)

    def get_system(self, system_name: str) -> Optional[SystemConfig]:
        for name, system in self.systems.items():
            if name.lower() == system_name.lower():
                return system
        return None


# ── 环境变量 ──────────────────────────────────────────

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def resolve_env(value: Any, environ: Mapping[str, str] | None = None) -> Any:
    """递归解析 ${ENV_VAR} 占位符；未设置的变量替换为空字符串。"""
    env = os.environ if environ is None else environ
    if isinstance(value, str):
        def replacer(m: re.Match) -> str:
            env_val = env.get(m.group(1), "")
            if not env_val:
                logger.warning(f"环境变量 {m.group(1)} 未设置")
            return env_val
        return _ENV_PATTERN.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: resolve_env(v, env) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_env(v, env) for v in value]
    return value


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes", "on")


def _auth_from_env(auth_type: AuthType, get: Callable[[str], Optional[str]], api_key_header: Optional[str]) -> dict:
    if auth_type == AuthType.BASIC:
        # Atlassian 风格：API token 作为 basic 密码
        return {"type": "basic", "username": get("USERNAME") or "", "password": get("PASSWORD") or get("API_TOKEN") or ""}
    elif auth_type == AuthType.BEARER:
        return {"type": "bearer", "token": get("API_TOKEN") or ""}
    elif auth_type == AuthType.API_KEY:
        return {"type": "api_key", "key": get("API_KEY") or get("API_TOKEN") or "", "header": get("API_KEY_HEADER") or api_key_header}
    elif auth_type == AuthType.OAUTH:
        return {
            "type": "oauth",
            "client_id": get("CLIENT_ID") or "",
            "client_secret": get("CLIENT_SECRET") or "",
            "token_url": get("TOKEN_URL") or "",
            "scope": get("SCOPE") or "",
            "access_token": get("ACCESS_TOKEN"),
        }
    elif auth_type == AuthType.CUSTOM:
        return {"type": "custom", "custom_headers": {}}
    return {"type": "none"}


def env_instance(
    system_name: str,
    prefix: str,
    instance_id: str,
    display_name: str,
    fallback_url: str,
    *,
    default_auth_type: AuthType = AuthType.NONE,
    api_key_header: Optional[str] = None,
    tags: Iterable[str] = (),
    ssl: Optional[SslConfig] = None,
    rate_limit: Optional[RateLimitConfig] = None,
    environ: Mapping[str, str] | None = None,
) -> SystemInstance:
    """
    根据 {PREFIX}_URL / _AUTH_TYPE / _USERNAME / _PASSWORD / _API_TOKEN /
    _API_KEY / _API_KEY_HEADER / _ENABLED 构建默认实例。
    环境变量缺失时回退到硬编码值；兜底实例默认不启用，也不带任何凭证。
    """
    env = os.environ if environ is None else environ

    def get(name: str) -> Optional[str]:
        return env.get(f"{prefix}_{name}") or None

    auth_type = default_auth_type
    raw_type = get("AUTH_TYPE")
    if raw_type:
        try:
            auth_type = AuthType(raw_type.strip().lower())
        except ValueError:
            logger.warning(f"[{system_name}] 无效的 {prefix}_AUTH_TYPE: {raw_type}，使用 {default_auth_type.value}")

    return SystemInstance(
        id=instance_id,
        system_name=system_name,
        display_name=display_name,
        base_url=get("URL") or fallback_url,
        is_active=_truthy(get("ENABLED")),
        auth=_auth_from_env(auth_type, get, api_key_header),
        ssl=ssl or SslConfig(),
        rate_limit=rate_limit or RateLimitConfig(),
        tags=list(tags),
    )


# ── 合并 ──────────────────────────────────────────────

def deep_merge_dict(base: dict, update: dict) -> dict:
    """Deep merge two dictionaries; lists and scalars in `update` win."""
    for k, v in update.items():
        if isinstance(v, dict) and k in base and isinstance(base[k], dict):
            base[k] = deep_merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def merge_instance(base: SystemInstance, override: Dict[str, Any]) -> SystemInstance:
    """把显式配置 (或管理员修改) 叠加到已有实例上。id 与 system_name 不可修改。"""
    merged = deep_merge_dict(base.model_dump(mode="json"), copy.deepcopy(
        {k: v for k, v in override.items() if k not in ("id", "system_name", "auth", "auth_type", "auth_config")}
    ))
    if "auth" in override or "auth_type" in override:
        # 鉴权类型可能改变，整体替换而不是合并，避免出现 bearer + username 这种组合
        merged.pop("auth", None)
        for key in ("auth", "auth_type", "auth_config"):
            if key in override:
                merged[key] = copy.deepcopy(override[key])
    return SystemInstance.model_validate(merged)


def resolve_instances(
    system_name: str,
    fallbacks: Iterable[SystemInstance],
    config: Optional[AppConfig],
) -> List[SystemInstance]:
    """合并环境默认实例与 YAML 中的显式实例 (按 id)。"""
    resolved: Dict[str, SystemInstance] = {inst.id: inst for inst in fallbacks}
    system = config.get_system(system_name) if config else None
    if system:
        for raw in system.instances:
            instance_id = raw.get("id")
            if not instance_id:
                logger.warning(f"[{system_name}] 忽略缺少 id 的实例配置")
                continue
            if instance_id in resolved:
                resolved[instance_id] = merge_instance(resolved[instance_id], raw)
            else:
                resolved[instance_id] = SystemInstance.model_validate({**raw, "system_name": system_name})
    return list(resolved.values())


# ── Loading ───────────────────────────────────────────

_CONFIG_SEARCH_PATHS = [
    "config/config.yaml",
    "config.yaml",
]


def hub_root() -> Path:
    return Path(os.getenv("CONNECTOR_HUB_ROOT", "."))


def find_config_root() -> Path:
    """Find the root config file or directory."""
    base = hub_root()
    config_dir = base / "config"
    if config_dir.is_dir():
        return config_dir

    for p in _CONFIG_SEARCH_PATHS:
        path = base / p
        if path.exists():
            return path

    # 不存在时返回 config 目录路径，加载结果为空配置
    return config_dir


def load_all_yamls(root: Path) -> dict:
    """Load and merge all YAML files under root."""
    combined: Dict[str, Any] = {"systems": {}, "settings": {}}

    files: List[Path] = []
    if root.is_file():
        files.append(root)
    elif root.is_dir():
        files.extend(root.glob("**/*.yaml"))
        files.extend(root.glob("**/*.yml"))
        files.sort()

    for f in files:
        try:
            with open(f, "r", encoding="utf-8") as fp:
                content = yaml.safe_load(fp)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"加载配置文件失败 {f}: {e}")
            continue
        if not content:
            continue

        for name, system in (content.get("systems") or {}).items():
            entry = combined["systems"].setdefault(name, {"instances": []})
            entry["instances"].extend((system or {}).get("instances") or [])
        if content.get("settings"):
            deep_merge_dict(combined["settings"], content["settings"])

    return combined


def load_config(path: Optional[str | Path] = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    """
    Load, merge, and resolve configuration from YAML files.
    """
    if path is None:
        path = find_config_root()
    path = Path(path)

    raw = resolve_env(load_all_yamls(path), environ)
    return AppConfig.model_validate(raw)
