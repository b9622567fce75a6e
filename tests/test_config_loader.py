import pytest
from pydantic import ValidationError

from hub.config_loader import (
    AppConfig,
    AuthType,
    SystemConfig,
    SystemInstance,
    env_instance,
    load_config,
    merge_instance,
    resolve_env,
)
from hub.connectors.builtin import build_registry
from hub.connectors.jira import JiraConnector
from hub.connectors.qradar import QRadarConnector


def test_fallback_instance_is_inactive_without_credentials():
    instance = env_instance("jira", "JIRA", "jira-main", "Jira", "https://jira.example.com",
                            default_auth_type=AuthType.BASIC, environ={})
    assert instance.base_url == "https://jira.example.com"
    assert instance.is_active is False
    assert instance.auth.username == "" and instance.auth.password == ""


def test_environment_defaults():
    environ = {
        "JIRA_URL": "https://jira.corp",
        "JIRA_USERNAME": "bot@corp.com",
        "JIRA_API_TOKEN": "atl-token",
        "JIRA_ENABLED": "true",
    }
    [instance] = JiraConnector.default_instances(environ)
    assert instance.id == "jira-main"
    assert instance.base_url == "https://jira.corp"
    assert instance.is_active is True
    assert instance.auth_type == AuthType.BASIC
    # API token 作为 basic 密码
    assert instance.auth.password == "atl-token"
    assert instance.rate_limit.requests_per_minute == 100


def test_environment_auth_type_override():
    [instance] = QRadarConnector.default_instances({"QRADAR_AUTH_TYPE": "bearer", "QRADAR_API_TOKEN": "t"})
    assert instance.auth_type == AuthType.BEARER
    assert instance.auth.token == "t"

    [fallback] = QRadarConnector.default_instances({"QRADAR_AUTH_TYPE": "kerberos"})
    assert fallback.auth_type == AuthType.API_KEY


def test_explicit_config_wins_over_environment():
    environ = {"JIRA_URL": "https://env.jira", "JIRA_USERNAME": "bot", "JIRA_PASSWORD": "pw", "JIRA_ENABLED": "1"}
    config = AppConfig(systems={"jira": SystemConfig(instances=[
        {"id": "jira-main", "base_url": "https://yaml.jira"},
        {"id": "jira-lab", "base_url": "https://lab.jira", "auth": {"type": "bearer", "token": "pat"}},
    ])})
    registry = build_registry(config, environ=environ)
    jira = registry.get("jira")

    main = jira.get_instance("jira-main")
    assert main.base_url == "https://yaml.jira"
    assert main.auth.username == "bot"
    assert main.is_active is True

    lab = jira.get_instance("jira-lab")
    assert lab.system_name == "jira"
    assert lab.auth.token == "pat"


def test_persisted_overrides_apply_last():
    environ = {"JIRA_ENABLED": "true"}
    overrides = [
        {"system_name": "Jira", "instance_id": "jira-main", "changes": {"is_active": False, "tags": ["prod"]}},
        {"system_name": "jira", "instance_id": "ghost", "changes": {"is_active": True}},
    ]
    registry = build_registry(overrides=overrides, environ=environ)
    main = registry.get("jira").get_instance("jira-main")
    assert main.is_active is False
    assert main.tags == ["prod"]
    assert registry.get("jira").get_instance("ghost") is None


def test_flat_auth_shape_is_accepted():
    instance = SystemInstance.model_validate({
        "id": "splunk-main", "system_name": "splunk",
        "auth_type": "bearer", "auth_config": {"token": "abc"},
    })
    assert instance.auth_type == AuthType.BEARER
    assert instance.auth.token == "abc"


def test_invalid_auth_combinations_are_rejected():
    with pytest.raises(ValidationError):
        SystemInstance.model_validate({
            "id": "x", "system_name": "jira",
            "auth": {"type": "bearer", "token": "t", "username": "u", "password": "p"},
        })
    with pytest.raises(ValidationError):
        SystemInstance.model_validate({"id": "x", "system_name": "jira", "auth": {"type": "kerberos"}})


def test_merge_instance_replaces_auth():
    base = SystemInstance.model_validate({
        "id": "a", "system_name": "jira", "auth": {"type": "basic", "username": "u", "password": "p"},
        "ssl": {"reject_unauthorized": False},
    })
    merged = merge_instance(base, {"auth": {"type": "bearer", "token": "t"}, "ssl": {"timeout_ms": 1000}, "id": "b"})
    assert merged.id == "a"
    assert merged.auth_type == AuthType.BEARER
    assert merged.ssl.reject_unauthorized is False
    assert merged.ssl.timeout_ms == 1000


def test_resolve_env():
    environ = {"TOKEN": "abc"}
    assert resolve_env({"a": ["${TOKEN}", "x-${TOKEN}"], "b": 1}, environ) == {"a": ["abc", "x-abc"], "b": 1}
    assert resolve_env("${MISSING}", environ) == ""


def test_load_config_from_directory(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "a.yaml").write_text(
        "systems:\n"
        "  splunk:\n"
        "    instances:\n"
        "      - id: splunk-prod\n"
        "        base_url: https://splunk.corp:8089\n"
        "        auth:\n"
        "          type: bearer\n"
        "          token: ${SPLUNK_PROD_TOKEN}\n"
        "settings:\n"
        "  max_concurrent_refreshes: 4\n",
        encoding="utf-8",
    )
    (config_dir / "b.yml").write_text(
        "systems:\n"
        "  splunk:\n"
        "    instances:\n"
        "      - id: splunk-dev\n"
        "settings:\n"
        "  retain_data_on_error: true\n",
        encoding="utf-8",
    )
    (config_dir / "broken.yaml").write_text("systems: [unclosed\n", encoding="utf-8")

    config = load_config(config_dir, environ={"SPLUNK_PROD_TOKEN": "tok"})
    ids = [i["id"] for i in config.get_system("Splunk").instances]
    assert sorted(ids) == ["splunk-dev", "splunk-prod"]
    prod = next(i for i in config.systems["splunk"].instances if i["id"] == "splunk-prod")
    assert prod["auth"]["token"] == "tok"
    assert config.settings.max_concurrent_refreshes == 4
    assert config.settings.retain_data_on_error is True


def test_load_config_missing_root(tmp_path):
    config = load_config(tmp_path / "nowhere")
    assert config.systems == {}
    assert config.settings.enforce_rate_limits is True
