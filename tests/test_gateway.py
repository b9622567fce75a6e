import asyncio

import httpx

from fakes import DemoConnector, reply
from hub.config_loader import HubSettings
from hub.errors import ErrorKind
from hub.gateway import QueryGateway, render_query
from hub.rate_limit import RateLimiter
from hub.registry import Registry


def test_bearer_health_query_succeeds(upstream, demo_registry):
    upstream.route("GET", "/health", reply(json={"version": "9.1"}))
    gateway = QueryGateway(demo_registry())

    result = asyncio.run(gateway.run("demo", "demo-1", "/health", "GET"))

    assert result.success is True
    assert result.data == {"version": "9.1"}
    assert result.error is None
    assert result.metadata.system_name == "demo"
    assert result.metadata.record_count == 1
    request = upstream.requests[0]
    assert request.headers["Authorization"] == "Bearer abc"
    assert str(request.url) == "https://demo.test/health"


def test_missing_identifiers_are_input_errors(upstream, demo_registry):
    gateway = QueryGateway(demo_registry())
    for args in [("", "demo-1", "/health"), ("demo", "", "/health"), ("demo", "demo-1", ""), ("demo", "demo-1", "  ")]:
        result = asyncio.run(gateway.run(*args))
        assert result.success is False
        assert result.error.kind == ErrorKind.INPUT_ERROR
    assert upstream.requests == []


def test_unknown_connector_and_instance(upstream, demo_registry):
    gateway = QueryGateway(demo_registry())

    unknown_system = asyncio.run(gateway.run("servicenow", "sn-1", "/api"))
    assert unknown_system.error.kind == ErrorKind.INPUT_ERROR
    assert "servicenow" in unknown_system.error.message

    unknown_instance = asyncio.run(gateway.run("demo", "nope", "/health"))
    assert unknown_instance.error.kind == ErrorKind.INSTANCE_NOT_FOUND
    assert "nope" in unknown_instance.error.message
    assert upstream.requests == []


def test_inactive_instance_names_the_flag(upstream, demo_registry):
    gateway = QueryGateway(demo_registry())
    result = asyncio.run(gateway.run("demo", "demo-off", "/health"))
    assert result.error.kind == ErrorKind.INSTANCE_INACTIVE
    assert "is_active" in result.error.message
    assert "DEMO_ENABLED" in result.error.message
    assert upstream.requests == []


def test_system_name_lookup_is_case_insensitive(upstream, demo_registry):
    upstream.route("GET", "/health", reply(json={"ok": True}))
    gateway = QueryGateway(demo_registry())
    assert asyncio.run(gateway.run("DEMO", "demo-1", "/health")).success


def test_error_kinds_are_preserved(upstream, demo_registry):
    upstream.route("GET", "/login", reply(text="<html><title>Login</title></html>",
                                                     headers={"content-type": "text/html"}))
    upstream.route("GET", "/broken", reply(status=503, json={"message": "maintenance"}))
    gateway = QueryGateway(demo_registry())

    login = asyncio.run(gateway.run("demo", "demo-1", "/login"))
    assert login.error.kind == ErrorKind.AUTHENTICATION_FAILURE
    assert login.error.status_code == 200
    assert login.error.excerpt

    broken = asyncio.run(gateway.run("demo", "demo-1", "/broken"))
    assert broken.error.kind == ErrorKind.UPSTREAM_API_ERROR
    assert broken.error.status_code == 503


def test_transport_failure_kind(make_instance):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    registry = Registry()
    registry.register(DemoConnector([make_instance()], transport=httpx.MockTransport(handler)))
    result = asyncio.run(QueryGateway(registry).run("demo", "demo-1", "/health"))
    assert result.error.kind == ErrorKind.TRANSPORT_ERROR


def test_mapping_and_data_path(upstream, demo_registry):
    upstream.route("GET", "/rest/items", reply(json={"data": {"items": [
        {"name": "a", "state": "up"}, {"name": "b", "state": "down"},
    ]}}))
    gateway = QueryGateway(demo_registry())
    result = asyncio.run(gateway.run(
        "demo", "demo-1", "/rest/items",
        mapping=[{"source_field": "state", "target_field": "status"}],
        data_path="$.data.items",
    ))
    assert result.data == [{"name": "a", "status": "up"}, {"name": "b", "status": "down"}]
    assert result.metadata.record_count == 2


def test_params_are_rendered_into_query(upstream, demo_registry):
    upstream.route("GET", "/rest/vcenter/vm/vm-42", reply(json={"name": "db"}))
    gateway = QueryGateway(demo_registry())
    result = asyncio.run(gateway.run("demo", "demo-1", "/rest/vcenter/vm/{vmId}", params={"vmId": "vm-42"}))
    assert result.success


def test_render_query():
    assert render_query("/orgs/{orgKey}/devices", {"orgKey": "ACME"}) == "/orgs/ACME/devices"
    assert render_query("project = {{ project }}", {"project": "OPS"}) == "project = OPS"
    assert render_query("/orgs/{orgKey}/{other}", {"orgKey": "A"}) == "/orgs/A/{other}"
    assert render_query('{"endpoint": "/x"}', {"endpoint": "y"}) == '{"endpoint": "/x"}'


def test_rate_limit_enforced(upstream, make_instance, demo_registry):
    upstream.route("GET", "/health", reply(json={}))
    registry = demo_registry(make_instance(rate_limit={"requests_per_minute": 60, "burst_size": 2}))
    gateway = QueryGateway(registry, rate_limiter=RateLimiter(clock=lambda: 0.0))

    results = [asyncio.run(gateway.run("demo", "demo-1", "/health")) for _ in range(3)]
    assert [r.success for r in results] == [True, True, False]
    assert results[2].error.kind == ErrorKind.RATE_LIMITED
    assert len(upstream.requests) == 2

    unlimited = QueryGateway(registry, HubSettings(enforce_rate_limits=False), RateLimiter(clock=lambda: 0.0))
    assert all(asyncio.run(unlimited.run("demo", "demo-1", "/health")).success for _ in range(3))


def test_test_connection_and_last_sync(upstream, demo_registry):
    upstream.route("GET", "/health", reply(json={"version": "9.1"}))
    gateway = QueryGateway(demo_registry())
    assert gateway.last_sync("demo", "demo-1") is None

    result = asyncio.run(gateway.test_connection("demo", "demo-1"))
    assert result.success
    assert upstream.requests[0].url.path == "/health"
    assert gateway.last_sync("Demo", "demo-1")["status"] == "success"


def test_health_all_counts_disabled_instances(upstream, demo_registry):
    upstream.route("GET", "/health", reply(json={"version": "9.1"}))
    report = asyncio.run(QueryGateway(demo_registry()).health_all())
    assert report["summary"] == {"total": 2, "healthy": 1, "unhealthy": 0, "disabled": 1}
    assert len(upstream.requests) == 1


def test_malformed_mapping_or_aggregations_are_input_errors(upstream, demo_registry):
    gateway = QueryGateway(demo_registry())

    bad_mapping = asyncio.run(gateway.run("demo", "demo-1", "/health", mapping=[{"source": "a"}]))
    assert bad_mapping.success is False
    assert bad_mapping.error.kind == ErrorKind.INPUT_ERROR
    assert "mapping" in bad_mapping.error.message

    bad_aggregations = asyncio.run(gateway.run("demo", "demo-1", "/health", aggregations={"metrics": [{"field": "x"}]}))
    assert bad_aggregations.error.kind == ErrorKind.INPUT_ERROR
    assert upstream.requests == []
