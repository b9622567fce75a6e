import base64

from hub.auth.headers import DEFAULT_TIMEOUT_MS, build_headers, build_transport_options


def test_build_headers_is_pure(make_instance):
    instance = make_instance(auth={"type": "basic", "username": "alice", "password": "s3cret"})
    assert build_headers(instance) == build_headers(instance)


def test_basic_header_decodes_to_credentials(make_instance):
    for username, password in [("alice", "s3cret"), ("svc@corp.com", "p:a:ss"), ("用户", "密码")]:
        instance = make_instance(auth={"type": "basic", "username": username, "password": password})
        header = build_headers(instance)["Authorization"]
        assert header.startswith("Basic ")
        decoded = base64.b64decode(header[len("Basic "):]).decode("utf-8")
        assert decoded == f"{username}:{password}"


def test_missing_credentials_send_without_auth(make_instance):
    assert build_headers(make_instance(auth={"type": "basic", "username": "alice"})) == {}
    assert build_headers(make_instance(auth={"type": "bearer"})) == {}
    assert build_headers(make_instance(auth={"type": "api_key"})) == {}
    assert build_headers(make_instance(auth={"type": "oauth", "client_id": "x"})) == {}
    assert build_headers(make_instance()) == {}


def test_bearer_header(make_instance):
    instance = make_instance(auth={"type": "bearer", "token": "abc"})
    assert build_headers(instance) == {"Authorization": "Bearer abc"}


def test_api_key_header_name(make_instance):
    explicit = make_instance(auth={"type": "api_key", "key": "k1", "header": "X-Custom"})
    assert build_headers(explicit, "X-API-Key") == {"X-Custom": "k1"}

    by_convention = make_instance(auth={"type": "api_key", "key": "k1"})
    assert build_headers(by_convention, "X-API-Key") == {"X-API-Key": "k1"}
    assert build_headers(by_convention) == {"Authorization": "k1"}


def test_custom_headers_copied_verbatim(make_instance):
    headers = {"X-Tenant": "acme", "Cookie": "session=1"}
    instance = make_instance(auth={"type": "custom", "custom_headers": headers})
    assert build_headers(instance) == headers


def test_oauth_uses_stored_access_token(make_instance):
    instance = make_instance(auth={"type": "oauth", "access_token": "tok"})
    assert build_headers(instance) == {"Authorization": "Bearer tok"}


def test_transport_options_defaults(make_instance):
    options = build_transport_options(make_instance())
    assert options.verify is True
    assert options.timeout_ms == DEFAULT_TIMEOUT_MS == 30000
    assert options.timeout_seconds == 30.0


def test_transport_options_tls_and_timeout(make_instance):
    assert build_transport_options(make_instance(ssl={"reject_unauthorized": False})).verify is False
    assert build_transport_options(make_instance(ssl={"allow_self_signed": True})).verify is False
    assert build_transport_options(make_instance(ssl={"timeout_ms": 5000})).timeout_ms == 5000
    # 实例未配置时使用全局默认值
    assert build_transport_options(make_instance(), default_timeout_ms=1234).timeout_ms == 1234
