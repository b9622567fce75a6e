import pytest

from fakes import DemoConnector, FakeUpstream
from hub.config_loader import SystemInstance
from hub.registry import Registry


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_instance():
    def _make(system_name: str = "demo", instance_id: str = "demo-1", **kwargs) -> SystemInstance:
        data = {
            "id": instance_id,
            "system_name": system_name,
            "display_name": f"{system_name} test",
            "base_url": f"https://{system_name}.test",
        }
        data.update(kwargs)
        return SystemInstance.model_validate(data)
    return _make


@pytest.fixture
def demo_registry(upstream, make_instance):
    """A frozen registry with one active bearer instance and one disabled instance."""
    def _build(*instances: SystemInstance) -> Registry:
        if not instances:
            instances = (
                make_instance(auth={"type": "bearer", "token": "abc"}),
                make_instance(instance_id="demo-off", is_active=False),
            )
        registry = Registry()
        registry.register(DemoConnector(instances, transport=upstream.transport))
        registry.freeze()
        return registry
    return _build
