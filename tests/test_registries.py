import pytest

from jobengine.v1.core.registries import FunctionHandler, JobRegistry, Registry


class MockHandler:
    async def handle(self, job):
        return {"handled": job}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.has("test_impl") is True
    assert registry.list() == ["test_impl"]

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_overwrites_implementation():
    """Test that registering the same name overwrites previous implementation."""
    registry = Registry[str]("Test")

    registry.register("same_name", "first_value")
    registry.register("same_name", "second_value")

    assert registry.get("same_name") == "second_value"
    assert registry.list() == ["same_name"]  # Only one entry


def test_frozen_registry_rejects_registration():
    registry = Registry[str]("Test")
    registry.register("before", "value")
    registry.freeze()

    assert registry.is_frozen() is True
    with pytest.raises(RuntimeError, match="frozen"):
        registry.register("after", "value")
    assert registry.get("before") == "value"


async def test_job_registry_keeps_handler_objects():
    registry = JobRegistry()
    handler = MockHandler()

    registry.register("send-email", handler)

    assert registry.get("send-email") is handler
    assert await registry.get("send-email").handle("j1") == {"handled": "j1"}


async def test_job_registry_wraps_plain_functions():
    registry = JobRegistry()

    async def send_email(job):
        return f"sent {job}"

    registry.register("send-email", send_email)

    wrapped = registry.get("send-email")
    assert isinstance(wrapped, FunctionHandler)
    assert await wrapped.handle("j1") == "sent j1"


def test_job_registry_rejects_non_callables():
    registry = JobRegistry()

    with pytest.raises(TypeError, match="must be callable"):
        registry.register("broken", 42)
