import pytest

from chmanager.config import ConnectionProfile, ToolConfig


@pytest.fixture
def profile():
    return ConnectionProfile(name="local", host="127.0.0.1", port=9000, username="default")


@pytest.fixture
def tool_config(profile):
    return ToolConfig(connections={"local": profile}, default_connection="local", timeout_seconds=30.0)
