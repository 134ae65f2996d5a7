import asyncio
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

from slackgpt.llm.client import CompletionClient

SECRET_VARS = ("SLACK_BOT_TOKEN", "SLACK_APP_TOKEN", "OPENAI_API_KEY", "CHATGPT_KEY")


@pytest.fixture(scope="session")
def _load_env():
    # Load .env once per session, only for tests that ask for real credentials
    load_dotenv()


def _truthy(v: str | None) -> bool:
    return v is not None and v.strip().lower() not in ("", "0", "false", "no")


@pytest.fixture(scope="session")
def allow_integration(_load_env) -> bool:
    return _truthy(os.getenv("RUN_INTEGRATION_TESTS"))


@pytest.fixture(scope="session")
def openai_api_key(_load_env) -> str | None:
    key = os.getenv("OPENAI_API_KEY")
    if not key or key == "sk-...":
        return None
    return key


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """
    Runs the test in an empty directory with no secrets in the environment,
    so neither a developer's .env nor exported tokens leak into Settings.
    """
    for name in SECRET_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def completion_response(*texts):
    """Shape of an OpenAI chat completion response, one choice per text."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=t)) for t in texts]
    )


@pytest.fixture
def fake_openai():
    """An AsyncOpenAI stand-in whose chat.completions.create is an AsyncMock."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion_response("  Hi there  "))
    client.close = AsyncMock()
    return client


@pytest.fixture
def completion(fake_openai):
    return CompletionClient(fake_openai)


@pytest.fixture
def replier():
    fake = MagicMock()
    fake.post_reply = AsyncMock(return_value=None)
    return fake


class FakeApp:
    """Records Bolt listener registrations instead of talking to Slack."""

    def __init__(self):
        self.listeners = {}

    def event(self, event_type):
        def register(fn):
            self.listeners.setdefault(event_type, []).append(fn)
            return fn
        return register


class FakeSocketHandler:
    def __init__(self, connected=True, connect_error=None):
        self.client = SimpleNamespace(is_connected=AsyncMock(return_value=connected))
        self.connect_async = AsyncMock(side_effect=connect_error)
        self.close_async = AsyncMock()


@pytest.fixture
def fake_app():
    return FakeApp()


@pytest.fixture
def socket_handler():
    return FakeSocketHandler()


async def wait_until(predicate, timeout: float = 1.0):
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)
