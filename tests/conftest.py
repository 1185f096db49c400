import pytest
from fastapi.testclient import TestClient
from lenny_listens.config import Settings
from lenny_listens.deps import build_services
from lenny_listens.errors import UpstreamError
from lenny_listens.main import create_app
from lenny_listens.models import GenerationResult
from lenny_listens.services.dispatcher import Dispatcher, GenerationStrategy
from lenny_listens.services.kv_store import SqlKVStore

PREVIEW = "https://pv.getperspective.ai/share/abc?mode=preview"
SHARE = "https://getperspective.ai/share/abc"

class FakeStrategy(GenerationStrategy):
    """Records prompts; returns a canned result or raises the configured error."""
    name = "fake"

    def __init__(self, settings, result=None, error=None):
        super().__init__(settings)
        self.result = result or GenerationResult(perspective_id="6650c0ffee6650c0ffee6650",
                                                 preview_url=PREVIEW, share_url=SHARE)
        self.error = error
        self.calls = []

    async def generate(self, prompt, intake):
        self.calls.append((prompt, intake))
        if self.error:
            raise self.error
        return self.result

@pytest.fixture
def anyio_backend():
    return "asyncio"

@pytest.fixture
def settings(tmp_path):
    return Settings(_env_file=None, PERSPECTIVE_API_TOKEN="test-token",
                    DB_URL=f"sqlite:///{tmp_path}/kv.db", KV_BACKEND="sql")

@pytest.fixture
def store(settings):
    s = SqlKVStore(settings.DB_URL)
    s.init_db()
    return s

@pytest.fixture
def strategy(settings):
    return FakeStrategy(settings)

@pytest.fixture
def failing_strategy(settings):
    return FakeStrategy(settings, error=UpstreamError("Perspective API error 500: boom", 500))

@pytest.fixture
def client_for(settings, store):
    def make(strategy, **overrides):
        conf = settings.model_copy(update=overrides)
        services = build_services(conf, store=store, dispatcher=Dispatcher(strategy),
                                  generator=Dispatcher(strategy))
        return TestClient(create_app(conf, services))
    return make

@pytest.fixture
def client(client_for, strategy):
    return client_for(strategy)
