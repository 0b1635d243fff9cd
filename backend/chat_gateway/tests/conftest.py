import os

# Must be set before the application settings are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["STREAM_SMOOTHING_DELAY_MS"] = "0"
os.environ.pop("REDIS_URL", None)

from collections.abc import Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from chat_gateway.api.deps import get_stream_context  # noqa: E402
from chat_gateway.core.db import engine, init_db  # noqa: E402
from chat_gateway.main import app  # noqa: E402
from chat_gateway.providers.registry import ModelRegistry, get_registry  # noqa: E402
from chat_gateway.services.identity import clear_identity_cache  # noqa: E402
from chat_gateway.services.resumable import StreamContextHandle  # noqa: E402
from chat_gateway.tests.utils.utils import ScriptedProvider, make_registry  # noqa: E402
from chat_gateway.utils.rate_limit import reset_limiters  # noqa: E402


@pytest.fixture(autouse=True)
def db() -> Generator[Session, None, None]:
    init_db()
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)
    clear_identity_cache()
    reset_limiters()


@pytest.fixture
def registry() -> ModelRegistry:
    return make_registry(ScriptedProvider(["Hello ", "world"]))


@pytest.fixture
def stream_handle() -> StreamContextHandle:
    return StreamContextHandle(None)


@pytest.fixture
def client(registry: ModelRegistry, stream_handle: StreamContextHandle) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_stream_context] = lambda: stream_handle
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
