import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from webvault.storage.page_repository import PageRepository
from webvault.storage.tenant_store import TenantStoreRegistry
from webvault.utils.env_loader import load_environment


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure .env defaults are available for every test."""

    # Clear key variables so tests always use the .env baseline unless they
    # explicitly override values via monkeypatch or a custom env file.
    for key in [
        "DATA_DIR",
        "FETCH_WORKERS",
        "MAX_URLS_PER_BATCH",
        "REQUEST_TIMEOUT",
        "CRAWLER_USER_AGENT",
        "JOB_CACHE_TTL",
        "JOB_SOURCE_TIMEOUT",
        "API_PORT",
        "LOG_LEVEL",
        "WEBVAULT_ENV_FILE",
    ]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def registry(tmp_path):
    registry = TenantStoreRegistry(tmp_path / "stores")
    yield registry
    await registry.close()


@pytest_asyncio.fixture
async def repository(registry):
    handle = await registry.open("chat-1")
    return PageRepository(handle)
