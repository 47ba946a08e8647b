import os
import sys
from pathlib import Path

# Settings are read at import time; give the test run a usable environment first.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("ACTIVITY_STORE", "memory")
os.environ.setdefault("RECONCILE_INTERVAL_HOURS", "0")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from ggdb.api import activity as activity_api
from ggdb.domain.activity.repository import InMemoryActivityRepository, InMemoryGameRepository
from ggdb.domain.activity.service import ActivityService
from ggdb.infra import postgres
from ggdb.infra.redis import redis_client, set_redis_client
from ggdb.main import app
from ggdb.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id headers, which are only accepted in dev mode."""
	original_env = settings.environment
	original_store = settings.activity_store
	settings.environment = "dev"
	settings.activity_store = "memory"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.activity_store = original_store


@pytest.fixture
def activities():
	return InMemoryActivityRepository()


@pytest.fixture
def games():
	repo = InMemoryGameRepository()
	repo.add_game("g1", "Hollow Knight", cover_image="hk.png", genres=["Metroidvania"], platforms=["PC"])
	repo.add_game("g2", "Celeste", cover_image="celeste.png", genres=["Platformer"], platforms=["PC", "Switch"])
	return repo


@pytest.fixture
def service(activities, games):
	return ActivityService(activities, games)


@pytest.fixture
def api_service(monkeypatch, service):
	monkeypatch.setattr(activity_api, "_service", service)
	return service


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
