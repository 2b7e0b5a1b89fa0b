"""Shared fixtures: a temporary SQLite product DB, a fake scraper and an engine."""

import asyncio

import pytest
import pytest_asyncio

from vendorsync.adapters import AdapterRegistry
from vendorsync.config import SyncConfig
from vendorsync.db import Database
from vendorsync.engine import SyncEngine
from vendorsync.fetcher import Fetcher
from vendorsync.registry import VendorRegistry

SCRAPER_PATH = "/opt/scrapers/acme"


def make_items(count, price=1000, prefix="SKU"):
    return [
        {
            "sku": f"{prefix}-{i:03d}",
            "name": f"Frame {i}",
            "category": "Frames",
            "price": price,
            "currency": "EUR",
            "attributes": {"color": "black"},
        }
        for i in range(count)
    ]


def passthrough(raw):
    return raw["items"]


class FakeInvoker:
    """ScraperInvoker returning canned payloads (or raising) per scraper path."""

    def __init__(self):
        self.payloads = {}
        self.calls = []

    async def invoke(self, path, timeout):
        self.calls.append((path, timeout))
        value = self.payloads[path]
        if isinstance(value, BaseException):
            raise value
        return value


class BlockingInvoker:
    """ScraperInvoker that waits until released (or cancelled)."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def invoke(self, path, timeout):
        self.started.set()
        await self.release.wait()
        return {"items": []}


@pytest.fixture
def config(tmp_path):
    return SyncConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'vendorsync.db'}",
        scraper_workdir=str(tmp_path),
        fetch_timeout_sec=5,
        apply_timeout_sec=5,
        max_parallel_runs=1,
        vendor_timeouts={},
    )


@pytest_asyncio.fixture
async def db(config):
    database = Database(config.database_url)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def adapters():
    registry = AdapterRegistry()
    registry.register("acme", passthrough)
    return registry


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def vendors(db):
    return VendorRegistry(db)


@pytest_asyncio.fixture
async def acme(vendors):
    return await vendors.create_vendor("acme", "Acme Optics", {"scraperPath": SCRAPER_PATH})


@pytest.fixture
def engine(db, config, adapters, invoker):
    return SyncEngine(db, adapters=adapters, config=config, fetcher=Fetcher(invoker))
