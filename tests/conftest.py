import os
import sys
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("INIT_DB_ON_STARTUP", "false")
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from fakes import FakeShopifyAdmin, InMemoryRegistry
from services.bundle_store import BundleStore
from services.listing import FullScanLister


@pytest.fixture
def admin():
    return FakeShopifyAdmin()


@pytest.fixture
def store(admin):
    # Small pages so listing walks several cursors.
    return BundleStore(admin, lister=FullScanLister(admin, page_size=4))


@pytest.fixture
def registry():
    return InMemoryRegistry({"demo-shop.myshopify.com": "gid://shopify/CartTransform/1"})
