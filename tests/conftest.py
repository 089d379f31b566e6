import sys
from pathlib import Path
import os
import tempfile

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "vetclinic-test.db"))
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "vetclinic-test.log"))

from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vetclinic.db.session import build_engine, init_db
from vetclinic.models.client import Client, Pet
from vetclinic.models.inventory import InventoryItem
from vetclinic.services.notification import NotificationDispatcher


class RecordingSink:
    def __init__(self):
        self.events = []

    async def send(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path, anyio_backend):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'vetclinic.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def notifier(sink):
    return NotificationDispatcher([sink])


@pytest.fixture
async def client(db):
    client = Client(first_name="Jane", last_name="Doe", email="jane@example.com", phone="5551230000")
    db.add(client)
    await db.commit()
    return client


@pytest.fixture
async def pet(db, client):
    pet = Pet(client_id=client.id, name="Rex", species="dog")
    db.add(pet)
    await db.commit()
    return pet


@pytest.fixture
def make_item(db):
    """Insert an inventory item directly, bypassing the ledger."""
    async def _make_item(name="Amoxicillin 250mg", current_stock=10, minimum_stock=2, **kwargs):
        item = InventoryItem(
            name=name,
            current_stock=current_stock,
            minimum_stock=minimum_stock,
            cost_per_unit_cents=kwargs.pop("cost_per_unit_cents", 150),
            selling_price_cents=kwargs.pop("selling_price_cents", 300),
            **kwargs,
        )
        db.add(item)
        await db.commit()
        return item
    return _make_item


def line(description="Consultation", item_type="service", quantity=1, unit_price="50.00",
         tax_rate="20", discount_percentage="0", inventory_item_id=None):
    return {
        "item_type": item_type,
        "description": description,
        "quantity": quantity,
        "unit_price": Decimal(unit_price),
        "tax_rate": Decimal(tax_rate),
        "discount_percentage": Decimal(discount_percentage),
        "inventory_item_id": inventory_item_id,
    }
