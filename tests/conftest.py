import asyncio
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from tiffin_app.models.schemas import Kitchen
from tiffin_app.services.memory_store import InMemoryDocumentStore


class YieldingStore(InMemoryDocumentStore):
    """Hands control to other tasks after every read, like a network round trip."""

    async def get_one(self, doc_path):
        doc = await super().get_one(doc_path)
        await asyncio.sleep(0)
        return doc


@pytest.fixture
def store():
    # every write gets a timestamp one second after the previous one
    start = datetime(2026, 3, 10, 6, 30, tzinfo=timezone.utc)
    ticks = itertools.count()
    return InMemoryDocumentStore(clock=lambda: start + timedelta(seconds=next(ticks)))


@pytest.fixture
def yielding_store():
    return YieldingStore()


@pytest.fixture
def make_kitchen():
    def build(slots, kitchen_id='k1'):
        return Kitchen(id=kitchen_id, name='Annapurna Tiffins', meal_slots=slots)
    return build


@pytest.fixture
def lunch_kitchen(make_kitchen):
    return make_kitchen({'lunch': {'active': True, 'start': '12:00', 'end': '15:00'}})


@pytest.fixture
def dabba_kitchen(make_kitchen):
    return make_kitchen({
        'lunch': {'active': True, 'start': '07:00', 'end': '13:00'},
        'dinner': {'active': True, 'start': '16:00', 'end': '21:00'},
    })


@pytest.fixture
def full_dabba():
    return {
        'user_id': 'stu-1',
        'user_display_name': 'Riya',
        'slot': 'lunch',
        'type': 'ROTI_SABZI',
        'variant': 'full',
        'main_item': 'Full Dabba',
        'quantity': 2,
        'components_snapshot': [{'name': 'Roti', 'quantity': 1, 'price': 5}],
        'total_amount': 160,
    }
