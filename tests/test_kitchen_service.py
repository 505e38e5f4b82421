from datetime import datetime

import pytest

from tiffin_app.services.kitchen_service import (
    create_kitchen,
    find_kitchens,
    get_kitchen,
    get_kitchen_students,
    join_kitchen,
    update_meal_slots,
)
from tiffin_app.services.slot_clock import effective_meal_slot


@pytest.mark.asyncio
async def test_dabba_kitchen_defaults(store):
    res = await create_kitchen(store, 'owner-1', ' Annapurna ', 'DABBA', {'city': ' Thane ', 'state': 'Maharashtra'})
    assert res.success

    kitchen = await get_kitchen(store, res.id)
    assert kitchen.name == 'Annapurna'
    assert set(kitchen.meal_slots) == {'lunch', 'dinner'}
    assert [v.label for v in kitchen.fixed_meal_config.variants] == ['Half Dabba', 'Full Dabba']
    assert kitchen.address.city == 'thane'
    assert kitchen.address.city_display == 'Thane'
    assert len(kitchen.join_code) == 6

    owner = await store.get_one('users/owner-1')
    assert owner['current_kitchen_id'] == res.id


@pytest.mark.asyncio
async def test_canteen_kitchen_defaults(store):
    res = await create_kitchen(store, 'owner-1', 'Campus Canteen', 'CANTEEN')
    kitchen = await get_kitchen(store, res.id)
    assert set(kitchen.meal_slots) == {'breakfast', 'lunch', 'snacks'}


@pytest.mark.asyncio
async def test_missing_kitchen(store):
    assert await get_kitchen(store, 'nope') is None


@pytest.mark.asyncio
async def test_slot_updates_feed_the_slot_clock(store):
    kitchen_id = (await create_kitchen(store, 'owner-1', 'Annapurna')).id
    res = await update_meal_slots(store, kitchen_id, {
        'breakfast': {'active': True, 'start': '08:00', 'end': '11:00'},
        'lunch': {'active': True, 'start': '10:00', 'end': '14:00'},
    })
    assert res.success

    kitchen = await get_kitchen(store, kitchen_id)
    assert effective_meal_slot(kitchen, datetime(2026, 3, 10, 10, 30)) == 'lunch'


@pytest.mark.asyncio
@pytest.mark.parametrize('slot, message', [
    ({'active': True, 'start': '8:00', 'end': '11:00'}, 'zero-padded'),
    ({'active': True, 'start': '22:00', 'end': '02:00'}, 'before it starts'),
    ({'active': 'sometimes', 'start': '08:00', 'end': '11:00'}, 'breakfast'),
])
async def test_bad_slot_config_is_rejected(store, slot, message):
    kitchen_id = (await create_kitchen(store, 'owner-1', 'Annapurna')).id
    res = await update_meal_slots(store, kitchen_id, {'breakfast': slot})
    assert not res.success
    assert res.error_type == 'KitchenConfigError'
    assert message in res.error


@pytest.mark.asyncio
async def test_update_slots_of_unknown_kitchen(store):
    res = await update_meal_slots(store, 'nope', {})
    assert res.error_type == 'NotFoundError'


@pytest.mark.asyncio
async def test_join_with_code(store):
    kitchen_id = (await create_kitchen(store, 'owner-1', 'Annapurna')).id
    code = (await get_kitchen(store, kitchen_id)).join_code

    assert (await join_kitchen(store, 'stu-1', code.lower())).id == kitchen_id
    assert (await join_kitchen(store, 'stu-1', code)).success
    user = await store.get_one('users/stu-1')
    assert user['joined_kitchens'] == [kitchen_id]

    students = await get_kitchen_students(store, kitchen_id)
    assert [s['id'] for s in students] == ['stu-1']

    res = await join_kitchen(store, 'stu-1', 'ZZZZZZ!')
    assert res.error == 'Invalid kitchen code'


@pytest.mark.asyncio
async def test_find_kitchens_by_city_and_text(store):
    await create_kitchen(store, 'o1', 'Annapurna Tiffins', address={'city': 'Thane', 'pin_code': '400601'})
    await create_kitchen(store, 'o2', 'Maa ki Rasoi', address={'city': 'thane '})
    await create_kitchen(store, 'o3', 'Pune Dabba', address={'city': 'Pune'})

    assert {k.name for k in await find_kitchens(store, city='THANE')} == {'Annapurna Tiffins', 'Maa ki Rasoi'}
    assert [k.name for k in await find_kitchens(store, text='4006')] == ['Annapurna Tiffins']
    assert [k.name for k in await find_kitchens(store, city='thane', text='rasoi')] == ['Maa ki Rasoi']
