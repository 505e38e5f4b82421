import argparse
import asyncio
import logging
from datetime import datetime

from tiffin_app.models.schemas import OrderDraft
from tiffin_app.services.db import LOG_LEVEL
from tiffin_app.services.khata_service import get_student_balance, record_cash_payment, submit_payment
from tiffin_app.services.kitchen_service import create_kitchen, get_kitchen
from tiffin_app.services.memory_store import InMemoryDocumentStore
from tiffin_app.services.menu_service import save_menu
from tiffin_app.services.order_service import place_manual_order, place_order, update_order_status
from tiffin_app.services.slot_clock import effective_meal_slot, effective_menu_date_key

logger = logging.getLogger('seed_data')


def open_store(memory):
    if memory:
        return InMemoryDocumentStore()
    from tiffin_app.services.mongo_store import MongoDocumentStore
    return MongoDocumentStore()


async def seed(store):
    if hasattr(store, 'ensure_indexes'):
        await store.ensure_indexes()

    res = await create_kitchen(store, 'owner-1', 'Annapurna Tiffins', 'DABBA',
                               {'city': 'Thane', 'state': 'Maharashtra', 'pin_code': '400601'})
    if not res.success:
        raise RuntimeError(res.error)
    kitchen = await get_kitchen(store, res.id)

    now = datetime.now()
    date_key = effective_menu_date_key(kitchen, now)
    slot = effective_meal_slot(kitchen, now) or 'lunch'
    await save_menu(store, kitchen.id, date_key, {slot: {
        'status': 'SET',
        'type': 'ROTI_SABZI',
        'roti_sabzi': {
            'base_dish': 'Aloo Gobi',
            'variants': [{'label': 'Half Dabba', 'price': 50}, {'label': 'Full Dabba', 'price': 80}],
            'free_addons': ['Salad'],
        },
        'extras': [{'name': 'Extra Roti', 'price': 5}],
    }})

    draft = OrderDraft(
        user_id='stu-1',
        user_display_name='Ramesh',
        slot=slot,
        main_item='Full Dabba',
        quantity=2,
        components_snapshot=[{'name': 'Extra Roti', 'quantity': 2, 'price': 5}],
        total_amount=170,
    )
    placed = await place_order(store, kitchen, draft, now=now)
    await update_order_status(store, kitchen.id, placed.id, 'CONFIRMED')
    await place_manual_order(store, kitchen, draft.model_copy(update={
        'user_id': None, 'phone_number': '9999999999', 'quantity': 1, 'total_amount': 80,
        'components_snapshot': [],
    }), recorded_by='owner-1', now=now)

    await record_cash_payment(store, kitchen.id, 'stu-1', 100, recorded_by='owner-1')
    await submit_payment(store, kitchen.id, 'stu-1', 50, 'UPI')

    khata = await get_student_balance(store, kitchen.id, 'stu-1')
    logger.info('Seeded kitchen id: %s (join code %s)', kitchen.id, kitchen.join_code)
    logger.info('stu-1 owes %.2f (%d pending payment)', khata.balance, len(khata.pending_payments))
    return kitchen.id


def main():
    parser = argparse.ArgumentParser(description='Seed one kitchen with a menu, orders and payments.')
    parser.add_argument('--memory', action='store_true', help='use the in-memory store instead of MongoDB')
    args = parser.parse_args()
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    asyncio.run(seed(open_store(args.memory)))


if __name__ == '__main__':
    main()
