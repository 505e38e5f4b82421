import logging
import random
import string

from pydantic import ValidationError

from ..models.schemas import FixedMealConfig, Kitchen, MealSlotConfig, OpResult
from ..utils.location import normalize_address, normalize_location
from .errors import KitchenConfigError, StoreError, TiffinError
from .slot_clock import is_valid_hhmm
from .store import SERVER_TIMESTAMP, join_path

logger = logging.getLogger(__name__)

KITCHENS = 'kitchens'
USERS = 'users'

DABBA_SLOTS = {
    'lunch': {'active': True, 'start': '07:00', 'end': '13:00', 'label': 'Lunch'},
    'dinner': {'active': True, 'start': '16:00', 'end': '21:00', 'label': 'Dinner'},
}
CANTEEN_SLOTS = {
    'breakfast': {'active': True, 'start': '07:00', 'end': '11:00', 'label': 'Breakfast'},
    'lunch': {'active': True, 'start': '11:00', 'end': '15:00', 'label': 'Lunch'},
    'snacks': {'active': True, 'start': '15:00', 'end': '19:00', 'label': 'Snacks'},
}
DEFAULT_MEAL_CONFIG = {
    'variants': [
        {'id': 'v1', 'label': 'Half Dabba', 'quantities': {'roti': 4}, 'base_price': 50},
        {'id': 'v2', 'label': 'Full Dabba', 'quantities': {'roti': 6}, 'base_price': 80},
    ],
    'optional_components': [
        {'id': 'c1', 'name': 'Dal Rice', 'price': 20, 'enabled': True, 'allow_quantity': False},
        {'id': 'c2', 'name': 'Extra Roti', 'price': 5, 'enabled': True, 'allow_quantity': True},
    ],
}


def generate_join_code():
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))


def _parse_kitchen(doc):
    try:
        return Kitchen.model_validate(doc)
    except ValidationError as e:
        raise StoreError(f'Malformed kitchen document: {e.errors()[0]["msg"]}') from e


def validate_slots(slots):
    """Coerce and check a slot mapping. Slots may not run past midnight."""
    checked = {}
    for slot_id, cfg in slots.items():
        try:
            cfg = cfg if isinstance(cfg, MealSlotConfig) else MealSlotConfig.model_validate(cfg)
        except ValidationError as e:
            raise KitchenConfigError(f'{slot_id}: {e.errors()[0]["msg"]}') from e
        for value in (cfg.start, cfg.end):
            if not is_valid_hhmm(value):
                raise KitchenConfigError(f'{slot_id}: {value!r} is not a zero-padded HH:MM time')
        if cfg.end < cfg.start:
            raise KitchenConfigError(f'{slot_id}: ends at {cfg.end} before it starts at {cfg.start}')
        checked[slot_id] = cfg
    return checked


async def create_kitchen(store, owner_id, name, kitchen_type='DABBA', address=None, theme_color=None):
    slots = DABBA_SLOTS if kitchen_type == 'DABBA' else CANTEEN_SLOTS
    doc = {
        'owner_id': owner_id,
        'name': name.strip(),
        'kitchen_type': kitchen_type,
        'join_code': generate_join_code(),
        'status': 'active',
        'address': normalize_address(address),
        'meal_slots': {k: dict(v) for k, v in slots.items()},
        'fixed_meal_config': FixedMealConfig.model_validate(DEFAULT_MEAL_CONFIG).model_dump(mode='json'),
        'theme_color': theme_color,
        'created_at': SERVER_TIMESTAMP,
    }
    try:
        kitchen_id = await store.create(KITCHENS, doc)
        await store.set(join_path(USERS, owner_id), {'current_kitchen_id': kitchen_id}, merge=True)
    except TiffinError as e:
        logger.error('Error creating kitchen: %s', e)
        return OpResult.fail(e)
    logger.info('Kitchen %s created for owner %s', kitchen_id, owner_id)
    return OpResult.ok(kitchen_id)


async def get_kitchen(store, kitchen_id):
    """The kitchen, or None if it does not exist. Raises StoreError."""
    doc = await store.get_one(join_path(KITCHENS, kitchen_id))
    return _parse_kitchen(doc) if doc is not None else None


async def update_meal_slots(store, kitchen_id, slots):
    try:
        checked = validate_slots(slots)
        await store.update(join_path(KITCHENS, kitchen_id), {
            'meal_slots': {k: v.model_dump(mode='json') for k, v in checked.items()},
            'updated_at': SERVER_TIMESTAMP,
        })
    except KitchenConfigError as e:
        logger.warning('Rejected slot config for kitchen %s: %s', kitchen_id, e)
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error updating kitchen: %s', e)
        return OpResult.fail(e)
    return OpResult.ok(kitchen_id)


async def join_kitchen(store, user_id, join_code):
    try:
        found = await store.get(KITCHENS, [('join_code', '==', join_code.strip().upper())])
        if not found:
            return OpResult.fail(KitchenConfigError('Invalid kitchen code'))
        kitchen_id = found[0]['id']
        user = await store.get_one(join_path(USERS, user_id)) or {}
        joined = list(user.get('joined_kitchens') or [])
        if kitchen_id not in joined:
            joined.append(kitchen_id)
        await store.set(join_path(USERS, user_id), {
            'joined_kitchens': joined,
            'current_kitchen_id': kitchen_id,
        }, merge=True)
    except TiffinError as e:
        logger.error('Error joining kitchen: %s', e)
        return OpResult.fail(e)
    return OpResult.ok(kitchen_id)


async def get_kitchen_students(store, kitchen_id):
    """Users who joined the kitchen. Raises StoreError."""
    return await store.get(USERS, [('joined_kitchens', 'array-contains', kitchen_id)])


async def find_kitchens(store, city=None, text=''):
    """Active kitchens, narrowed by canonical city and/or a free-text filter. Raises StoreError."""
    kitchens = [_parse_kitchen(d) for d in await store.get(KITCHENS, [('status', '==', 'active')])]
    if city:
        wanted = normalize_location(city)
        kitchens = [k for k in kitchens if k.address.city == wanted]
    needle = (text or '').strip().lower()
    if needle:
        def haystack(k):
            a = k.address
            return [k.name, a.city_display, a.pin_code, a.line1, a.locality]
        kitchens = [k for k in kitchens if any(needle in (v or '').lower() for v in haystack(k))]
    return kitchens
