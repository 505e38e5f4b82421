import logging

from pydantic import ValidationError

from ..models.schemas import Menu, MenuSlot, MenuSlotStatus, OpResult
from .errors import MenuValidationError, StoreError, TiffinError
from .store import SERVER_TIMESTAMP, join_path

logger = logging.getLogger(__name__)


def menus_path(kitchen_id):
    return join_path('kitchens', kitchen_id, 'menus')


def _parse_menu(doc):
    try:
        return Menu.model_validate(doc)
    except ValidationError as e:
        raise StoreError(f'Malformed menu document: {e.errors()[0]["msg"]}') from e


async def save_menu(store, kitchen_id, date_id, items):
    """
    Write the menu for one business date. ``items`` maps slot id to MenuSlot;
    slots not mentioned keep whatever was saved for them earlier.
    """
    bad = [slot_id for slot_id in items if not slot_id or '.' in slot_id or slot_id.startswith('$')]
    if bad:
        return OpResult.fail(MenuValidationError(f'Invalid slot id: {bad[0]!r}'))
    try:
        slots = {
            slot_id: (slot if isinstance(slot, MenuSlot) else MenuSlot.model_validate(slot)).model_dump(mode='json')
            for slot_id, slot in items.items()
        }
    except ValidationError as e:
        return OpResult.fail(MenuValidationError(f'Invalid menu: {e.errors()[0]["msg"]}'))
    doc = {'date_id': date_id, 'updated_at': SERVER_TIMESTAMP}
    doc.update({f'items.{slot_id}': slot for slot_id, slot in slots.items()})
    try:
        await store.set(join_path(menus_path(kitchen_id), date_id), doc, merge=True)
    except TiffinError as e:
        logger.error('Error saving menu: %s', e)
        return OpResult.fail(e)
    logger.info('Menu saved for kitchen %s on %s', kitchen_id, date_id)
    return OpResult.ok(date_id)


async def get_menu(store, kitchen_id, date_id):
    """Menu for the date, or None when the admin has not set one. Raises StoreError."""
    doc = await store.get_one(join_path(menus_path(kitchen_id), date_id))
    if doc is None:
        return None
    return _parse_menu(doc)


def subscribe_to_menu(store, kitchen_id, date_id, on_change, on_error=None):
    def handle(docs):
        try:
            menu = _parse_menu(docs[0]) if docs else None
        except StoreError as e:
            logger.error('Menu subscription error: %s', e)
            if on_error:
                on_error(str(e))
            return
        on_change(menu)

    return store.subscribe(menus_path(kitchen_id), [('date_id', '==', date_id)], None, handle, on_error)


def is_slot_orderable(menu, slot_id):
    if menu is None:
        return False
    slot = menu.items.get(slot_id)
    return slot is not None and slot.status == MenuSlotStatus.SET
