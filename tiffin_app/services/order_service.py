import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from ..models.schemas import Order, OrderDraft, OrderStatus, OpResult
from .errors import (
    ConflictError,
    InvalidStatusTransition,
    NotFoundError,
    OrderValidationError,
    StoreError,
    TiffinError,
)
from .slot_clock import slot_date_key
from .store import SERVER_TIMESTAMP, join_path

logger = logging.getLogger(__name__)

# early collection can only be requested for this slot
PRIORITY_SLOT = 'lunch'
NEWEST_FIRST = ('created_at', 'desc')
# re-reads allowed when another admin changes a status between read and write
STATUS_WRITE_ATTEMPTS = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def orders_path(kitchen_id):
    return join_path('kitchens', kitchen_id, 'orders')


def newest_first(items):
    """Sort by created_at descending; documents not yet stamped count as newest."""
    return sorted(
        items,
        key=lambda item: (item.created_at is None, item.created_at or _EPOCH),
        reverse=True,
    )


def merge_orders(*groups):
    seen = {}
    for group in groups:
        for order in group:
            seen.setdefault(order.id, order)
    return newest_first(seen.values())


def parse_orders(docs):
    try:
        return [Order.model_validate(d) for d in docs]
    except ValidationError as e:
        raise StoreError(f'Malformed order document: {e.errors()[0]["msg"]}') from e


def _coerce_draft(draft):
    if isinstance(draft, OrderDraft):
        return draft
    try:
        return OrderDraft.model_validate(draft)
    except ValidationError as e:
        err = e.errors()[0]
        field = '.'.join(str(p) for p in err['loc'])
        raise OrderValidationError(f'Invalid order field {field}: {err["msg"]}') from e


def validate_draft(kitchen, draft):
    """Raise OrderValidationError before anything is written."""
    if not kitchen.id:
        raise OrderValidationError('kitchen id is mandatory for all orders')
    if not draft.user_id and not draft.phone_number:
        raise OrderValidationError('An order needs a student account or a phone number')
    if not draft.main_item.strip():
        raise OrderValidationError('Select an item to order')
    if draft.quantity < 1:
        raise OrderValidationError('Quantity must be at least 1')
    if draft.total_amount < 0:
        raise OrderValidationError('Total amount cannot be negative')
    cfg = kitchen.meal_slots.get(draft.slot)
    if cfg is None or not cfg.active:
        raise OrderValidationError(f'{draft.slot} is not open for orders at this kitchen')
    if draft.is_priority and draft.slot != PRIORITY_SLOT:
        raise OrderValidationError('Early collection is only available for lunch')


def check_transition(current: OrderStatus, requested: OrderStatus):
    # forward only: PENDING -> CONFIRMED -> COMPLETED
    if requested.rank < current.rank:
        raise InvalidStatusTransition('order', current.value, requested.value)


async def _write_order(store, kitchen, draft, status, now, extra):
    doc = draft.model_dump(mode='json')
    doc.update(
        kitchen_id=kitchen.id,
        date_id=slot_date_key(draft.slot, kitchen, now or datetime.now()),
        status=status.value,
        payment_method=draft.payment_method or 'wallet',
        created_at=SERVER_TIMESTAMP,
    )
    doc.update(extra)
    return await store.create(orders_path(kitchen.id), doc)


async def place_order(store, kitchen, draft, now=None):
    """Student self-service order. Always starts PENDING."""
    try:
        draft = _coerce_draft(draft)
        validate_draft(kitchen, draft)
        order_id = await _write_order(
            store, kitchen, draft, OrderStatus.PENDING, now, {'payment_status': 'pending'}
        )
    except OrderValidationError as e:
        logger.warning('Rejected order for kitchen %s: %s', kitchen.id, e)
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error placing order: %s', e)
        return OpResult.fail(e)
    logger.info('Order %s placed for kitchen %s (%s)', order_id, kitchen.id, draft.slot)
    return OpResult.ok(order_id)


async def place_manual_order(store, kitchen, draft, recorded_by, status=OrderStatus.CONFIRMED, now=None):
    """Phone or walk-in order entered by an admin; lands on the khata as due."""
    try:
        status = OrderStatus(status)
    except ValueError:
        return OpResult.fail(OrderValidationError(f'Unknown order status: {status}'))
    try:
        draft = _coerce_draft(draft)
        validate_draft(kitchen, draft)
        order_id = await _write_order(
            store, kitchen, draft, status, now,
            {'payment_status': 'due', 'recorded_by': recorded_by},
        )
    except OrderValidationError as e:
        logger.warning('Rejected manual order for kitchen %s: %s', kitchen.id, e)
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error recording manual order: %s', e)
        return OpResult.fail(e)
    logger.info('Manual order %s recorded by %s as %s', order_id, recorded_by, status.value)
    return OpResult.ok(order_id)


async def update_order_status(store, kitchen_id, order_id, new_status):
    try:
        requested = OrderStatus(new_status)
    except ValueError:
        return OpResult.fail(OrderValidationError(f'Unknown order status: {new_status}'))

    path = join_path(orders_path(kitchen_id), order_id)
    try:
        for _ in range(STATUS_WRITE_ATTEMPTS):
            raw = await store.get_one(path)
            if raw is None:
                raise NotFoundError(path)
            current = parse_orders([raw])[0].status
            if current == requested:
                return OpResult.ok(order_id)
            check_transition(current, requested)
            try:
                await store.update(
                    path,
                    {'status': requested.value, 'updated_at': SERVER_TIMESTAMP},
                    expect={'status': raw.get('status')},
                )
                break
            except ConflictError:
                logger.info('Order %s changed while updating, re-reading', order_id)
        else:
            raise ConflictError(path, {'status': current.value})
    except InvalidStatusTransition as e:
        logger.warning('Order %s: %s', order_id, e)
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error updating order: %s', e)
        return OpResult.fail(e)
    logger.info('Order %s moved to %s', order_id, requested.value)
    return OpResult.ok(order_id)


def _orders_handler(on_change, on_error):
    def handle(docs):
        try:
            orders = parse_orders(docs)
        except StoreError as e:
            logger.error('Error fetching orders: %s', e)
            if on_error:
                on_error(str(e))
            return
        on_change(orders)
    return handle


def subscribe_to_orders(store, kitchen_id, date_key, on_change, on_error=None):
    """Live orders for one business date, newest first."""
    return store.subscribe(
        orders_path(kitchen_id),
        [('date_id', '==', date_key)],
        NEWEST_FIRST,
        _orders_handler(on_change, on_error),
        on_error,
    )


def subscribe_to_my_orders(store, kitchen_id, user_id, phone_number, on_change, on_error=None):
    """
    Live orders for one student. Manual entries recorded before the student
    had an account only carry a phone number, so both keys are watched and
    the two result sets merged.
    """
    latest = {}

    def watcher(key):
        def receive(orders):
            latest[key] = orders
            on_change(merge_orders(*latest.values()))
        return _orders_handler(receive, on_error)

    keys = [(k, v) for k, v in (('user_id', user_id), ('phone_number', phone_number)) if v]
    if not keys:
        on_change([])
        return lambda: None

    unsubs = [
        store.subscribe(orders_path(kitchen_id), [(field, '==', value)], NEWEST_FIRST, watcher(field), on_error)
        for field, value in keys
    ]

    def unsubscribe():
        for unsub in unsubs:
            unsub()
    return unsubscribe
