"""
Payments and the student khata.

The balance is never stored. It is recomputed from the order and payment
documents each time it is asked for:

    balance = sum(total_amount of non-trial orders) - sum(amount of accepted payments)

Positive means the student owes the kitchen. Pending and rejected payments are
returned for display but never counted. The order and payment reads are two
separate queries, so a write landing between them may be reflected in one
total and not the other until the next read.
"""
import logging

from pydantic import ValidationError

from ..models.schemas import (
    KhataEntry,
    KhataSummary,
    OpResult,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from .errors import (
    ConflictError,
    InvalidStatusTransition,
    NotFoundError,
    PaymentValidationError,
    StoreError,
    TiffinError,
)
from .order_service import STATUS_WRITE_ATTEMPTS, merge_orders, newest_first, orders_path, parse_orders
from .store import SERVER_TIMESTAMP, join_path

logger = logging.getLogger(__name__)


def payments_path(kitchen_id):
    return join_path('kitchens', kitchen_id, 'payments')


def parse_payments(docs):
    try:
        return [Payment.model_validate(d) for d in docs]
    except ValidationError as e:
        raise StoreError(f'Malformed payment document: {e.errors()[0]["msg"]}') from e


def _check_amount(amount):
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise PaymentValidationError(f'Invalid payment amount: {amount!r}') from None
    if amount <= 0:
        raise PaymentValidationError('Payment amount must be greater than zero')
    return amount


async def submit_payment(store, kitchen_id, user_id, amount, method=PaymentMethod.UPI, receipt_url=None, note=''):
    """A student's claim that they paid. Counts only once an admin accepts it."""
    try:
        method = PaymentMethod(method)
    except ValueError:
        return OpResult.fail(PaymentValidationError(f'Unknown payment method: {method}'))
    try:
        doc = {
            'user_id': user_id,
            'amount': _check_amount(amount),
            'method': method.value,
            'receipt_url': receipt_url,
            'note': note,
            'status': PaymentStatus.PENDING.value,
            'created_at': SERVER_TIMESTAMP,
        }
        payment_id = await store.create(payments_path(kitchen_id), doc)
    except PaymentValidationError as e:
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error submitting payment: %s', e)
        return OpResult.fail(e)
    logger.info('Payment %s of %.2f submitted by %s', payment_id, doc['amount'], user_id)
    return OpResult.ok(payment_id)


async def record_cash_payment(store, kitchen_id, user_id, amount, recorded_by, note=''):
    """Cash handed to the admin; accepted on entry."""
    try:
        doc = {
            'user_id': user_id,
            'amount': _check_amount(amount),
            'method': PaymentMethod.CASH.value,
            'receipt_url': None,
            'note': note,
            'status': PaymentStatus.ACCEPTED.value,
            'recorded_by': recorded_by,
            'created_at': SERVER_TIMESTAMP,
            'processed_at': SERVER_TIMESTAMP,
        }
        payment_id = await store.create(payments_path(kitchen_id), doc)
    except PaymentValidationError as e:
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error recording payment: %s', e)
        return OpResult.fail(e)
    logger.info('Cash payment %s of %.2f recorded by %s', payment_id, doc['amount'], recorded_by)
    return OpResult.ok(payment_id)


async def process_payment(store, kitchen_id, payment_id, decision):
    """Admin accept/reject. Only pending payments can be decided, and only once."""
    try:
        requested = PaymentStatus(decision)
    except ValueError:
        requested = None
    if requested not in (PaymentStatus.ACCEPTED, PaymentStatus.REJECTED):
        return OpResult.fail(PaymentValidationError(f'Payments can only be accepted or rejected, not {decision}'))

    path = join_path(payments_path(kitchen_id), payment_id)
    try:
        for _ in range(STATUS_WRITE_ATTEMPTS):
            raw = await store.get_one(path)
            if raw is None:
                raise NotFoundError(path)
            current = parse_payments([raw])[0].status
            if current != PaymentStatus.PENDING:
                raise InvalidStatusTransition('payment', current.value, requested.value)
            try:
                await store.update(
                    path,
                    {'status': requested.value, 'processed_at': SERVER_TIMESTAMP},
                    expect={'status': raw.get('status')},
                )
                break
            except ConflictError:
                logger.info('Payment %s changed while processing, re-reading', payment_id)
        else:
            raise ConflictError(path, {'status': PaymentStatus.PENDING.value})
    except InvalidStatusTransition as e:
        logger.warning('Payment %s: %s', payment_id, e)
        return OpResult.fail(e)
    except TiffinError as e:
        logger.error('Error processing payment: %s', e)
        return OpResult.fail(e)
    logger.info('Payment %s %s', payment_id, requested.value)
    return OpResult.ok(payment_id)


def subscribe_to_pending_payments(store, kitchen_id, on_change, on_error=None):
    def handle(docs):
        try:
            payments = parse_payments(docs)
        except StoreError as e:
            logger.error('Error fetching payments: %s', e)
            if on_error:
                on_error(str(e))
            return
        on_change(payments)

    return store.subscribe(
        payments_path(kitchen_id),
        [('status', '==', PaymentStatus.PENDING.value)],
        ('created_at', 'desc'),
        handle,
        on_error,
    )


def _history(orders, payments):
    entries = [
        KhataEntry(
            kind='order',
            id=o.id,
            amount=o.total_amount,
            status=o.status.value,
            label=f'{o.quantity} x {o.main_item} ({o.slot})',
            counted=True,
            created_at=o.created_at,
        )
        for o in orders
    ]
    entries += [
        KhataEntry(
            kind='payment',
            id=p.id,
            amount=p.amount,
            status=p.status.value,
            label=f'{p.method.value} payment',
            counted=p.status == PaymentStatus.ACCEPTED,
            created_at=p.created_at,
        )
        for p in payments
    ]
    return newest_first(entries)


def summarize(orders, payments):
    """Pure balance computation over already-fetched documents."""
    debits = [o for o in orders if not o.is_trial]
    accepted = [p for p in payments if p.status == PaymentStatus.ACCEPTED]
    total_orders = sum(o.total_amount for o in debits)
    total_paid = sum(p.amount for p in accepted)
    return KhataSummary(
        balance=total_orders - total_paid,
        total_orders=total_orders,
        total_paid=total_paid,
        orders=newest_first(debits),
        payments=newest_first(accepted),
        pending_payments=newest_first([p for p in payments if p.status == PaymentStatus.PENDING]),
        rejected_payments=newest_first([p for p in payments if p.status == PaymentStatus.REJECTED]),
        history=_history(debits, payments),
    )


async def get_student_balance(store, kitchen_id, user_id, phone_number=None):
    """
    Current khata for one student.

    With ``phone_number`` given, manual orders recorded against the phone
    number before the student had an account are debited too. A phone-only
    lookup (no ``user_id``) carries no payments.
    """
    keys = [(k, v) for k, v in (('user_id', user_id), ('phone_number', phone_number)) if v]
    if not keys:
        return KhataSummary()
    try:
        groups = [
            parse_orders(await store.get(orders_path(kitchen_id), [(field, '==', value)]))
            for field, value in keys
        ]
        payments = []
        if user_id:
            payments = parse_payments(
                await store.get(payments_path(kitchen_id), [('user_id', '==', user_id)])
            )
    except TiffinError as e:
        logger.error('Error getting balance: %s', e)
        return KhataSummary(error=str(e))
    return summarize(merge_orders(*groups), payments)
