import asyncio
import logging
from datetime import datetime, timezone

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .db import get_db, SUBSCRIPTION_RETRY_SECONDS
from .errors import ConflictError, NotFoundError, StoreError
from .store import (
    DocumentStore,
    SERVER_TIMESTAMP,
    join_path,
    parse_collection_path,
    parse_document_path,
)

logger = logging.getLogger(__name__)

INDEXES = {
    'orders': [
        [('kitchen_id', 1), ('date_id', 1), ('created_at', -1)],
        [('kitchen_id', 1), ('user_id', 1), ('created_at', -1)],
        [('kitchen_id', 1), ('phone_number', 1), ('created_at', -1)],
    ],
    'payments': [
        [('kitchen_id', 1), ('user_id', 1), ('status', 1)],
        [('kitchen_id', 1), ('status', 1), ('created_at', -1)],
    ],
    'menus': [
        [('kitchen_id', 1), ('date_id', 1)],
    ],
    'kitchens': [
        [('join_code', 1)],
    ],
}


def _to_query(parents, filters):
    q = dict(parents)
    for field, op, value in filters:
        if op == '==':
            q[field] = value
        elif op == 'in':
            q[field] = {'$in': list(value)}
        elif op == 'array-contains':
            # a scalar match on an array field means "contains"
            q[field] = value
        else:
            raise ValueError(f'Unsupported filter operator: {op}')
    return q


def _split_timestamps(doc):
    """Separate SERVER_TIMESTAMP sentinels into a $currentDate clause."""
    values = {k: v for k, v in doc.items() if v is not SERVER_TIMESTAMP}
    stamps = {k: True for k, v in doc.items() if v is SERVER_TIMESTAMP}
    return values, stamps


def _out(raw):
    doc = dict(raw)
    doc.pop('_id', None)
    return doc


def _nest(doc):
    """Expand dotted keys for writes that cannot use them, like replace_one."""
    out = {}
    for key, value in doc.items():
        *parents, leaf = key.split('.')
        target = out
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return out


def _deliver(collection_path, on_change, on_error, docs):
    try:
        on_change(docs)
    except Exception as e:
        logger.exception('Live query callback failed for %s', collection_path)
        if on_error:
            on_error(str(e))


class MongoDocumentStore(DocumentStore):
    """
    DocumentStore on MongoDB. Each leaf collection name maps to one Mongo
    collection; the full document path is used as ``_id`` so explicitly keyed
    documents (menus by date) never collide across kitchens.
    """

    def __init__(self, db=None):
        self._db = db if db is not None else get_db()

    async def ensure_indexes(self):
        try:
            for name, indexes in INDEXES.items():
                for keys in indexes:
                    await self._db[name].create_index(keys)
        except PyMongoError as e:
            raise StoreError(f'Could not create indexes: {e}') from e

    async def get(self, collection_path, filters=(), order_by=None):
        name, parents = parse_collection_path(collection_path)
        try:
            cursor = self._db[name].find(_to_query(parents, filters))
            if order_by:
                field, direction = order_by
                cursor = cursor.sort(field, DESCENDING if direction == 'desc' else ASCENDING)
            return [_out(d) for d in await cursor.to_list()]
        except PyMongoError as e:
            raise StoreError(str(e)) from e

    async def get_one(self, doc_path):
        doc_path = join_path(doc_path)
        name, _, _ = parse_document_path(doc_path)
        try:
            raw = await self._db[name].find_one({'_id': doc_path})
        except PyMongoError as e:
            raise StoreError(str(e)) from e
        return _out(raw) if raw is not None else None

    def subscribe(self, collection_path, filters, order_by, on_change, on_error=None):
        task = asyncio.get_running_loop().create_task(
            self._watch(collection_path, list(filters), order_by, on_change, on_error)
        )
        logger.debug('Live query started on %s', collection_path)

        def unsubscribe():
            task.cancel()
        return unsubscribe

    async def _watch(self, collection_path, filters, order_by, on_change, on_error):
        name, parents = parse_collection_path(collection_path)
        pipeline = [{'$match': {f'fullDocument.{k}': v for k, v in parents.items()}}]
        while True:
            try:
                # open the stream before the snapshot so no write falls in between
                async with await self._db[name].watch(pipeline, full_document='updateLookup') as stream:
                    _deliver(collection_path, on_change, on_error, await self.get(collection_path, filters, order_by))
                    async for _change in stream:
                        _deliver(collection_path, on_change, on_error, await self.get(collection_path, filters, order_by))
            except (PyMongoError, StoreError) as e:
                logger.error('Live query on %s failed: %s', collection_path, e)
                if on_error:
                    on_error(str(e))
                await asyncio.sleep(SUBSCRIPTION_RETRY_SECONDS)

    async def create(self, collection_path, doc):
        name, parents = parse_collection_path(collection_path)
        doc_id = str(ObjectId())
        doc_path = join_path(collection_path, doc_id)
        values, stamps = _split_timestamps({**doc, **parents, 'id': doc_id})
        update = {'$set': values}
        if stamps:
            update['$currentDate'] = stamps
        try:
            await self._db[name].update_one({'_id': doc_path}, update, upsert=True)
        except PyMongoError as e:
            raise StoreError(str(e)) from e
        return doc_id

    async def set(self, doc_path, doc, merge=True):
        doc_path = join_path(doc_path)
        name, parents, doc_id = parse_document_path(doc_path)
        full = {**doc, **parents, 'id': doc_id}
        try:
            if merge:
                values, stamps = _split_timestamps(full)
                update = {'$set': values}
                if stamps:
                    update['$currentDate'] = stamps
                await self._db[name].update_one({'_id': doc_path}, update, upsert=True)
            else:
                now = datetime.now(timezone.utc)
                replacement = _nest({k: (now if v is SERVER_TIMESTAMP else v) for k, v in full.items()})
                await self._db[name].replace_one({'_id': doc_path}, replacement, upsert=True)
        except PyMongoError as e:
            raise StoreError(str(e)) from e

    async def update(self, doc_path, partial, expect=None):
        doc_path = join_path(doc_path)
        name, _, _ = parse_document_path(doc_path)
        values, stamps = _split_timestamps(partial)
        update = {}
        if values:
            update['$set'] = values
        if stamps:
            update['$currentDate'] = stamps
        try:
            result = await self._db[name].update_one({**(expect or {}), '_id': doc_path}, update)
            if result.matched_count:
                return
            exists = expect and await self._db[name].find_one({'_id': doc_path}, {'_id': 1})
        except PyMongoError as e:
            raise StoreError(str(e)) from e
        if exists:
            raise ConflictError(doc_path, expect)
        raise NotFoundError(doc_path)
