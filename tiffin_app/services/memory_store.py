import copy
import logging
import uuid
from datetime import datetime, timezone

from .errors import ConflictError, NotFoundError
from .store import (
    DocumentStore,
    SERVER_TIMESTAMP,
    join_path,
    matches,
    parse_collection_path,
    parse_document_path,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(field):
    def key(doc):
        value = doc.get(field)
        # None sorts first ascending, like a pending server timestamp
        return (value is not None, value if value is not None else _EPOCH)
    return key


def _assign(doc, key, value):
    *parents, leaf = key.split('.')
    for part in parents:
        child = doc.get(part)
        if not isinstance(child, dict):
            child = doc[part] = {}
        doc = child
    doc[leaf] = copy.deepcopy(value)


class InMemoryDocumentStore(DocumentStore):
    """Dict backed store. Live queries fire synchronously on every write."""

    def __init__(self, clock=None):
        self._collections = {}
        self._listeners = {}
        self._next_listener = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------- helpers

    def _resolve(self, doc):
        now = self._clock()
        return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in doc.items()}

    def _query(self, collection_path, filters, order_by):
        name, parents = parse_collection_path(collection_path)
        wanted = list(parents.items())
        rows = [
            copy.deepcopy(doc) for doc in self._collections.get(name, {}).values()
            if all(doc.get(k) == v for k, v in wanted) and matches(doc, filters)
        ]
        if order_by:
            field, direction = order_by
            rows.sort(key=_sort_key(field), reverse=(direction == 'desc'))
        return rows

    def _notify(self, collection):
        for listener in list(self._listeners.values()):
            if listener['collection'] == collection:
                self._emit(listener)

    def _emit(self, listener):
        rows = self._query(listener['path'], listener['filters'], listener['order_by'])
        try:
            listener['on_change'](rows)
        except Exception as e:
            logger.exception('Live query callback failed for %s', listener['path'])
            if not listener['on_error']:
                raise
            listener['on_error'](str(e))

    # -------------------------------------------------------------- port

    async def get(self, collection_path, filters=(), order_by=None):
        return self._query(collection_path, list(filters), order_by)

    async def get_one(self, doc_path):
        doc_path = join_path(doc_path)
        name, _, _ = parse_document_path(doc_path)
        doc = self._collections.get(name, {}).get(doc_path)
        return copy.deepcopy(doc) if doc is not None else None

    def subscribe(self, collection_path, filters, order_by, on_change, on_error=None):
        name, _ = parse_collection_path(collection_path)
        token = self._next_listener
        self._next_listener += 1
        listener = {
            'path': collection_path,
            'collection': name,
            'filters': list(filters),
            'order_by': order_by,
            'on_change': on_change,
            'on_error': on_error,
        }
        self._listeners[token] = listener
        logger.debug('Subscribed %s to %s', token, collection_path)
        self._emit(listener)

        def unsubscribe():
            self._listeners.pop(token, None)
        return unsubscribe

    async def create(self, collection_path, doc):
        name, parents = parse_collection_path(collection_path)
        doc_id = uuid.uuid4().hex
        doc_path = join_path(collection_path, doc_id)
        stored = self._resolve({**doc, **parents})
        stored['id'] = doc_id
        self._collections.setdefault(name, {})[doc_path] = stored
        self._notify(name)
        return doc_id

    async def set(self, doc_path, doc, merge=True):
        doc_path = join_path(doc_path)
        name, parents, doc_id = parse_document_path(doc_path)
        bucket = self._collections.setdefault(name, {})
        stored = copy.deepcopy(bucket.get(doc_path, {})) if merge else {}
        for key, value in self._resolve({**doc, **parents}).items():
            _assign(stored, key, value)
        stored['id'] = doc_id
        bucket[doc_path] = stored
        self._notify(name)

    async def update(self, doc_path, partial, expect=None):
        doc_path = join_path(doc_path)
        name, _, _ = parse_document_path(doc_path)
        bucket = self._collections.get(name, {})
        if doc_path not in bucket:
            raise NotFoundError(doc_path)
        current = bucket[doc_path]
        if expect and any(current.get(k) != v for k, v in expect.items()):
            raise ConflictError(doc_path, expect)
        for key, value in self._resolve(partial).items():
            _assign(current, key, value)
        self._notify(name)
