"""
Document store port.

Paths are slash separated and alternate collection / document segments, e.g.
``kitchens/k1/orders`` (a collection) and ``kitchens/k1/orders/o9`` (a
document). Parent segments are folded into equality fields, so every document
under ``kitchens/k1/...`` carries ``kitchen_id == "k1"``.

In ``set`` and ``update`` a dotted key such as ``items.lunch`` addresses a
nested field, leaving its siblings untouched.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

Filter = Tuple[str, str, Any]
OrderBy = Tuple[str, str]
Unsubscribe = Callable[[], None]

SUPPORTED_OPS = ('==', 'in', 'array-contains')


class _ServerTimestamp:
    def __repr__(self):
        return 'SERVER_TIMESTAMP'


SERVER_TIMESTAMP = _ServerTimestamp()


def split_path(path: str) -> List[str]:
    return [seg for seg in path.strip('/').split('/') if seg]


def join_path(*parts: str) -> str:
    return '/'.join(seg for part in parts for seg in split_path(str(part)))


def parent_field(collection: str) -> str:
    """``kitchens`` -> ``kitchen_id``"""
    name = collection[:-1] if collection.endswith('s') else collection
    return f'{name}_id'


def parse_collection_path(path: str) -> Tuple[str, Dict[str, str]]:
    segs = split_path(path)
    if len(segs) % 2 != 1:
        raise ValueError(f'Not a collection path: {path}')
    parents = {parent_field(segs[i]): segs[i + 1] for i in range(0, len(segs) - 1, 2)}
    return segs[-1], parents


def parse_document_path(path: str) -> Tuple[str, Dict[str, str], str]:
    segs = split_path(path)
    if not segs or len(segs) % 2 != 0:
        raise ValueError(f'Not a document path: {path}')
    collection, parents = parse_collection_path('/'.join(segs[:-1]))
    return collection, parents, segs[-1]


def matches(doc: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for field, op, value in filters:
        actual = doc.get(field)
        if op == '==':
            if actual != value:
                return False
        elif op == 'in':
            if actual not in value:
                return False
        elif op == 'array-contains':
            if not isinstance(actual, (list, tuple)) or value not in actual:
                return False
        else:
            raise ValueError(f'Unsupported filter operator: {op}')
    return True


class DocumentStore(ABC):

    @abstractmethod
    async def get(self, collection_path: str, filters: Iterable[Filter] = (),
                  order_by: Optional[OrderBy] = None) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_one(self, doc_path: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def subscribe(self, collection_path: str, filters: Iterable[Filter],
                  order_by: Optional[OrderBy],
                  on_change: Callable[[List[Dict[str, Any]]], None],
                  on_error: Optional[Callable[[str], None]] = None) -> Unsubscribe:
        """Start a live query. ``on_change`` receives the full result set each time."""

    @abstractmethod
    async def create(self, collection_path: str, doc: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def set(self, doc_path: str, doc: Dict[str, Any], merge: bool = True) -> None:
        ...

    @abstractmethod
    async def update(self, doc_path: str, partial: Dict[str, Any],
                     expect: Optional[Dict[str, Any]] = None) -> None:
        """
        Raises NotFoundError when the document does not exist, and ConflictError
        when ``expect`` is given and one of its fields no longer holds that value.
        """
