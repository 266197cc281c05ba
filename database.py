"""
MongoDB access layer

A Store wraps one MongoClient and hands out CollectionGateway objects, one per
collection. Documents leave this module serialized: ``_id`` becomes a string
``id``. Reference fields are stored as string ids and can be expanded into the
referenced documents with ``expand``.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_TIMEOUT_MS, DATABASE_URL
from logger import get_logger

log = get_logger("database")

# collection -> fields carrying a unique index
UNIQUE_FIELDS: Dict[str, List[str]] = {
    "user": ["email"],
}


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


class Reference:
    """A field holding ids of documents in another collection.

    ``path`` is dotted and walks through lists, so ``"products.product"``
    names the ``product`` key of every item in the ``products`` list.
    """

    def __init__(self, path: str, collection: str):
        self.path = path
        self.collection = collection
        self.parts = path.split(".")

    def __repr__(self):
        return f"Reference({self.path!r} -> {self.collection!r})"


def _walk(value: Any, parts: Sequence[str], fn: Callable[[Any], Any]) -> Any:
    if isinstance(value, list):
        return [_walk(v, parts, fn) for v in value]
    if not parts:
        return fn(value)
    if isinstance(value, dict) and parts[0] in value:
        value = dict(value)
        value[parts[0]] = _walk(value[parts[0]], parts[1:], fn)
    return value


def collect_ids(docs: Iterable[Dict[str, Any]], ref: Reference) -> List[str]:
    found: List[str] = []

    def grab(v):
        if v is not None:
            found.append(str(v))
        return v

    for doc in docs:
        _walk(doc, ref.parts, grab)
    return found


class CollectionGateway:
    def __init__(self, store: "Store", name: str):
        self.store = store
        self.name = name
        self.collection = store.db[name]

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        res = self.collection.insert_one(dict(doc))
        created = self.collection.find_one({"_id": res.inserted_id})
        return serialize_doc(created)

    def list_all(self, expand: Sequence[Reference] = ()) -> List[Dict[str, Any]]:
        docs = [serialize_doc(d) for d in self.collection.find()]
        return self.store.expand(docs, expand)

    def get_by_id(self, doc_id: str, expand: Sequence[Reference] = ()) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid})
        if not doc:
            return None
        return self.store.expand([serialize_doc(doc)], expand)[0]

    def update_by_id(self, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        if not fields:
            return self.get_by_id(doc_id)
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def delete_by_id(self, doc_id: str) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        res = self.collection.delete_one({"_id": oid})
        return res.deleted_count > 0

    def find_many(self, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Load every document whose id is in ``ids``, keyed by string id."""
        oids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
        if not oids:
            return {}
        return {
            str(d["_id"]): serialize_doc(d)
            for d in self.collection.find({"_id": {"$in": list(set(oids))}})
        }

    def missing_ids(self, ids: Iterable[str]) -> List[str]:
        ids = [str(i) for i in ids]
        found = self.find_many(ids)
        return [i for i in ids if i not in found]


class Store:
    """Connection context shared by every request handler.

    ``connect`` must run before serving and ``close`` on shutdown. A failed
    first connection is logged, not raised; requests will fail until the
    server is reachable again.
    """

    def __init__(
        self,
        url: str = DATABASE_URL,
        name: str = DATABASE_NAME,
        client_factory: Callable[..., Any] = MongoClient,
        timeout_ms: int = DATABASE_TIMEOUT_MS,
    ):
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self._client_factory = client_factory
        self.client = None
        self.db = None
        self.connected = False
        self._indexed = False

    def connect(self) -> None:
        self.client = self._client_factory(self.url, serverSelectionTimeoutMS=self.timeout_ms)
        self.db = self.client[self.name]
        try:
            self.client.server_info()
            self.ensure_indexes()
            self.connected = True
            log.info(f"connected to MongoDB database '{self.name}'")
        except PyMongoError as e:
            log.error(f"MongoDB connection failed: {e}")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            log.debug("MongoDB client closed")
        self.client = None
        self.db = None
        self.connected = False
        self._indexed = False

    def ensure_indexes(self) -> None:
        if self._indexed:
            return
        for collection, fields in UNIQUE_FIELDS.items():
            for field in fields:
                self.db[collection].create_index(field, unique=True)
        self._indexed = True

    def __getitem__(self, name: str) -> CollectionGateway:
        if self.db is None:
            raise RuntimeError("Store used before connect()")
        self.ensure_indexes()
        return CollectionGateway(self, name)

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def expand(self, docs: List[Dict[str, Any]], refs: Sequence[Reference]) -> List[Dict[str, Any]]:
        """Replace reference ids with the referenced documents.

        One query per reference; ids that resolve to nothing become None.
        """
        for ref in refs:
            found = self[ref.collection].find_many(collect_ids(docs, ref))
            docs = [
                _walk(doc, ref.parts, lambda v: found.get(str(v)) if v is not None else None)
                for doc in docs
            ]
        return docs
