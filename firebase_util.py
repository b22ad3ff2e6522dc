import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import firebase_admin
from firebase_admin import credentials, db

import config

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "RESTAURANTS": "restaurants",
    "PRODUCTS": "products",
    "CATEGORIES": "categories",
    "TABLES": "tables",
    "ORDERS": "orders",
    "CUSTOMER_SESSIONS": "customerSessions",
    "USERS": "users",
    "FEEDBACK": "feedback",
    "CUSTOMERS": "customers",
    "CAMPAIGNS": "campaigns",
    "COUPONS": "coupons",
    "INTERNAL_REVIEWS": "internal_reviews",
}

Document = Tuple[str, Dict[str, Any]]


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def add(self, collection: str, data: Dict[str, Any]) -> str: ...

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None: ...

    def query(self, collection: str, **equals: Any) -> List[Document]: ...

    def transaction(self, collection: str, doc_id: str, update_fn: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]) -> Dict[str, Any]: ...


def get_db_ref() -> db.Reference:
    """Firebase root DB reference, initializing the app on first use."""
    if not firebase_admin._apps:
        try:
            cred = credentials.Certificate(config.FIREBASE_CRED_PATH)
            firebase_admin.initialize_app(cred, {
                'databaseURL': config.FIREBASE_DB_URL
            })
        except Exception as e:
            raise RuntimeError(f"🔥 Firebase initialization failed: {e}")
        logger.info("✅ Firebase initialized for %s", config.FIREBASE_DB_URL)
    return db.reference("/")


class FirebaseDocumentStore:
    """
    Collections of JSON documents on top of the Realtime Database.
    Documents live at ``/<collection>/<id>``.
    """

    def __init__(self, root: Optional[db.Reference] = None):
        self._root = root

    @property
    def root(self) -> db.Reference:
        if self._root is None:
            self._root = get_db_ref()
        return self._root

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.root.child(collection).child(doc_id).get()

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_ref = self.root.child(collection).push(data)
        return doc_ref.key

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.root.child(collection).child(doc_id).update(fields)

    def query(self, collection: str, **equals: Any) -> List[Document]:
        """
        Documents whose fields equal every keyword. The first condition runs
        server side (needs an ``.indexOn`` rule), the rest are filtered here.
        """
        ref = self.root.child(collection)
        if equals:
            field, value = next(iter(equals.items()))
            snapshot = ref.order_by_child(field).equal_to(value).get()
        else:
            snapshot = ref.get()
        docs = (snapshot or {}).items()
        return [
            (doc_id, data) for doc_id, data in docs
            if isinstance(data, dict) and all(data.get(k) == v for k, v in equals.items())
        ]

    def transaction(self, collection: str, doc_id: str, update_fn):
        """
        Atomically replace a document with ``update_fn(current)``. The function
        may run more than once; an exception raised in it aborts the write.
        """
        return self.root.child(collection).child(doc_id).transaction(update_fn)

    def subscribe(self, collection: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Listen to changes under a collection. Call the result to unsubscribe."""
        registration = self.root.child(collection).listen(callback)
        return registration.close


_store: Optional[FirebaseDocumentStore] = None


def get_store() -> FirebaseDocumentStore:
    global _store
    if _store is None:
        _store = FirebaseDocumentStore()
    return _store
