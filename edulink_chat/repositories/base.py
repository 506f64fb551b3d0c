from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

from edulink_chat.errors import ConflictError, PersistenceError


@contextmanager
def backend_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as exc:
        raise ConflictError(f"{operation}: duplicate key") from exc
    except PyMongoError as exc:
        raise PersistenceError(f"{operation} failed: {exc}") from exc


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def id_candidates(value: str) -> list:
    # user ids come from the identity provider and may or may not be ObjectIds
    oid = to_object_id(value)
    return [value, oid] if oid is not None else [value]


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out
