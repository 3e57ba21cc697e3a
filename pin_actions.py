"""
Pin queries, per-viewer status enrichment and like/save mutations.

Read functions never raise: store failures are logged and degrade to empty
results. Mutations log and re-raise so the caller can roll back whatever it
showed optimistically.

pymongo is blocking, so independent lookups are dispatched to a small
thread pool and awaited together.
"""

import asyncio
import base64
import binascii
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from auth import Identity
from captioning import generate_metadata
from schemas import LikedPin, Pin, SavedPin
from storage import delete_image, image_url, save_image

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
# upper bound for a single liked/saved status lookup
STATUS_LOOKUP_LIMIT = 200
SEARCH_FIELDS = ("title", "description", "tags")
MAX_TAGS = 12

_db_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="mongo_")


class PinNotFoundError(LookupError):
    """Raised by mutations when the target pin does not exist."""


class InvalidImageError(ValueError):
    """Raised when an upload is not a decodable image payload."""


class LinkKind(NamedTuple):
    collection: str
    counter: str
    flag: str
    schema: type


LIKE = LinkKind(collection="likedpin", counter="likes", flag="liked", schema=LikedPin)
SAVE = LinkKind(collection="savedpin", counter="saves", flag="saved", schema=SavedPin)


# ---------- Utilities ----------

async def _run(fn, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_db_executor, partial(fn, *args, **kwargs))


def _collection(name: str):
    if database.db is None:
        raise RuntimeError("Database not available")
    return database.db[name]


def _to_object_id(id_str: Any) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def serialize(doc: dict) -> dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


def _union_by_id(result_sets: Iterable[List[dict]]) -> List[dict]:
    """Concatenate result sets, keeping the first occurrence of each _id."""
    seen: Dict[Any, dict] = {}
    for docs in result_sets:
        for doc in docs:
            seen.setdefault(doc["_id"], doc)
    return list(seen.values())


def normalize_tags(tags: Iterable[str]) -> List[str]:
    normalized: List[str] = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized[:MAX_TAGS]


# ---------- Status index ----------

def _linked_pin_ids(collection_name: str, viewer_id: str, pin_ids: Optional[List[str]] = None) -> Set[str]:
    query: Dict[str, Any] = {"user_id": viewer_id}
    if pin_ids is not None:
        query["pin_id"] = {"$in": list(pin_ids)}
    cursor = (
        _collection(collection_name)
        .find(query, {"pin_id": 1, "_id": 0})
        .limit(STATUS_LOOKUP_LIMIT)
    )
    return {doc["pin_id"] for doc in cursor if doc.get("pin_id")}


async def resolve_liked_ids(viewer_id: Optional[str], pin_ids: Optional[List[str]] = None) -> Set[str]:
    """
    Ids of the pins the viewer has liked.

    Args:
        viewer_id: Account id of the viewer; empty means no lookup at all
        pin_ids: Only consider these pins (keeps page lookups under the cap)

    Returns:
        Set of pin ids, empty on store failure
    """
    if not viewer_id:
        return set()
    try:
        return await _run(_linked_pin_ids, LIKE.collection, viewer_id, pin_ids)
    except Exception as e:
        logger.error(f"Error fetching liked pin ids for {viewer_id}: {e}")
        return set()


async def resolve_saved_ids(viewer_id: Optional[str], pin_ids: Optional[List[str]] = None) -> Set[str]:
    """Ids of the pins the viewer has saved. Same contract as resolve_liked_ids."""
    if not viewer_id:
        return set()
    try:
        return await _run(_linked_pin_ids, SAVE.collection, viewer_id, pin_ids)
    except Exception as e:
        logger.error(f"Error fetching saved pin ids for {viewer_id}: {e}")
        return set()


async def enrich_pins(pins: List[dict], viewer_id: Optional[str]) -> List[dict]:
    """
    Attach the viewer's liked/saved flags to serialized pins.

    Without a viewer the pins come back untouched, without the flag keys.
    """
    if not viewer_id or not pins:
        return list(pins)

    ids = [p["id"] for p in pins]
    liked, saved = await asyncio.gather(
        resolve_liked_ids(viewer_id, ids),
        resolve_saved_ids(viewer_id, ids),
    )
    return [{**p, "liked": p["id"] in liked, "saved": p["id"] in saved} for p in pins]


# ---------- Pin fetching ----------

def _find_pins(query: Dict[str, Any], limit: int, skip: int = 0) -> List[dict]:
    cursor = _collection("pin").find(query).sort("_id", ASCENDING)
    if skip > 0:
        cursor = cursor.skip(skip)
    return list(cursor.limit(limit))


def _search_query(field: str, term: str) -> Dict[str, Any]:
    pattern = re.escape(term)
    # anchor at a word start so "cat" does not match "category"
    if re.match(r"\w", term):
        pattern = r"\b" + pattern
    return {field: {"$regex": pattern, "$options": "i"}}


async def get_pins(
    limit: int = DEFAULT_PAGE_SIZE,
    search: str = "",
    offset: int = 0,
    viewer_id: Optional[str] = None,
) -> List[dict]:
    """
    Feed listing, optionally filtered by a search term.

    A search runs one query per field concurrently. The union is taken
    before paging: each field query returns its first offset+limit matches,
    the deduplicated union (title, then description, then tags order) is
    sliced to the requested page.
    """
    if limit <= 0:
        return []
    offset = max(offset, 0)
    term = (search or "").strip()

    try:
        if not term:
            docs = await _run(_find_pins, {}, limit, offset)
        else:
            results = await asyncio.gather(
                *[_run(_find_pins, _search_query(field, term), offset + limit) for field in SEARCH_FIELDS]
            )
            docs = _union_by_id(results)[offset:offset + limit]

        return await enrich_pins([serialize(d) for d in docs], viewer_id)
    except Exception as e:
        logger.error(f"Error fetching pins (search={term!r}, offset={offset}): {e}")
        return []


async def get_pin(pin_id: str, viewer_id: Optional[str] = None) -> Optional[dict]:
    pid = _to_object_id(pin_id)
    if pid is None:
        return None
    try:
        doc = await _run(lambda: _collection("pin").find_one({"_id": pid}))
        if not doc:
            return None
        enriched = await enrich_pins([serialize(doc)], viewer_id)
        return enriched[0]
    except Exception as e:
        logger.error(f"Error fetching pin {pin_id}: {e}")
        return None


async def get_created_pins_by_user(
    limit: int = DEFAULT_PAGE_SIZE,
    viewer_id: Optional[str] = None,
    profile_user_id: Optional[str] = None,
    offset: int = 0,
) -> List[dict]:
    """Pins created by the profile owner (or the viewer), flagged for the viewer."""
    target = profile_user_id or viewer_id
    if not target or limit <= 0:
        return []
    try:
        docs = await _run(_find_pins, {"created_by": target}, limit, max(offset, 0))
        return await enrich_pins([serialize(d) for d in docs], viewer_id)
    except Exception as e:
        logger.error(f"Error fetching pins created by {target}: {e}")
        return []


def _find_linked_pins(collection_name: str, target: str, limit: int, offset: int) -> List[dict]:
    links = (
        _collection(collection_name)
        .find({"user_id": target}, {"pin_id": 1})
        .sort("_id", ASCENDING)
        .skip(offset)
        .limit(limit)
    )
    pin_ids = [link.get("pin_id") for link in links]
    object_ids = [oid for oid in (_to_object_id(p) for p in pin_ids) if oid is not None]
    if not object_ids:
        return []

    by_id = {str(d["_id"]): d for d in _collection("pin").find({"_id": {"$in": object_ids}})}
    # keep link order, drop pins deleted after being linked
    return [by_id[p] for p in pin_ids if p in by_id]


async def _get_linked_pins(kind: LinkKind, limit, viewer_id, profile_user_id, offset) -> List[dict]:
    target = profile_user_id or viewer_id
    if not target or limit <= 0:
        return []
    try:
        docs = await _run(_find_linked_pins, kind.collection, target, limit, max(offset, 0))
        return await enrich_pins([serialize(d) for d in docs], viewer_id)
    except Exception as e:
        logger.error(f"Error fetching {kind.flag} pins of {target}: {e}")
        return []


async def get_liked_pins_by_user_id(
    limit: int = DEFAULT_PAGE_SIZE,
    viewer_id: Optional[str] = None,
    profile_user_id: Optional[str] = None,
    offset: int = 0,
) -> List[dict]:
    """
    Pins liked by the profile owner, paged over the like links.

    Flags on each pin reflect the viewer, not the profile owner.
    """
    return await _get_linked_pins(LIKE, limit, viewer_id, profile_user_id, offset)


async def get_saved_pins_by_user_id(
    limit: int = DEFAULT_PAGE_SIZE,
    viewer_id: Optional[str] = None,
    profile_user_id: Optional[str] = None,
    offset: int = 0,
) -> List[dict]:
    return await _get_linked_pins(SAVE, limit, viewer_id, profile_user_id, offset)


# ---------- Mutations ----------

def _state(kind: LinkKind, pin_id: str, active: bool, count: Optional[int]) -> Dict[str, Any]:
    return {"pin_id": pin_id, kind.flag: active, kind.counter: max(count or 0, 0)}


def _load_pin(pin_id: str, counter: str) -> dict:
    pid = _to_object_id(pin_id)
    pin = _collection("pin").find_one({"_id": pid}, {counter: 1}) if pid is not None else None
    if not pin:
        raise PinNotFoundError(f"Pin {pin_id} not found")
    return pin


def _add_link(kind: LinkKind, identity: Identity, pin_id: str) -> Dict[str, Any]:
    pin = _load_pin(pin_id, kind.counter)
    pins = _collection("pin")
    links = _collection(kind.collection)

    query = {"user_id": identity.account_id, "pin_id": pin_id}
    if links.find_one(query, {"_id": 1}):
        return _state(kind, pin_id, True, pin.get(kind.counter))

    user_doc = _collection("user").find_one({"account_id": identity.account_id}, {"_id": 1})
    now = datetime.now(timezone.utc)
    try:
        link = kind.schema(
            user_id=identity.account_id,
            pin_id=pin_id,
            pin=pin_id,
            user=str(user_doc["_id"]) if user_doc else None,
        )
        res = links.insert_one({**link.model_dump(), "created_at": now, "updated_at": now})
    except DuplicateKeyError:
        return _state(kind, pin_id, True, pin.get(kind.counter))

    try:
        updated = pins.find_one_and_update(
            {"_id": pin["_id"]},
            {"$inc": {kind.counter: 1}, "$set": {"updated_at": now}},
            projection={kind.counter: 1},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Counter update failed for pin {pin_id}, removing {kind.flag} link: {e}")
        try:
            links.delete_one({"_id": res.inserted_id})
        except PyMongoError as cleanup_error:
            logger.error(f"Could not remove {kind.flag} link for pin {pin_id}: {cleanup_error}")
        raise

    return _state(kind, pin_id, True, (updated or {}).get(kind.counter))


def _remove_link(kind: LinkKind, identity: Identity, pin_id: str) -> Dict[str, Any]:
    pin = _load_pin(pin_id, kind.counter)
    pins = _collection("pin")
    links = _collection(kind.collection)

    existing = links.find_one({"user_id": identity.account_id, "pin_id": pin_id})
    if not existing:
        return _state(kind, pin_id, False, pin.get(kind.counter))

    links.delete_one({"_id": existing["_id"]})

    now = datetime.now(timezone.utc)
    try:
        # counter > 0 guard keeps the counter from going negative
        updated = pins.find_one_and_update(
            {"_id": pin["_id"], kind.counter: {"$gt": 0}},
            {"$inc": {kind.counter: -1}, "$set": {"updated_at": now}},
            projection={kind.counter: 1},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Counter update failed for pin {pin_id}, restoring {kind.flag} link: {e}")
        try:
            links.insert_one(existing)
        except PyMongoError as cleanup_error:
            logger.error(f"Could not restore {kind.flag} link for pin {pin_id}: {cleanup_error}")
        raise

    if updated is None:
        return _state(kind, pin_id, False, 0)
    return _state(kind, pin_id, False, updated.get(kind.counter))


async def like_pin(identity: Identity, pin_id: str) -> Dict[str, Any]:
    """Like a pin. Liking an already liked pin is a no-op."""
    try:
        result = await _run(_add_link, LIKE, identity, pin_id)
    except (PyMongoError, RuntimeError) as e:
        logger.error(f"Error liking pin {pin_id}: {e}")
        raise
    logger.info(f"{identity.account_id} liked pin {pin_id} ({result['likes']} likes)")
    return result


async def unlike_pin(identity: Identity, pin_id: str) -> Dict[str, Any]:
    try:
        result = await _run(_remove_link, LIKE, identity, pin_id)
    except (PyMongoError, RuntimeError) as e:
        logger.error(f"Error unliking pin {pin_id}: {e}")
        raise
    logger.info(f"{identity.account_id} unliked pin {pin_id} ({result['likes']} likes)")
    return result


async def save_pin(identity: Identity, pin_id: str) -> Dict[str, Any]:
    """Save a pin. Saving an already saved pin is a no-op."""
    try:
        result = await _run(_add_link, SAVE, identity, pin_id)
    except (PyMongoError, RuntimeError) as e:
        logger.error(f"Error saving pin {pin_id}: {e}")
        raise
    logger.info(f"{identity.account_id} saved pin {pin_id} ({result['saves']} saves)")
    return result


async def unsave_pin(identity: Identity, pin_id: str) -> Dict[str, Any]:
    try:
        result = await _run(_remove_link, SAVE, identity, pin_id)
    except (PyMongoError, RuntimeError) as e:
        logger.error(f"Error unsaving pin {pin_id}: {e}")
        raise
    logger.info(f"{identity.account_id} unsaved pin {pin_id} ({result['saves']} saves)")
    return result


# ---------- Creation ----------

def decode_image(image_data: str, mime_type: str) -> bytes:
    """Decode a base64 payload (a data: URL prefix is accepted)."""
    if not mime_type or not mime_type.startswith("image/"):
        raise InvalidImageError(f"Unsupported MIME type: {mime_type!r}")
    if "," in image_data and image_data.startswith("data:"):
        image_data = image_data.split(",", 1)[1]
    try:
        raw = base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("Image data is not valid base64") from e
    if not raw:
        raise InvalidImageError("Image data is empty")
    return raw


def _insert_pin(doc: Dict[str, Any]) -> Dict[str, Any]:
    res = _collection("pin").insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def _discard_image(file_id: str) -> None:
    try:
        delete_image(file_id)
    except PyMongoError as e:
        logger.error(f"Could not remove orphaned image {file_id}: {e}")


async def create_pin(identity: Identity, image_data: str, mime_type: str) -> Dict[str, Any]:
    """
    Create a pin from an uploaded image.

    The image is captioned first and stored afterwards, so a captioning
    failure leaves nothing behind. If the pin insert fails, the stored
    image is removed again.
    """
    raw = decode_image(image_data, mime_type)
    encoded = base64.b64encode(raw).decode("ascii")

    metadata = await _run(generate_metadata, encoded, mime_type)
    file_id = await _run(save_image, raw, mime_type)

    pin = Pin(
        title=metadata.title.strip(),
        description=metadata.description.strip(),
        tags=normalize_tags(metadata.tags),
        image_url=image_url(file_id),
        created_by=identity.account_id,
        username=identity.name,
    )
    now = datetime.now(timezone.utc)
    try:
        doc = await _run(_insert_pin, {**pin.model_dump(), "created_at": now, "updated_at": now})
    except PyMongoError as e:
        logger.error(f"Failed to insert pin for {identity.account_id}, removing image {file_id}: {e}")
        await _run(_discard_image, file_id)
        raise
    logger.info(f"{identity.account_id} created pin {doc['_id']}: '{doc['title']}'")
    return serialize(doc)
