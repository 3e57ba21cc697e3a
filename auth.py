"""
Current identity and the user directory.

Authentication itself happens upstream: the gateway in front of this API
verifies the session and forwards the account as X-Account-* headers.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from config import get_settings
from schemas import User

logger = logging.getLogger(__name__)

FALLBACK_AVATAR_URL = "https://placehold.co/400x400/eeeeee/333333?text=USER"
UNSPLASH_RANDOM_URL = "https://api.unsplash.com/photos/random"


class Identity(BaseModel):
    account_id: str
    name: str = ""
    email: str = ""


def get_optional_identity(
    x_account_id: Optional[str] = Header(None),
    x_account_name: Optional[str] = Header(None),
    x_account_email: Optional[str] = Header(None),
) -> Optional[Identity]:
    if not x_account_id:
        return None
    return Identity(
        account_id=x_account_id,
        name=x_account_name or "",
        email=x_account_email or "",
    )


def get_current_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def serialize_user(user_doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user_doc.get("_id")),
        "account_id": user_doc.get("account_id"),
        "name": user_doc.get("name"),
        "email": user_doc.get("email"),
        "avatar": user_doc.get("avatar"),
    }


def get_existing_user(account_id: str) -> Optional[Dict[str, Any]]:
    """Return the user document for an account, or None."""
    if not account_id or database.db is None:
        return None
    try:
        return database.db["user"].find_one({"account_id": account_id})
    except PyMongoError as e:
        logger.error(f"Error fetching user {account_id}: {e}")
        return None


def fetch_random_avatar_url() -> str:
    """Random portrait from Unsplash, or the placeholder when unavailable."""
    access_key = get_settings().unsplash_access_key
    if not access_key:
        logger.debug("UNSPLASH_ACCESS_KEY not set, using placeholder avatar")
        return FALLBACK_AVATAR_URL

    try:
        response = requests.get(
            UNSPLASH_RANDOM_URL,
            params={"query": "portrait,face", "orientation": "portrait", "client_id": access_key},
            timeout=10,
        )
        response.raise_for_status()
        return response.json()["urls"]["regular"]
    except (requests.RequestException, ValueError, KeyError) as e:
        logger.warning(f"Unsplash avatar lookup failed: {e}")
        return FALLBACK_AVATAR_URL


def store_user_in_database(identity: Identity, avatar: Optional[str] = None) -> Dict[str, Any]:
    """
    Create the user document for an identity unless it already exists.

    Returns the stored user document.
    """
    existing = database.db["user"].find_one({"account_id": identity.account_id})
    if existing:
        return existing

    user = User(
        account_id=identity.account_id,
        name=identity.name,
        email=identity.email,
        avatar=avatar or fetch_random_avatar_url(),
    )
    now = datetime.now(timezone.utc)
    doc = {**user.model_dump(), "created_at": now, "updated_at": now}
    try:
        res = database.db["user"].insert_one(doc)
    except DuplicateKeyError:
        # registered concurrently
        return database.db["user"].find_one({"account_id": identity.account_id})
    doc["_id"] = res.inserted_id
    logger.info(f"Registered user for account {identity.account_id}")
    return doc
