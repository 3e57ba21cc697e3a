import os
from datetime import datetime, timedelta, timezone
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

import database
from auth import (
    Identity,
    get_current_identity,
    get_existing_user,
    get_optional_identity,
    serialize_user,
    store_user_in_database,
)
from captioning import CaptioningError
from config import get_settings
from logger import init_sentry, setup_logging
from pin_actions import (
    DEFAULT_PAGE_SIZE,
    InvalidImageError,
    PinNotFoundError,
    create_pin,
    get_created_pins_by_user,
    get_liked_pins_by_user_id,
    get_pin,
    get_pins,
    get_saved_pins_by_user_id,
    like_pin,
    save_pin,
    unlike_pin,
    unsave_pin,
)
from storage import open_image

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)
init_sentry(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Sharely API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Utilities ----------

def require_db():
    if database.db is None:
        raise HTTPException(500, "Database not available")


def viewer_id(identity: Optional[Identity]) -> Optional[str]:
    return identity.account_id if identity else None


def iter_image(stream):
    try:
        for chunk in stream:
            yield chunk
    finally:
        stream.close()


async def run_mutation(action, identity: Identity, pin_id: str):
    try:
        return await action(identity, pin_id)
    except PinNotFoundError:
        raise HTTPException(404, "Pin not found")
    except PyMongoError:
        raise HTTPException(503, "Database temporarily unavailable")


# ---------- Schemas (API layer) ----------

class PinCreate(BaseModel):
    image_data: str = Field(..., description="Base64 encoded image, data: URL prefix allowed")
    mime_type: str = Field(..., description="Image MIME type, e.g. image/png")


# ---------- Seed Data ----------

def seed_pins():
    if database.db is None:
        return
    if database.db["pin"].count_documents({}) > 0:
        return
    now = datetime.now(timezone.utc)
    samples = [
        {
            "title": "Foggy Alpine Lake",
            "description": "A still mountain lake under low fog, pine forest along the shore.",
            "tags": ["nature", "lake", "mountains", "fog"],
            "image_url": "https://images.unsplash.com/photo-1501785888041-af3ef285b470",
            "created_by": "demo-account",
            "username": "Sharely Demo",
            "likes": 0,
            "saves": 0,
            "created_at": now - timedelta(days=3),
            "updated_at": now - timedelta(days=3),
        },
        {
            "title": "Neon Night Market",
            "description": "Crowded street food stalls lit by neon signs after rain.",
            "tags": ["city", "night", "food", "neon"],
            "image_url": "https://images.unsplash.com/photo-1519677100203-a0e668c92439",
            "created_by": "demo-account",
            "username": "Sharely Demo",
            "likes": 0,
            "saves": 0,
            "created_at": now - timedelta(days=1),
            "updated_at": now - timedelta(days=1),
        },
        {
            "title": "Sleeping Tabby",
            "description": "A tabby cat curled up in a patch of afternoon sunlight on a wooden floor.",
            "tags": ["cat", "pets", "cozy"],
            "image_url": "https://images.unsplash.com/photo-1518791841217-8f162f1e1131",
            "created_by": "demo-account",
            "username": "Sharely Demo",
            "likes": 0,
            "saves": 0,
            "created_at": now - timedelta(hours=6),
            "updated_at": now - timedelta(hours=6),
        },
    ]
    database.db["pin"].insert_many(samples)
    logger.info(f"Seeded {len(samples)} demo pins")


@app.on_event("startup")
async def on_start():
    try:
        database.ensure_indexes()
        if settings.seed_demo_data:
            seed_pins()
    except PyMongoError as e:
        logger.error(f"Startup database setup failed: {e}")


# ---------- Basic ----------

@app.get("/")
def root():
    return {"name": "Sharely API", "status": "ok"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# ---------- Pins ----------

@app.get("/api/pins")
async def list_pins(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
    search: str = "",
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    require_db()
    return await get_pins(limit, search, offset, viewer_id(identity))


@app.post("/api/pins", status_code=201)
async def create_pin_route(data: PinCreate, identity: Identity = Depends(get_current_identity)):
    require_db()
    try:
        return await create_pin(identity, data.image_data, data.mime_type)
    except InvalidImageError as e:
        raise HTTPException(400, str(e))
    except CaptioningError as e:
        raise HTTPException(502, f"Failed to generate metadata: {e}")
    except PyMongoError:
        raise HTTPException(503, "Database temporarily unavailable")


@app.get("/api/pins/{pin_id}")
async def get_pin_route(pin_id: str, identity: Optional[Identity] = Depends(get_optional_identity)):
    require_db()
    pin = await get_pin(pin_id, viewer_id(identity))
    if not pin:
        raise HTTPException(404, "Pin not found")
    return pin


# ---------- Likes & saves ----------

@app.post("/api/pins/{pin_id}/like")
async def like_pin_route(pin_id: str, identity: Identity = Depends(get_current_identity)):
    require_db()
    return await run_mutation(like_pin, identity, pin_id)


@app.delete("/api/pins/{pin_id}/like")
async def unlike_pin_route(pin_id: str, identity: Identity = Depends(get_current_identity)):
    require_db()
    return await run_mutation(unlike_pin, identity, pin_id)


@app.post("/api/pins/{pin_id}/save")
async def save_pin_route(pin_id: str, identity: Identity = Depends(get_current_identity)):
    require_db()
    return await run_mutation(save_pin, identity, pin_id)


@app.delete("/api/pins/{pin_id}/save")
async def unsave_pin_route(pin_id: str, identity: Identity = Depends(get_current_identity)):
    require_db()
    return await run_mutation(unsave_pin, identity, pin_id)


# ---------- Users ----------

@app.get("/api/users/me")
def get_me(identity: Identity = Depends(get_current_identity)):
    require_db()
    user = get_existing_user(identity.account_id)
    if not user:
        raise HTTPException(404, "User not registered")
    return serialize_user(user)


@app.post("/api/users/me")
def register_me(identity: Identity = Depends(get_current_identity)):
    require_db()
    try:
        user = store_user_in_database(identity)
    except PyMongoError:
        raise HTTPException(503, "Database temporarily unavailable")
    return serialize_user(user)


@app.get("/api/users/{account_id}")
def get_user(account_id: str):
    require_db()
    user = get_existing_user(account_id)
    if not user:
        raise HTTPException(404, "User not found")
    return serialize_user(user)


@app.get("/api/users/{account_id}/pins/created")
async def list_created_pins(
    account_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    require_db()
    return await get_created_pins_by_user(limit, viewer_id(identity), account_id, offset)


@app.get("/api/users/{account_id}/pins/liked")
async def list_liked_pins(
    account_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    require_db()
    return await get_liked_pins_by_user_id(limit, viewer_id(identity), account_id, offset)


@app.get("/api/users/{account_id}/pins/saved")
async def list_saved_pins(
    account_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
    identity: Optional[Identity] = Depends(get_optional_identity),
):
    require_db()
    return await get_saved_pins_by_user_id(limit, viewer_id(identity), account_id, offset)


# ---------- Images ----------

@app.get("/api/images/{file_id}")
def get_image(file_id: str):
    require_db()
    try:
        stream = open_image(file_id)
    except PyMongoError:
        raise HTTPException(503, "Database temporarily unavailable")
    if stream is None:
        raise HTTPException(404, "Image not found")
    media_type = (stream.metadata or {}).get("content_type", "application/octet-stream")
    return StreamingResponse(iter_image(stream), media_type=media_type)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
