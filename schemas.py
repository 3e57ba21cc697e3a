"""
Database Schemas for Sharely

Each Pydantic model maps to a MongoDB collection with the lowercase class name.
- User -> "user"
- Pin -> "pin"
- LikedPin -> "likedpin"
- SavedPin -> "savedpin"
"""

from pydantic import BaseModel, Field
from typing import List, Optional

class User(BaseModel):
    account_id: str = Field(..., description="Identity provider account id")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email address")
    avatar: Optional[str] = Field(None, description="Avatar URL, null means fallback image")

class Pin(BaseModel):
    title: str = Field(..., description="Short title, 32 chars by convention")
    description: str = Field("", description="Image description, 1000 chars by convention")
    tags: List[str] = Field(default_factory=list, description="Lowercase tags, 12 at most by convention")
    image_url: str = Field(..., description="Permanent image reference")
    created_by: str = Field(..., description="Account id of the creator")
    username: str = Field(..., description="Creator display name at creation time")
    likes: int = Field(0, ge=0, description="Cached total likes")
    saves: int = Field(0, ge=0, description="Cached total saves")

class LikedPin(BaseModel):
    user_id: str = Field(..., description="Account id of the liker")
    pin_id: str = Field(..., description="Target pin id as string")
    pin: Optional[str] = Field(None, description="Relationship to the pin document")
    user: Optional[str] = Field(None, description="Relationship to the user document")

class SavedPin(BaseModel):
    user_id: str = Field(..., description="Account id of the saver")
    pin_id: str = Field(..., description="Target pin id as string")
    pin: Optional[str] = Field(None, description="Relationship to the pin document")
    user: Optional[str] = Field(None, description="Relationship to the user document")

class PinMetadata(BaseModel):
    """Captioning output for an uploaded image."""
    title: str = Field(..., description="Short title")
    description: str = Field("", description="Detailed description")
    tags: List[str] = Field(default_factory=list, description="Lowercase tags")
