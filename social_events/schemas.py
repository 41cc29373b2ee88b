"""
Pydantic schemas for the social events API.

Field names follow the JSON wire format (camelCase, ``_id``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Preferences(BaseModel):
    # Only the keys a client sends are stored.
    notifications: Optional[bool] = None
    emailUpdates: Optional[bool] = None


class UserUpsertRequest(BaseModel):
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    preferences: Optional[Preferences] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    email: str
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    preferences: Optional[dict] = None
    updatedAt: Optional[datetime] = None


class EventCreateRequest(BaseModel):
    # Required fields are checked by the handler so a missing one answers 400.
    title: Optional[str] = None
    description: Optional[str] = None
    eventType: Optional[str] = None
    thumbnailImage: Optional[str] = None
    location: Optional[str] = None
    eventDate: Optional[datetime] = None


class EventUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    eventType: Optional[str] = None
    thumbnailImage: Optional[str] = None
    location: Optional[str] = None
    eventDate: Optional[datetime] = None


class Participant(BaseModel):
    userEmail: str
    userName: Optional[str] = None
    userPhotoURL: Optional[str] = None
    joinedAt: Optional[datetime] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    title: str
    description: str
    eventType: str
    thumbnailImage: Optional[str] = None
    location: str
    eventDate: datetime
    userEmail: str
    userName: Optional[str] = None
    userPhotoURL: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    participants: Optional[list[Participant]] = None
    participantsCount: Optional[int] = None


class JoinResponse(BaseModel):
    message: str
