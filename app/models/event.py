from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Organizer(BaseModel):
    name: str
    contact: str
    email: str


class EventCreate(BaseModel):
    """Event submission; required fields are checked by the service"""
    title: Optional[str] = Field(None, max_length=150)
    description: Optional[str] = Field(None, max_length=2000)
    event_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    venue: Optional[str] = None
    organizer: Optional[Organizer] = None
    max_participants: int = 0
    registration_deadline: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class EventComment(BaseModel):
    text: str
