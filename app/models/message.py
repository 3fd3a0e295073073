from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DirectMessageCreate(BaseModel):
    receiver_id: str
    message: str = Field(..., max_length=1000)
    listing_id: Optional[str] = None


class DirectMessageEdit(BaseModel):
    message: str = Field(..., max_length=1000)


class ConversationSync(BaseModel):
    other_user_id: Optional[str] = None
    last_sync_timestamp: Optional[datetime] = None
