from typing import Optional

from pydantic import BaseModel


class FriendRequestCreate(BaseModel):
    message: Optional[str] = ""


class FriendRequestResponse(BaseModel):
    action: str  # accept | reject
    response_message: Optional[str] = ""
