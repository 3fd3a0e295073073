from typing import Any, List, Optional

from pydantic import BaseModel

ALLOWED_REACTIONS = ["👍", "👎", "❤️", "😂", "😮", "😢", "😡", "👏", "🔥", "🎉"]

MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 6


class CommonChatMessageCreate(BaseModel):
    """Common chat message; type-specific rules are checked by the service"""
    message_type: Optional[str] = None
    content: Optional[str] = None
    is_anonymous: bool = False
    poll_question: Optional[str] = None
    poll_options: Optional[List[str]] = None
    allow_multiple_votes: bool = False
    image_caption: Optional[str] = None
    reply_to: Optional[str] = None


class CommonChatEdit(BaseModel):
    content: str


class PollVote(BaseModel):
    option_index: Any = None


class ReactionCreate(BaseModel):
    reaction: Optional[str] = None
