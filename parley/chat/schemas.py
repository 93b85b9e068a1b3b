from pydantic import BaseModel
from typing import List, Optional

from parley.models.domain import Message


# Send message
class SendMessageModel(BaseModel):
    content: str
    client_id: Optional[str] = None


class SendMessageResponseModel(BaseModel):
    message: Message


# History
class GetMessagesResponseModel(BaseModel):
    room_id: str
    messages: List[Message]


# Read receipts
class MarkReadResponseModel(BaseModel):
    updated: int
