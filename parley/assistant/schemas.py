from pydantic import BaseModel
from typing import List, Literal


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AssistantChatModel(BaseModel):
    prompt: str
    history: List[ChatTurn] = []


class AssistantChatResponseModel(BaseModel):
    response: str
