from enum import Enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from parley.utils.display import (
    ANONYMOUS_NAME,
    UNKNOWN_SENDER_NAME,
    avatar_for,
    display_name,
    status_for,
)


"""
Typed records for rows coming back from Supabase. Joined or nullable columns
are Optional here and resolved with the display helpers, never in routers.
"""


class Profile(BaseModel):
    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None


class ProfileSummary(BaseModel):
    id: str
    name: str
    username: Optional[str] = None
    avatar: str

    @classmethod
    def from_profile(cls, user_id: str, profile: Optional[Profile]) -> "ProfileSummary":
        return cls(
            id=user_id,
            name=display_name(profile, ANONYMOUS_NAME),
            username=profile.username if profile else None,
            avatar=avatar_for(user_id, profile.avatar_url if profile else None),
        )


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ContactRequest(BaseModel):
    id: str
    sender_id: str
    recipient_id: str
    status: RequestStatus
    created_at: datetime
    sender: Optional[ProfileSummary] = None
    recipient: Optional[ProfileSummary] = None


class ContactEdge(BaseModel):
    user_id: str
    contact_id: str


class Contact(BaseModel):
    id: str
    name: str
    avatar: str
    status: str
    online: bool = False

    @classmethod
    def from_profile(cls, profile: Profile, online: bool = False) -> "Contact":
        return cls(
            id=profile.id,
            name=display_name(profile, ANONYMOUS_NAME),
            avatar=avatar_for(profile.id, profile.avatar_url),
            status=status_for(profile.status),
            online=online,
        )


class Message(BaseModel):
    id: str
    sender_id: str
    chat_room_id: str
    content: str
    created_at: datetime
    is_read: bool = False
    recipient_id: Optional[str] = None
    client_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None

    def with_sender(self, profile: Optional[Profile]) -> "Message":
        return self.model_copy(
            update={
                "sender_name": display_name(profile, UNKNOWN_SENDER_NAME),
                "sender_avatar": avatar_for(
                    self.sender_id, profile.avatar_url if profile else None
                ),
            }
        )


class PresenceEntry(BaseModel):
    user_id: str
    online_at: datetime
