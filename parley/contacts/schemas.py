from pydantic import BaseModel, field_validator
from typing import List

from parley.models.domain import Contact, ContactRequest, ProfileSummary


# Search
class ProfileSearchResponseModel(BaseModel):
    profiles: List[ProfileSummary]


# Send request
class ContactRequestModel(BaseModel):
    target: str

    @field_validator("target")
    @classmethod
    def strip_target(cls, target: str) -> str:
        return target.strip()


class ContactRequestResponseModel(BaseModel):
    message: str
    request: ContactRequest


# Incoming / outgoing
class ContactRequestListResponseModel(BaseModel):
    requests: List[ContactRequest]


# Respond
class RespondToRequestModel(BaseModel):
    accept: bool


class RespondToRequestResponseModel(BaseModel):
    message: str
    request: ContactRequest


# Contacts
class ContactListResponseModel(BaseModel):
    contacts: List[Contact]


class RemoveContactResponseModel(BaseModel):
    contact_removed: bool
