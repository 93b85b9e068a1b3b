import re
from pydantic import BaseModel, SecretStr, field_validator
from typing import List, Optional

from parley.models.domain import Contact, ContactRequest, Profile


USERNAME_RE = r"^[a-zA-Z0-9_.]+$"


def check_username(username: str) -> str:
    # Length check (min 3, max 20)
    if not (3 <= len(username) <= 20):
        raise ValueError(
            f"Username must be between 3 and 20 characters long (got {len(username)})."
        )

    # Allow only characters (letters, numbers, underscores, and dots)
    if not re.match(USERNAME_RE, username):
        raise ValueError(
            "Username must only contain letters, numbers, underscores, and dots."
        )

    return username.lower()


"""
auth/register
"""


class UserRegistrationModel(BaseModel):
    email: str
    username: str
    password: SecretStr
    full_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, email: str) -> str:
        return email.strip().lower()

    @field_validator("username")
    @classmethod
    def validate_username(cls, username: str) -> str:
        return check_username(username)

    @field_validator("password")
    @classmethod
    def validate_password(cls, password: SecretStr) -> SecretStr:
        password_str = password.get_secret_value()

        # Minimum length of 8 characters (no maximum)
        if len(password_str) < 8:
            raise ValueError("Password must be at least 8 characters long.")

        # Must include letters (upper and lower), numbers, and special characters.
        password_regex = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[!@#$%^&*()_+={}\[\]|\\;:'\",.<>?/~`]).{8,}$"

        if not re.match(password_regex, password_str):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, one number, and one special character."
            )

        return password


class UserRegistrationResponseModel(BaseModel):
    id: str
    email: str
    username: str


"""
auth/login
"""


class UserLoginModel(BaseModel):
    email: str
    password: SecretStr


class UserLoginResponseModel(BaseModel):
    access_token: str
    expires_in: int
    user_id: str
    email: str


"""
auth/access
"""


class AccessTokenResponseModel(BaseModel):
    access_token: str


"""
auth/me
"""


class AuthInfo(BaseModel):
    id: str
    email: Optional[str] = None


class MeResponseModel(BaseModel):
    auth: AuthInfo
    profile: Profile
    contacts: List[Contact]
    incoming_requests: List[ContactRequest]
    outgoing_requests: List[ContactRequest]


"""
auth/profile
"""


class ProfileUpdateModel(BaseModel):
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: Optional[str] = None
    bio: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, username: Optional[str]) -> Optional[str]:
        if username is None:
            return None
        return check_username(username)


class ProfileResponseModel(BaseModel):
    profile: Profile


"""
auth/logout
"""


class LogoutResponseModel(BaseModel):
    logged_out: bool
