from typing import Optional

AVATAR_URL_TEMPLATE = "https://api.dicebear.com/7.x/micah/svg?seed={seed}"

ANONYMOUS_NAME = "Anonymous User"
UNKNOWN_SENDER_NAME = "Unknown User"
DEFAULT_CALLER_NAME = "User"
DEFAULT_STATUS = "Available"


def generated_avatar(seed: str) -> str:
    """Deterministic placeholder avatar for a user (or room) id."""
    return AVATAR_URL_TEMPLATE.format(seed=seed)


def display_name(profile, fallback: str = ANONYMOUS_NAME) -> str:
    """full_name -> username -> fallback. `profile` may be None."""
    if profile is None:
        return fallback
    return profile.full_name or profile.username or fallback


def avatar_for(user_id: str, avatar_url: Optional[str] = None) -> str:
    return avatar_url or generated_avatar(user_id)


def status_for(status: Optional[str]) -> str:
    return status or DEFAULT_STATUS
