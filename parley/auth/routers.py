import os
import logging
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import APIRouter, status, HTTPException, Request, Response, Depends
from fastapi.responses import JSONResponse
from supabase import Client

from parley.contacts.service import ContactGraphService, get_contact_service
from parley.core.dependencies import current_user_id, verify_token
from parley.core.errors import DuplicateError, NotFoundError, ParleyError, ValidationError
from parley.core.supabase_client import execute, get_supabase
from parley.models.domain import Profile
from parley.utils.env_helper import env_bool, env_none_or_str
from .session import SessionManager, get_session_manager
from .schemas import (
    UserRegistrationModel,
    UserRegistrationResponseModel,
    UserLoginModel,
    UserLoginResponseModel,
    AccessTokenResponseModel,
    MeResponseModel,
    ProfileUpdateModel,
    ProfileResponseModel,
    LogoutResponseModel,
)


load_dotenv()
logger = logging.getLogger(__name__)
router = APIRouter()

COOKIE_NAME = "refresh_token"
COOKIE_PATH = "/auth/access"
COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days

PROFILE_COLUMNS = "id, username, full_name, avatar_url, status, bio, email"


def _set_refresh_cookie(response: Response, refresh_token: str):
    response.set_cookie(
        key=COOKIE_NAME,
        value=refresh_token,
        httponly=env_bool("HTTPONLY", default=True),
        secure=env_bool("SECURE", default=False),
        samesite=os.getenv("SAMESITE", "Lax"),
        domain=env_none_or_str("COOKIE_DOMAIN", None),
        max_age=COOKIE_MAX_AGE,
        path=COOKIE_PATH,
    )


def _ensure_profile(supabase: Client, user) -> None:
    """Profiles are created on sign-up; accounts made elsewhere get one on first login."""
    existing = execute(
        supabase.table("profiles").select("id").eq("id", user.id).limit(1),
        "Database error while loading profile.",
    )
    if existing.data:
        return

    metadata = getattr(user, "user_metadata", None) or {}
    username = (metadata.get("username") or user.email.split("@")[0]).lower()

    execute(
        supabase.table("profiles").upsert(
            {
                "id": user.id,
                "username": username,
                "full_name": metadata.get("full_name") or username,
                "email": user.email,
            },
            on_conflict="id",
            ignore_duplicates=True,
        ),
        "Database error while creating profile.",
    )
    logger.info(f"profile_created_on_login user_id={user.id} username={username}")


@router.post("/register", response_model=UserRegistrationResponseModel, status_code=201)
def register_user(
    data: UserRegistrationModel,
    supabase: Client = Depends(get_supabase),
    session: SessionManager = Depends(get_session_manager),
):
    """
    Register a new user.

    This endpoint creates a Supabase Auth user and a corresponding profile record.
    It accepts an email, username, password and optional full name, performs
    basic validation, and returns the new user's ID and email upon successful
    registration.

    **Input Fields**
    - **email**: A valid user email. Must not already exist in Supabase Auth.
    - **username**: 3–20 characters, containing only letters, numbers, underscores, or dots.
    - **password**: Minimum 8 characters. Must include:
        - at least one lowercase letter
        - at least one uppercase letter
        - at least one number
        - at least one special character
    - **full_name**: Optional display name; defaults to the username.

    **Returns**
    - User ID
    - Email
    - Username

    **Errors**
    - 400: Invalid input or failed to create user
    - 409: Email or Username already registered
    - 503: Supabase unreachable
    """
    # Check if username already exists
    username_check = execute(
        supabase.table("profiles").select("id").eq("username", data.username),
        "Database error while checking username.",
    )
    if username_check.data:
        raise HTTPException(status_code=409, detail="Username already taken.")

    full_name = data.full_name or data.username

    res = session.sign_up(
        data.email,
        data.password.get_secret_value(),
        {"username": data.username, "full_name": full_name},
    )
    user_id = res.user.id

    execute(
        supabase.table("profiles").insert(
            {
                "id": user_id,
                "username": data.username,
                "full_name": full_name,
                "email": data.email,
            }
        ),
        "Database error while creating profile.",
    )

    logger.info(f"user_register_success email={data.email}, username={data.username}")

    return {
        "id": user_id,
        "email": res.user.email,
        "username": data.username,
    }


@router.post("/login", response_model=UserLoginResponseModel, status_code=200)
def login_user(
    user_data: UserLoginModel,
    response: Response,
    supabase: Client = Depends(get_supabase),
    session: SessionManager = Depends(get_session_manager),
):
    """
    Authenticate a user with email and password.

    This endpoint checks credentials against Supabase Auth and returns a new
    access token along with basic user information. The refresh token is set
    in an HttpOnly cookie. A profile is created if the account has none yet.

    **Returns**
    - `access_token`: A short-lived JWT used for authorized API requests.
    - `user_id`: The authenticated user's ID.
    - `email`: The authenticated user's email.

    **Errors**
    - 401: Invalid email or password
    - 503: Supabase unreachable or returned an unexpected response
    """
    res = session.sign_in_with_password(
        user_data.email, user_data.password.get_secret_value()
    )

    _ensure_profile(supabase, res.user)
    _set_refresh_cookie(response, res.session.refresh_token)

    return {
        "access_token": res.session.access_token,
        "expires_in": res.session.expires_in,
        "user_id": res.user.id,
        "email": res.user.email,
    }


@router.get("/access", response_model=AccessTokenResponseModel, status_code=200)
def get_new_access(
    request: Request,
    response: Response,
    session: SessionManager = Depends(get_session_manager),
):
    """
    Issue a new access token using the refresh token stored in an HttpOnly cookie.

    If rotation is enabled, a new refresh token will be returned and the
    cookie will be updated automatically.

    **Errors**
    - 401: Missing, expired, revoked, or invalid refresh token
    """
    refresh_token = request.cookies.get(COOKIE_NAME)

    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token provided.",
        )

    try:
        res = session.refresh_session(refresh_token)
    except ParleyError as e:
        failed = JSONResponse(status_code=e.status_code, content={"detail": e.message})
        failed.delete_cookie(
            key=COOKIE_NAME,
            domain=env_none_or_str("COOKIE_DOMAIN", None),
            path=COOKIE_PATH,
        )
        return failed

    _set_refresh_cookie(response, res.session.refresh_token)
    return {"access_token": res.session.access_token}


@router.get("/me", response_model=MeResponseModel, status_code=200)
def get_me(
    user=Depends(verify_token),
    supabase: Client = Depends(get_supabase),
    contacts: ContactGraphService = Depends(get_contact_service),
):
    """
    Get the authenticated user's profile together with contacts and pending
    contact requests.

    **Returns**
    - `auth`: user's id & email (from the access token)
    - `profile`: the user's profile row
    - `contacts`: contacts with display fields and online flag
    - `incoming_requests`: users who sent YOU a request
    - `outgoing_requests`: users YOU sent a request to

    **Errors**
    - `401`: Invalid or expired token
    - `404`: Profile not found
    - `503`: Database unreachable
    """
    user_id = user["sub"]

    profile_query = execute(
        supabase.table("profiles").select(PROFILE_COLUMNS).eq("id", user_id).limit(1),
        "Database error while loading profile.",
    )
    if not profile_query.data:
        raise NotFoundError("Profile not found.")

    return {
        "auth": {"id": user_id, "email": user.get("email")},
        "profile": Profile(**profile_query.data[0]),
        "contacts": contacts.list_contacts(user_id),
        "incoming_requests": contacts.list_incoming_requests(user_id),
        "outgoing_requests": contacts.list_outgoing_requests(user_id),
    }


@router.patch("/profile", response_model=ProfileResponseModel, status_code=200)
def update_profile(
    data: ProfileUpdateModel,
    user_id: str = Depends(current_user_id),
    supabase: Client = Depends(get_supabase),
):
    """
    Update your own profile. Only the fields present in the body change.

    **Errors**
    - `400`: Nothing to update, or an invalid username
    - `409`: Username already taken
    """
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update.")

    if changes.get("username"):
        taken = execute(
            supabase.table("profiles")
            .select("id")
            .eq("username", changes["username"])
            .neq("id", user_id)
            .limit(1),
            "Database error while checking username.",
        )
        if taken.data:
            raise DuplicateError("Username already taken.")

    changes["updated_at"] = datetime.now(timezone.utc).isoformat()

    updated = execute(
        supabase.table("profiles").update(changes).eq("id", user_id),
        "Error updating profile",
    )
    if not updated.data:
        raise NotFoundError("Profile not found.")

    logger.info(f"profile_updated user_id={user_id} fields={sorted(changes)}")
    return {"profile": Profile(**updated.data[0])}


@router.post("/logout", response_model=LogoutResponseModel)
def logout(
    user_id: str = Depends(current_user_id),
    session: SessionManager = Depends(get_session_manager),
):
    """
    Logs out the user by clearing the refresh_token cookie that was used
    during authentication. Supabase itself cannot invalidate JWTs early,
    so logout consists of deleting the refresh token stored in cookies.
    Open presence entries of the user are dropped as well.
    """
    session.sign_out(user_id)

    response = JSONResponse({"logged_out": True})

    # Delete the refresh token cookie
    response.delete_cookie(
        key=COOKIE_NAME,
        path=COOKIE_PATH,  # must match set_cookie()
        domain=env_none_or_str("COOKIE_DOMAIN", None),
    )

    return response
