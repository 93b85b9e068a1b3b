import os
import logging
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from parley.core.errors import UnauthorizedError

load_dotenv()
logger = logging.getLogger(__name__)

security = HTTPBearer()


def decode_token(token: str) -> dict:
    """Verify a Supabase access token and return its claims."""
    try:
        payload = jwt.decode(
            token,
            os.getenv("SUPABASE_JWT_SECRET"),
            algorithms=["HS256"],
            issuer=f"{os.getenv('PUBLIC_SUPABASE_URL')}/auth/v1",
            options={"verify_aud": False},
            leeway=60,
        )

    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")

    except jwt.InvalidTokenError as e:
        logger.warning(f"jwt_verification_failed error={e}")
        raise UnauthorizedError("Invalid token")

    if not payload.get("sub"):
        raise UnauthorizedError("Token has no subject")

    return payload


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    try:
        return decode_token(credentials.credentials)
    except UnauthorizedError as e:
        raise HTTPException(status_code=401, detail=e.message)


def current_user_id(user=Depends(verify_token)) -> str:
    return user["sub"]


async def authenticate_websocket(websocket: WebSocket, token: str) -> Optional[str]:
    """
    Browsers cannot set headers on a WebSocket, so the access token rides in
    the query string. Closes the socket and returns None when it is invalid.
    """
    try:
        payload = decode_token(token)
    except UnauthorizedError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return None

    return payload["sub"]
