import logging

from fastapi import APIRouter, Depends, Query, WebSocket
from starlette.concurrency import run_in_threadpool

from parley.core.dependencies import authenticate_websocket, current_user_id
from parley.core.errors import ParleyError
from parley.core.realtime import ChangeEvent
from parley.core.websockets import FramePump, serve

from .service import ContactGraphService, get_contact_service
from .schemas import (
    ProfileSearchResponseModel,
    ContactRequestModel,
    ContactRequestResponseModel,
    ContactRequestListResponseModel,
    RespondToRequestModel,
    RespondToRequestResponseModel,
    ContactListResponseModel,
    RemoveContactResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/search/{term}", response_model=ProfileSearchResponseModel, status_code=200)
def search_profiles(
    term: str,
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """
    Search for other users by username.

    Case-insensitive substring match on the username, up to 10 results in
    alphabetical order. The caller is never part of the results.

    **Errors**
    - `400`: Search term is shorter than 2 characters.
    - `503`: Database unreachable.
    """
    return {"profiles": service.search_profiles(user_id, term)}


@router.post("/requests", response_model=ContactRequestResponseModel, status_code=201)
def send_contact_request(
    data: ContactRequestModel,
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """
    Send a contact request to another user by username or email.

    **Input**
    - `target`: The recipient's username, or their email address.

    **Process**
    1. Resolve the target to a profile.
    2. Refuse requests to yourself.
    3. Refuse a second pending request to the same user.
    4. Refuse requests to users who are already contacts.
    5. Create a new `pending` request.

    **Errors**
    - `400`: Empty target, or the target is yourself.
    - `404`: No user with that username or email.
    - `409`: Request already pending, or already contacts.
    - `503`: Database unreachable.
    """
    request = service.send_request(user_id, data.target)
    return {"message": "Contact request sent successfully", "request": request}


@router.get(
    "/requests/incoming", response_model=ContactRequestListResponseModel, status_code=200
)
def list_incoming_requests(
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """Pending requests addressed to you, newest first, with sender details."""
    return {"requests": service.list_incoming_requests(user_id)}


@router.get(
    "/requests/outgoing", response_model=ContactRequestListResponseModel, status_code=200
)
def list_outgoing_requests(
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """Pending requests you sent, newest first, with recipient details."""
    return {"requests": service.list_outgoing_requests(user_id)}


@router.post(
    "/requests/{request_id}/respond",
    response_model=RespondToRequestResponseModel,
    status_code=200,
)
def respond_to_request(
    request_id: str,
    data: RespondToRequestModel,
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """
    Accept or decline a pending contact request.

    Only the recipient can answer. Accepting marks the request `accepted`
    and adds each user to the other's contacts; declining marks it
    `rejected` and adds nothing.

    **Errors**
    - `404`: No pending request with this id addressed to you.
    - `503`: Database unreachable. Nothing is left half-accepted.
    """
    request = service.respond_to_request(user_id, request_id, data.accept)
    verb = "accepted" if data.accept else "declined"
    return {"message": f"Contact request {verb}", "request": request}


@router.get("", response_model=ContactListResponseModel, status_code=200)
def list_contacts(
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    """
    Your contacts with display name, avatar, status and online flag.

    Names fall back from full name to username to "Anonymous User"; missing
    avatars are replaced by a generated one.
    """
    return {"contacts": service.list_contacts(user_id)}


@router.delete(
    "/{contact_id}", response_model=RemoveContactResponseModel, status_code=200
)
def remove_contact(
    contact_id: str,
    user_id: str = Depends(current_user_id),
    service: ContactGraphService = Depends(get_contact_service),
):
    service.remove_contact(user_id, contact_id)
    return {"contact_removed": True}


@router.websocket("/ws")
async def contacts_socket(
    websocket: WebSocket,
    token: str = Query(...),
    service: ContactGraphService = Depends(get_contact_service),
):
    """
    Live contact data. Sends `requests` and `contacts` frames on connect and
    again whenever a request addressed to you or one of your edges changes.
    """
    user_id = await authenticate_websocket(websocket, token)
    if user_id is None:
        return

    await websocket.accept()
    pump = FramePump()

    def push_requests():
        try:
            requests = service.list_incoming_requests(user_id)
        except ParleyError as e:
            pump.push({"type": "notice", "detail": e.message})
            return
        pump.push(
            {"type": "requests", "requests": [r.model_dump(mode="json") for r in requests]}
        )

    def push_contacts():
        try:
            contacts = service.list_contacts(user_id)
        except ParleyError as e:
            pump.push({"type": "notice", "detail": e.message})
            return
        pump.push(
            {"type": "contacts", "contacts": [c.model_dump(mode="json") for c in contacts]}
        )

    def on_request_change(event: ChangeEvent):
        push_requests()

    def on_contact_change(event: ChangeEvent):
        push_contacts()

    subscriptions = [
        service.hub.on_changes(
            "contact_requests", on_request_change, filter=("recipient_id", user_id)
        ),
        service.hub.on_changes(
            "contacts", on_contact_change, filter=("user_id", user_id)
        ),
    ]

    async def handle_frame(frame: dict):
        if frame.get("type") == "refresh":
            await run_in_threadpool(push_requests)
            await run_in_threadpool(push_contacts)
        else:
            pump.push({"type": "error", "detail": "Unknown frame type."})

    try:
        await run_in_threadpool(push_requests)
        await run_in_threadpool(push_contacts)
        await serve(websocket, pump, handle_frame)
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()
