import logging
from typing import Dict, Iterable, List, Optional

from fastapi import Depends
from supabase import Client

from parley.core.errors import (
    DuplicateError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from parley.core.realtime import RealtimeHub, get_hub
from parley.core.supabase_client import UNIQUE_VIOLATION, execute, get_supabase
from parley.models.domain import (
    Contact,
    ContactEdge,
    ContactRequest,
    Profile,
    ProfileSummary,
    RequestStatus,
)
from parley.presence.tracker import online_user_ids

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id, username, full_name, avatar_url, status, bio"
REQUEST_COLUMNS = "id, sender_id, recipient_id, status, created_at"

MIN_SEARCH_LENGTH = 2
MAX_SEARCH_RESULTS = 10


class ContactGraphService:
    """
    Contact requests and the symmetric contact graph.

    A contact is stored as two rows in `contacts` (A -> B and B -> A), both
    written only when the recipient accepts a pending request.
    """

    def __init__(self, supabase: Client, hub: RealtimeHub):
        self.supabase = supabase
        self.hub = hub

    # lookups

    def profiles_by_id(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
        """One batched lookup for all distinct ids."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}

        res = execute(
            self.supabase.table("profiles").select(PROFILE_COLUMNS).in_("id", ids),
            "Database error while looking up profiles.",
        )
        return {row["id"]: Profile(**row) for row in res.data or []}

    def resolve_handle(self, handle: str) -> Optional[Profile]:
        """Exact username match first, then exact email."""
        handle = handle.strip().lower()

        res = execute(
            self.supabase.table("profiles")
            .select(PROFILE_COLUMNS)
            .eq("username", handle)
            .limit(1),
            "Database error while looking up user.",
        )
        if res.data:
            return Profile(**res.data[0])

        if "@" not in handle:
            return None

        res = execute(
            self.supabase.table("profiles")
            .select(PROFILE_COLUMNS)
            .eq("email", handle)
            .limit(1),
            "Database error while looking up user.",
        )
        return Profile(**res.data[0]) if res.data else None

    def contact_ids(self, user_id: str) -> List[str]:
        res = execute(
            self.supabase.table("contacts").select("contact_id").eq("user_id", user_id),
            "Failed to load contacts.",
        )
        return [row["contact_id"] for row in res.data or []]

    def are_contacts(self, user_id: str, other_id: str) -> bool:
        res = execute(
            self.supabase.table("contacts")
            .select("id")
            .eq("user_id", user_id)
            .eq("contact_id", other_id)
            .limit(1),
            "Database error while checking contacts.",
        )
        return bool(res.data)

    def search_profiles(self, current_user: str, term: str) -> List[ProfileSummary]:
        term = term.strip().lower()
        if len(term) < MIN_SEARCH_LENGTH:
            raise ValidationError(
                f"Search term must be at least {MIN_SEARCH_LENGTH} characters."
            )

        res = execute(
            self.supabase.table("profiles")
            .select(PROFILE_COLUMNS)
            .ilike("username", f"%{term}%")
            .neq("id", current_user)
            .order("username")
            .limit(MAX_SEARCH_RESULTS),
            "Server/Database error.",
        )
        return [
            ProfileSummary.from_profile(row["id"], Profile(**row))
            for row in res.data or []
        ]

    # requests

    def send_request(self, current_user: str, target_handle: str) -> ContactRequest:
        if not target_handle or not target_handle.strip():
            raise ValidationError("Enter a username or email.")

        target = self.resolve_handle(target_handle)
        if target is None:
            raise NotFoundError("User not found")

        if target.id == current_user:
            raise ValidationError("You cannot add yourself as a contact")

        existing = execute(
            self.supabase.table("contact_requests")
            .select("id")
            .eq("sender_id", current_user)
            .eq("recipient_id", target.id)
            .eq("status", RequestStatus.PENDING.value)
            .limit(1),
            "Database error while checking requests.",
        )
        if existing.data:
            raise DuplicateError("Contact request already sent")

        if self.are_contacts(current_user, target.id):
            raise DuplicateError("Already in your contacts")

        created = execute(
            self.supabase.table("contact_requests").insert(
                {
                    "sender_id": current_user,
                    "recipient_id": target.id,
                    "status": RequestStatus.PENDING.value,
                }
            ),
            "Failed to send request",
            on_error={UNIQUE_VIOLATION: DuplicateError("Contact request already sent")},
        )
        row = created.data[0]

        logger.info(
            f"contact_request_sent request_id={row['id']} "
            f"sender_id={current_user} recipient_id={target.id}"
        )
        self.hub.notify("contact_requests", "INSERT", row)

        return ContactRequest(
            **row, recipient=ProfileSummary.from_profile(target.id, target)
        )

    def _pending_requests(self, column: str, user_id: str) -> List[dict]:
        res = execute(
            self.supabase.table("contact_requests")
            .select(REQUEST_COLUMNS)
            .eq(column, user_id)
            .eq("status", RequestStatus.PENDING.value)
            .order("created_at", desc=True),
            "Failed to load contact requests.",
        )
        return res.data or []

    def list_incoming_requests(self, current_user: str) -> List[ContactRequest]:
        rows = self._pending_requests("recipient_id", current_user)
        senders = self.profiles_by_id(row["sender_id"] for row in rows)

        return [
            ContactRequest(
                **row,
                sender=ProfileSummary.from_profile(
                    row["sender_id"], senders.get(row["sender_id"])
                ),
            )
            for row in rows
        ]

    def list_outgoing_requests(self, current_user: str) -> List[ContactRequest]:
        rows = self._pending_requests("sender_id", current_user)
        recipients = self.profiles_by_id(row["recipient_id"] for row in rows)

        return [
            ContactRequest(
                **row,
                recipient=ProfileSummary.from_profile(
                    row["recipient_id"], recipients.get(row["recipient_id"])
                ),
            )
            for row in rows
        ]

    def respond_to_request(
        self, current_user: str, request_id: str, accept: bool
    ) -> ContactRequest:
        """
        Accept or decline a pending request addressed to `current_user`.

        Accepting writes both contact edges in one upsert. Edges that already
        exist are left alone, so repeating the write is harmless. If the edge
        write fails the request is put back to pending and the failure is
        raised, leaving no half-accepted request behind.
        """
        found = execute(
            self.supabase.table("contact_requests")
            .select(REQUEST_COLUMNS)
            .eq("id", request_id)
            .eq("recipient_id", current_user)
            .eq("status", RequestStatus.PENDING.value)
            .limit(1),
            "Failed to process request",
        )
        if not found.data:
            raise NotFoundError("No pending contact request found.")

        request = found.data[0]
        new_status = RequestStatus.ACCEPTED if accept else RequestStatus.REJECTED

        updated = execute(
            self.supabase.table("contact_requests")
            .update({"status": new_status.value})
            .eq("id", request_id)
            .eq("status", RequestStatus.PENDING.value),
            "Failed to process request",
        )
        if not updated.data:
            # answered concurrently from another session
            raise NotFoundError("No pending contact request found.")

        row = updated.data[0]

        if accept:
            try:
                self._write_edges(current_user, request["sender_id"])
            except TransientError:
                execute(
                    self.supabase.table("contact_requests")
                    .update({"status": RequestStatus.PENDING.value})
                    .eq("id", request_id),
                    "Failed to process request",
                )
                raise

        logger.info(
            f"contact_request_answered request_id={request_id} "
            f"recipient_id={current_user} status={new_status.value}"
        )
        self.hub.notify("contact_requests", "UPDATE", row)

        sender = self.profiles_by_id([request["sender_id"]]).get(request["sender_id"])
        return ContactRequest(
            **row, sender=ProfileSummary.from_profile(request["sender_id"], sender)
        )

    def _write_edges(self, user_id: str, other_id: str):
        edges = [
            ContactEdge(user_id=user_id, contact_id=other_id).model_dump(),
            ContactEdge(user_id=other_id, contact_id=user_id).model_dump(),
        ]
        execute(
            self.supabase.table("contacts").upsert(
                edges, on_conflict="user_id,contact_id", ignore_duplicates=True
            ),
            "Failed to add contact",
        )
        for edge in edges:
            self.hub.notify("contacts", "INSERT", edge)

    # contacts

    def list_contacts(self, current_user: str) -> List[Contact]:
        profiles = self.profiles_by_id(self.contact_ids(current_user))
        online = online_user_ids(self.hub)

        contacts = [
            Contact.from_profile(profile, online=profile.id in online)
            for profile in profiles.values()
        ]
        return sorted(contacts, key=lambda c: (c.name.lower(), c.id))

    def remove_contact(self, current_user: str, contact_id: str):
        if not self.are_contacts(current_user, contact_id):
            raise NotFoundError("Contact does not exist.")

        for user_id, other_id in ((current_user, contact_id), (contact_id, current_user)):
            execute(
                self.supabase.table("contacts")
                .delete()
                .eq("user_id", user_id)
                .eq("contact_id", other_id),
                "Failed to remove contact",
            )
            self.hub.notify(
                "contacts", "DELETE", {"user_id": user_id, "contact_id": other_id}
            )

        logger.info(f"contact_removed user_id={current_user} contact_id={contact_id}")


def get_contact_service(
    supabase: Client = Depends(get_supabase),
    hub: RealtimeHub = Depends(get_hub),
) -> ContactGraphService:
    return ContactGraphService(supabase, hub)
