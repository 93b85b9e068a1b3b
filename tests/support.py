import os
import unittest

from fake_supabase import JWT_SECRET, SUPABASE_URL, FakeSupabase, make_token

os.environ["SUPABASE_JWT_SECRET"] = JWT_SECRET
os.environ["PUBLIC_SUPABASE_URL"] = SUPABASE_URL
os.environ["SECRET_API_KEY"] = "service-role-key"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient

from parley.assistant.service import get_assistant_bridge
from parley.core.realtime import RealtimeHub, get_hub
from parley.core.supabase_client import get_supabase
from parley.main import app

ALICE = "00000000-0000-0000-0000-00000000a11c"
BOB = "00000000-0000-0000-0000-000000000b0b"
CAROL = "00000000-0000-0000-0000-0000000ca201"


def seed_people(db: FakeSupabase):
    db.add_profile(ALICE, username="alice", full_name="Alice Liddell", email="alice@example.com")
    db.add_profile(BOB, username="bob", full_name=None, email="bob@example.com")
    db.add_profile(CAROL, username="carol", full_name="Carol Danvers", email="carol@example.com")


def auth_headers(user_id: str, email: str = None) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


class ApiTestCase(unittest.TestCase):
    """App wired to a fresh fake store and realtime hub for every test."""

    bridge = None

    def setUp(self):
        self.db = FakeSupabase()
        seed_people(self.db)
        self.hub = RealtimeHub()

        app.dependency_overrides[get_supabase] = lambda: self.db
        app.dependency_overrides[get_hub] = lambda: self.hub
        if self.bridge is not None:
            app.dependency_overrides[get_assistant_bridge] = lambda: self.bridge

        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()

    def ws_url(self, path: str, user_id: str) -> str:
        return f"{path}?token={make_token(user_id)}"
