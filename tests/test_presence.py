import unittest
from datetime import datetime, timezone

from support import ALICE, BOB, ApiTestCase, auth_headers, seed_people
from fake_supabase import FakeSupabase

from parley.auth.session import SIGNED_IN, SIGNED_OUT
from parley.core.realtime import RealtimeHub
from parley.presence.tracker import (
    PRESENCE_CHANNEL,
    PresenceTracker,
    drop_presence_on_sign_out,
    online_user_ids,
)

NOW = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)


class PresenceTrackerTests(unittest.TestCase):
    def setUp(self):
        self.db = FakeSupabase()
        seed_people(self.db)
        self.hub = RealtimeHub()

    def tracker(self, user_id):
        return PresenceTracker(self.db, self.hub, user_id, now=lambda: NOW)

    def status_of(self, user_id):
        return next(row["status"] for row in self.db.rows("profiles") if row["id"] == user_id)

    def test_start_marks_online_and_tracks(self):
        alice = self.tracker(ALICE)

        alice.start()

        self.assertEqual(self.status_of(ALICE), "Online")
        self.assertEqual(online_user_ids(self.hub), {ALICE})
        self.assertTrue(alice.is_online(ALICE))
        state = self.hub.channel(PRESENCE_CHANNEL).presence_state()
        self.assertEqual(state[ALICE][0]["online_at"], "2026-04-01T09:30:00Z")

    def test_others_see_joins_and_leaves(self):
        alice = self.tracker(ALICE)
        bob = self.tracker(BOB)
        seen = []
        alice.on_change(lambda users: seen.append(sorted(users)))
        alice.start()

        bob.start()
        self.assertTrue(alice.is_online(BOB))

        bob.stop()
        self.assertFalse(alice.is_online(BOB))
        self.assertEqual(self.status_of(BOB), "Offline")
        self.assertEqual(seen[-1], [ALICE])
        self.assertIn(sorted([ALICE, BOB]), seen)

    def test_second_tab_keeps_user_online(self):
        first = self.tracker(ALICE)
        second = PresenceTracker(
            self.db, self.hub, ALICE, now=lambda: NOW.replace(minute=31)
        )
        first.start()
        second.start()

        first.stop()

        self.assertEqual(online_user_ids(self.hub), {ALICE})

    def test_status_write_failure_does_not_block_presence(self):
        self.db.fail("profiles", "update")
        alice = self.tracker(ALICE)

        with self.assertLogs("parley.presence.tracker", level="WARNING"):
            alice.start()
        self.assertEqual(online_user_ids(self.hub), {ALICE})

        with self.assertLogs("parley.presence.tracker", level="WARNING"):
            alice.stop()
        self.assertEqual(online_user_ids(self.hub), set())
        self.assertEqual(alice.online_users, {})

    def test_stop_without_start_is_harmless(self):
        self.tracker(ALICE).stop()

        self.assertEqual(self.db.calls, [])

    def test_sign_out_drops_presence(self):
        self.tracker(ALICE).start()
        listener = drop_presence_on_sign_out(self.hub)

        listener(SIGNED_IN, ALICE)
        self.assertEqual(online_user_ids(self.hub), {ALICE})

        listener(SIGNED_OUT, ALICE)
        self.assertEqual(online_user_ids(self.hub), set())


class PresenceRoutesTests(ApiTestCase):
    def test_online_list_follows_sockets(self):
        self.assertEqual(
            self.client.get("/presence/online", headers=auth_headers(BOB)).json(),
            {"online": []},
        )

        with self.client.websocket_connect(self.ws_url("/presence/ws", ALICE)) as ws:
            self.assertEqual(ws.receive_json(), {"type": "presence", "online": [ALICE]})

            res = self.client.get("/presence/online", headers=auth_headers(BOB))
            self.assertEqual(res.json(), {"online": [ALICE]})

            ws.send_json({"type": "ping"})
            self.assertEqual(ws.receive_json(), {"type": "presence", "online": [ALICE]})

        self.assertEqual(
            self.client.get("/presence/online", headers=auth_headers(BOB)).json(),
            {"online": []},
        )


if __name__ == "__main__":
    unittest.main()
