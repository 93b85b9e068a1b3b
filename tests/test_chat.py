import unittest
from datetime import datetime, timedelta, timezone

from support import ALICE, BOB, CAROL, ApiTestCase, auth_headers, seed_people
from fake_supabase import FakeSupabase

from starlette.websockets import WebSocketDisconnect

from parley.chat.service import MessageStreamService
from parley.chat.view import (
    Composer,
    HistoryLoaded,
    InsertReceived,
    OptimisticAdded,
    RoomState,
    RoomStore,
    SendConfirmed,
    SendFailed,
    is_echo,
    reduce,
)
from parley.core.errors import TransientError
from parley.core.realtime import RealtimeHub
from parley.models.domain import Message

ROOM = "general"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def message(message_id, sender=ALICE, content="hi", client_id=None, offset=0):
    return Message(
        id=message_id,
        sender_id=sender,
        chat_room_id=ROOM,
        content=content,
        created_at=T0 + timedelta(seconds=offset),
        client_id=client_id,
    )


class MessageStreamServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = FakeSupabase()
        seed_people(self.db)
        self.hub = RealtimeHub()
        self.service = MessageStreamService(self.db, self.hub)

    def test_blank_message_is_a_no_op(self):
        for text in ("", "   ", "\n\t"):
            self.assertIsNone(self.service.post_message(ALICE, ROOM, text))

        self.assertEqual(self.db.rows("chat_messages"), [])

    def test_hello_then_blank_adds_exactly_one(self):
        self.service.post_message(ALICE, ROOM, "hello")
        self.service.post_message(ALICE, ROOM, "")

        self.assertEqual(len(self.service.load_history(ROOM)), 1)

    def test_history_is_ordered_by_created_at(self):
        rows = [("c", 30), ("a", 10), ("b", 20)]
        for content, second in rows:
            self.db.tables.setdefault("chat_messages", []).append(
                {
                    "id": content,
                    "sender_id": BOB,
                    "chat_room_id": ROOM,
                    "content": content,
                    "is_read": False,
                    "created_at": (T0 + timedelta(seconds=second)).isoformat(),
                }
            )

        history = self.service.load_history(ROOM)

        self.assertEqual([m.content for m in history], ["a", "b", "c"])
        stamps = [m.created_at for m in history]
        self.assertEqual(stamps, sorted(stamps))

    def test_history_is_per_room_and_carries_sender_details(self):
        self.service.post_message(ALICE, ROOM, "in general")
        self.service.post_message(BOB, "random", "elsewhere")
        self.service.post_message("ghost", ROOM, "who am i")

        history = self.service.load_history(ROOM)

        self.assertEqual([m.content for m in history], ["in general", "who am i"])
        self.assertEqual(history[0].sender_name, "Alice Liddell")
        self.assertEqual(history[1].sender_name, "Unknown User")
        self.assertEqual(
            history[1].sender_avatar, "https://api.dicebear.com/7.x/micah/svg?seed=ghost"
        )

    def test_history_failure_is_transient(self):
        self.db.fail("chat_messages", "select")

        with self.assertRaises(TransientError):
            self.service.load_history(ROOM)

    def test_live_insert_calls_back_once_with_display_name(self):
        received = []
        self.service.subscribe(ROOM, received.append)

        self.service.post_message(BOB, ROOM, "hey")
        self.service.post_message(BOB, "random", "not here")

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].content, "hey")
        self.assertEqual(received[0].sender_name, "bob")

    def test_live_insert_falls_back_when_profile_lookup_fails(self):
        received = []
        self.service.subscribe(ROOM, received.append)
        self.db.fail("profiles", "select")

        self.service.post_message(BOB, ROOM, "hey")

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].sender_name, "Unknown User")

    def test_echo_filter_drops_own_relay(self):
        received = []
        self.service.subscribe(
            ROOM, received.append, is_echo=lambda row: row.get("client_id") == "mine"
        )

        self.service.post_message(ALICE, ROOM, "own", client_id="mine")
        self.service.post_message(ALICE, ROOM, "other tab", client_id="theirs")

        self.assertEqual([m.content for m in received], ["other tab"])

    def test_unsubscribe_stops_delivery(self):
        received = []
        subscription = self.service.subscribe(ROOM, received.append)
        subscription.unsubscribe()

        self.service.post_message(BOB, ROOM, "hey")

        self.assertEqual(received, [])

    def test_mark_read_only_touches_messages_from_others(self):
        self.service.post_message(ALICE, ROOM, "mine")
        self.service.post_message(BOB, ROOM, "theirs")
        self.service.post_message(CAROL, ROOM, "also theirs")

        self.assertEqual(self.service.mark_read(ALICE, ROOM), 2)
        self.assertEqual(self.service.mark_read(ALICE, ROOM), 0)

        flags = {row["content"]: row["is_read"] for row in self.db.rows("chat_messages")}
        self.assertEqual(flags, {"mine": False, "theirs": True, "also theirs": True})


class RoomStateTests(unittest.TestCase):
    def test_optimistic_then_confirmed(self):
        state = reduce(RoomState(), OptimisticAdded(message("c1", client_id="c1")))
        self.assertEqual(state.pending, frozenset({"c1"}))

        state = reduce(state, SendConfirmed("c1", message("m1", client_id="c1")))

        self.assertEqual([m.id for m in state.messages], ["m1"])
        self.assertEqual(state.pending, frozenset())

    def test_failed_send_rolls_back(self):
        state = reduce(RoomState(), InsertReceived(message("m0")))
        state = reduce(state, OptimisticAdded(message("c1", client_id="c1")))

        state = reduce(state, SendFailed("c1"))

        self.assertEqual([m.id for m in state.messages], ["m0"])
        self.assertEqual(state.pending, frozenset())

    def test_echo_of_pending_message_is_ignored(self):
        state = reduce(RoomState(), OptimisticAdded(message("c1", client_id="c1")))

        self.assertTrue(is_echo(state, {"id": "m1", "client_id": "c1"}))
        self.assertFalse(is_echo(state, {"id": "m2", "client_id": "c2"}))
        self.assertFalse(is_echo(state, {"id": "m3"}))
        self.assertIs(reduce(state, InsertReceived(message("m1", client_id="c1"))), state)

    def test_duplicate_insert_is_ignored(self):
        state = reduce(RoomState(), InsertReceived(message("m1")))

        self.assertIs(reduce(state, InsertReceived(message("m1"))), state)

    def test_history_keeps_unconfirmed_messages(self):
        state = reduce(RoomState(), OptimisticAdded(message("c1", client_id="c1")))

        state = reduce(state, HistoryLoaded((message("m0"),)))

        self.assertEqual([m.id for m in state.messages], ["m0", "c1"])

    def test_history_merges_inserts_received_while_loading(self):
        state = reduce(RoomState(), InsertReceived(message("m1", offset=1)))
        state = reduce(state, InsertReceived(message("m2", offset=2)))

        state = reduce(state, HistoryLoaded((message("m0"), message("m1", offset=1))))

        self.assertEqual([m.id for m in state.messages], ["m0", "m1", "m2"])

    def test_store_reports_changes(self):
        store = RoomStore()

        self.assertTrue(store.dispatch(InsertReceived(message("m1"))))
        self.assertFalse(store.dispatch(InsertReceived(message("m1"))))
        self.assertEqual(len(store.snapshot().messages), 1)


class ComposerTests(unittest.TestCase):
    def setUp(self):
        self.db = FakeSupabase()
        seed_people(self.db)
        self.service = MessageStreamService(self.db, RealtimeHub())
        self.store = RoomStore()
        self.composer = Composer(self.service, self.store, ALICE, ROOM)

    def test_blank_draft_is_kept_and_nothing_sent(self):
        self.composer.draft = "   "

        self.assertIsNone(self.composer.submit())

        self.assertEqual(self.composer.draft, "   ")
        self.assertEqual(self.store.snapshot().messages, ())
        self.assertEqual(self.db.rows("chat_messages"), [])

    def test_submit_confirms_and_clears_draft(self):
        self.composer.draft = "hello"

        stored = self.composer.submit(client_id="c1")

        self.assertEqual(self.composer.draft, "")
        self.assertEqual([m.id for m in self.store.snapshot().messages], [stored.id])
        self.assertEqual(stored.client_id, "c1")
        self.assertEqual(self.store.snapshot().pending, frozenset())

    def test_hello_then_blank_grows_by_one(self):
        self.composer.draft = "hello"
        self.composer.submit()
        self.composer.draft = ""
        self.composer.submit()

        self.assertEqual(len(self.store.snapshot().messages), 1)

    def test_failed_post_rolls_back_and_keeps_draft(self):
        self.db.fail("chat_messages", "insert")
        self.composer.draft = "hello"

        with self.assertRaises(TransientError):
            self.composer.submit(client_id="c1")

        self.assertEqual(self.composer.draft, "hello")
        self.assertEqual(self.store.snapshot().messages, ())
        self.assertEqual(self.store.snapshot().pending, frozenset())

    def test_own_relay_is_not_shown_twice(self):
        self.service.subscribe(
            ROOM,
            lambda m: self.store.dispatch(InsertReceived(m)),
            is_echo=lambda row: is_echo(self.store.snapshot(), row),
        )
        self.composer.draft = "hello"

        self.composer.submit()

        self.assertEqual(len(self.store.snapshot().messages), 1)


class ChatRoutesTests(ApiTestCase):
    def test_post_and_read_history(self):
        sent = self.client.post(
            f"/chat/rooms/{ROOM}/messages",
            json={"content": "hello"},
            headers=auth_headers(ALICE),
        )
        self.assertEqual(sent.status_code, 201)
        self.assertEqual(sent.json()["message"]["sender_name"], "Alice Liddell")

        blank = self.client.post(
            f"/chat/rooms/{ROOM}/messages",
            json={"content": "  "},
            headers=auth_headers(ALICE),
        )
        self.assertEqual(blank.status_code, 204)

        history = self.client.get(f"/chat/rooms/{ROOM}/messages", headers=auth_headers(BOB))
        self.assertEqual(history.status_code, 200)
        self.assertEqual([m["content"] for m in history.json()["messages"]], ["hello"])

        read = self.client.post(f"/chat/rooms/{ROOM}/read", headers=auth_headers(BOB))
        self.assertEqual(read.json(), {"updated": 1})

    def test_failed_send_is_503(self):
        self.db.fail("chat_messages", "insert")

        res = self.client.post(
            f"/chat/rooms/{ROOM}/messages",
            json={"content": "hello"},
            headers=auth_headers(ALICE),
        )

        self.assertEqual(res.status_code, 503)
        self.assertEqual(res.json(), {"detail": "Failed to send message"})

    def test_socket_history_ack_and_relay(self):
        self.client.post(
            f"/chat/rooms/{ROOM}/messages", json={"content": "earlier"}, headers=auth_headers(BOB)
        )

        with self.client.websocket_connect(self.ws_url(f"/chat/ws/{ROOM}", ALICE)) as alice, \
                self.client.websocket_connect(self.ws_url(f"/chat/ws/{ROOM}", BOB)) as bob:
            history = alice.receive_json()
            self.assertEqual(history["type"], "history")
            self.assertEqual([m["content"] for m in history["messages"]], ["earlier"])
            bob.receive_json()

            alice.send_json({"type": "send", "content": "hi bob", "client_id": "c1"})

            ack = alice.receive_json()
            self.assertEqual(ack["type"], "ack")
            self.assertEqual(ack["client_id"], "c1")

            relayed = bob.receive_json()
            self.assertEqual(relayed["type"], "message")
            self.assertEqual(relayed["message"]["content"], "hi bob")
            self.assertEqual(relayed["message"]["sender_name"], "Alice Liddell")

    def test_message_posted_while_history_loads_is_not_lost(self):
        service = MessageStreamService(self.db, self.hub)
        service.post_message(BOB, ROOM, "earlier")
        self.db.after(
            "chat_messages", "select", lambda: service.post_message(BOB, ROOM, "during load")
        )

        with self.client.websocket_connect(self.ws_url(f"/chat/ws/{ROOM}", ALICE)) as alice:
            history = alice.receive_json()
            self.assertEqual(history["type"], "history")
            self.assertEqual(
                [m["content"] for m in history["messages"]], ["earlier", "during load"]
            )

            alice.send_json({"type": "send", "content": "after", "client_id": "c1"})
            # no second copy of "during load" queued ahead of the ack
            self.assertEqual(alice.receive_json()["type"], "ack")

    def test_socket_rejects_bad_token(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect(f"/chat/ws/{ROOM}?token=nope"):
                pass

        self.assertEqual(ctx.exception.code, 1008)


if __name__ == "__main__":
    unittest.main()
