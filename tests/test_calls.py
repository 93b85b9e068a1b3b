import unittest

from support import ALICE, BOB, CAROL, ApiTestCase

from parley.calls.signaling import CALL_CHANNEL, CALL_EVENT, CallSession, CallState, format_duration
from parley.core.errors import ValidationError
from parley.core.realtime import RealtimeHub


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class CallSessionTests(unittest.TestCase):
    def setUp(self):
        self.hub = RealtimeHub()
        self.channel = self.hub.channel(CALL_CHANNEL)
        self.clock = FakeClock()
        self.alice = self.session(ALICE, "Alice")
        self.bob = self.session(BOB, "bob")
        self.channel.on_broadcast(CALL_EVENT, self.alice.receive)
        self.channel.on_broadcast(CALL_EVENT, self.bob.receive)

    def session(self, user_id, name):
        return CallSession(
            user_id,
            caller_name=name,
            caller_avatar=f"avatar-{user_id}",
            channel=self.channel,
            room_id="general",
            clock=self.clock,
        )

    def test_direct_call_rings_only_the_recipient(self):
        carol = self.session(CAROL, "Carol")
        self.channel.on_broadcast(CALL_EVENT, carol.receive)

        notice = self.alice.initiate("video", recipient_id=BOB, recipient_name="bob")

        self.assertEqual(notice, "Initiating video call to bob")
        self.assertEqual(self.alice.state, CallState.RINGING)
        self.assertEqual(self.bob.state, CallState.RINGING)
        self.assertEqual(self.bob.peer_name, "Alice")
        self.assertEqual(self.bob.peer_avatar, f"avatar-{ALICE}")
        self.assertEqual(carol.state, CallState.IDLE)

    def test_room_call_rings_everyone_else(self):
        notice = self.alice.initiate("audio")

        self.assertEqual(notice, "Initiating audio call to General Chat")
        self.assertEqual(self.bob.state, CallState.RINGING)
        self.assertEqual(self.bob.call_type, "audio")

    def test_accept_then_duration_and_toggles(self):
        self.alice.initiate("video", recipient_id=BOB)

        self.assertEqual(self.bob.accept(), "Call accepted")
        self.clock.now += 75

        self.assertEqual(self.bob.snapshot()["duration"], "01:15")
        self.assertTrue(self.bob.toggle_mute())
        self.assertTrue(self.bob.toggle_video())
        self.assertFalse(self.bob.toggle_mute())

        self.assertEqual(self.bob.end(), "Call ended")
        self.assertEqual(self.bob.snapshot()["state"], "idle")

    def test_decline_is_local(self):
        self.alice.initiate("audio", recipient_id=BOB)

        self.assertEqual(self.bob.decline(), "Call declined")

        self.assertEqual(self.bob.state, CallState.IDLE)
        self.assertEqual(self.alice.state, CallState.RINGING)

    def test_caller_cannot_accept_own_call(self):
        self.alice.initiate("audio", recipient_id=BOB)

        with self.assertRaises(ValidationError):
            self.alice.accept()

    def test_cannot_call_self_or_while_busy(self):
        with self.assertRaises(ValidationError):
            self.alice.initiate("audio", recipient_id=ALICE)

        self.alice.initiate("audio", recipient_id=BOB)
        with self.assertRaises(ValidationError):
            self.alice.initiate("audio", recipient_id=CAROL)

    def test_busy_recipient_ignores_second_call(self):
        carol = self.session(CAROL, "Carol")
        self.alice.initiate("audio", recipient_id=BOB)

        carol.initiate("video", recipient_id=BOB)

        self.assertEqual(self.bob.peer_name, "Alice")
        self.assertEqual(self.bob.call_type, "audio")

    def test_unknown_call_type(self):
        with self.assertRaises(ValidationError):
            self.alice.initiate("hologram", recipient_id=BOB)

    def test_audio_call_has_no_video_toggle(self):
        self.alice.initiate("audio", recipient_id=BOB)
        self.bob.accept()

        with self.assertRaises(ValidationError):
            self.bob.toggle_video()

    def test_format_duration(self):
        self.assertEqual(format_duration(0), "00:00")
        self.assertEqual(format_duration(61), "01:01")
        self.assertEqual(format_duration(-5), "00:00")


class CallRoutesTests(ApiTestCase):
    def test_incoming_call_over_sockets(self):
        with self.client.websocket_connect(self.ws_url("/calls/ws", ALICE)) as alice, \
                self.client.websocket_connect(self.ws_url("/calls/ws", BOB)) as bob:
            self.assertEqual(alice.receive_json()["call"]["state"], "idle")
            self.assertEqual(bob.receive_json()["call"]["state"], "idle")

            alice.send_json({"action": "initiate", "call_type": "audio", "recipient_id": BOB})

            ringing = bob.receive_json()
            self.assertEqual(ringing["call"]["state"], "ringing")
            self.assertEqual(ringing["call"]["peer_name"], "Alice Liddell")
            self.assertEqual(
                bob.receive_json(),
                {"type": "notice", "detail": "Incoming audio call from Alice Liddell"},
            )

            bob.send_json({"action": "accept"})
            self.assertEqual(bob.receive_json()["call"]["state"], "connected")
            self.assertEqual(bob.receive_json(), {"type": "notice", "detail": "Call accepted"})

    def test_invalid_action_is_reported(self):
        with self.client.websocket_connect(self.ws_url("/calls/ws", ALICE)) as alice:
            alice.receive_json()

            alice.send_json({"action": "accept"})

            self.assertEqual(
                alice.receive_json(), {"type": "error", "detail": "No incoming call to accept"}
            )


if __name__ == "__main__":
    unittest.main()
