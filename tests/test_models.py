import json

import pytest

from pbx_streamer.core.cancellation import CancellationToken
from pbx_streamer.core.models import Credential, EventEnvelope
from pbx_streamer.errors import EventParseError


class TestEventEnvelope:

    def test_parse_participant_event(self):
        message = json.dumps({"event": {"event_type": 0, "entity": "/callcontrol/111/participants/42"}})
        envelope = EventEnvelope.parse(message)

        assert envelope.event_type == 0
        ref = envelope.participant_ref()
        assert ref.participant_id == "42"
        assert ref.extension == "111"
        assert ref.entity == "/callcontrol/111/participants/42"

    def test_parse_accepts_bytes(self):
        message = json.dumps({"event": {"event_type": 1, "entity": "/callcontrol/111"}}).encode()
        assert EventEnvelope.parse(message).entity == "/callcontrol/111"

    def test_entity_without_participants_segment_has_no_ref(self):
        envelope = EventEnvelope(event_type=0, entity="/callcontrol/111")
        assert envelope.participant_ref() is None

    def test_word_participants_without_segment_is_not_a_participant(self):
        envelope = EventEnvelope(event_type=0, entity="/callcontrol/participants")
        assert envelope.participant_ref() is None

    def test_trailing_path_after_participant_id_is_dropped(self):
        envelope = EventEnvelope(event_type=0, entity="/callcontrol/111/participants/42/stream")
        ref = envelope.participant_ref()
        assert ref.participant_id == "42"
        assert ref.entity == "/callcontrol/111/participants/42"

    @pytest.mark.parametrize("message", [
        "not json",
        b"\xff\xfe",
        json.dumps({"something": "else"}),
        json.dumps({"event": {"event_type": 0}}),
        json.dumps({"event": {"event_type": 0, "entity": 5}}),
        json.dumps("string"),
        pytest.param("[" * 200000, id="deeply-nested"),
    ])
    def test_malformed_messages_raise_parse_error(self, message):
        with pytest.raises(EventParseError):
            EventEnvelope.parse(message)


def test_credential_authorization_header():
    assert Credential(token="abc").authorization == "Bearer abc"


class TestCancellationToken:

    def test_cancel_propagates_to_children(self):
        root = CancellationToken()
        child = root.create_child()
        grandchild = child.create_child()

        root.cancel("shutdown")

        assert child.cancelled and grandchild.cancelled
        assert grandchild.reason == "shutdown"

    def test_child_cancel_leaves_parent_running(self):
        root = CancellationToken()
        child = root.create_child()
        sibling = root.create_child()

        child.cancel()

        assert not root.cancelled
        assert not sibling.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self):
        root = CancellationToken()
        root.cancel("shutdown")
        assert root.create_child().cancelled

    def test_released_child_is_not_cancelled_by_parent(self):
        root = CancellationToken()
        child = root.create_child()
        child.release()

        root.cancel()

        assert not child.cancelled
