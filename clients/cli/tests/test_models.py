from datetime import datetime, timezone

import pytest

from masterdom_chat.errors import ProtocolError
from masterdom_chat.models import ConversationDetail, Message, parse_timestamp


def test_parse_timestamp_handles_go_nanoseconds_and_offsets():
    assert parse_timestamp("2024-03-05T10:15:30.123456789Z") == datetime(
        2024, 3, 5, 10, 15, 30, 123456, tzinfo=timezone.utc
    )
    assert parse_timestamp("2024-03-05T12:15:30.5+02:00") == datetime(
        2024, 3, 5, 10, 15, 30, 500000, tzinfo=timezone.utc
    )
    assert parse_timestamp("2024-03-05T10:15:30").tzinfo == timezone.utc


@pytest.mark.parametrize("value", [None, "", "yesterday", 1709633730])
def test_parse_timestamp_rejects_garbage(value):
    with pytest.raises(ProtocolError):
        parse_timestamp(value)


def test_message_from_json_fills_conversation_id():
    message = Message.from_json(
        {
            "id": "m1",
            "senderId": "u-1",
            "senderFirstName": "Anna",
            "content": "hello",
            "createdAt": "2024-01-01T09:00:00Z",
            "isRead": True,
        },
        "c9",
    )

    assert message.conversation_id == "c9"
    assert message.sender_display_name == "Anna"
    assert message.is_read is True
    assert message.created_at == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)


def test_message_requires_id_and_sender():
    with pytest.raises(ProtocolError):
        Message.from_json({"senderId": "u-1", "createdAt": "2024-01-01T09:00:00Z"})
    with pytest.raises(ProtocolError):
        Message.from_json({"id": "m1", "createdAt": "2024-01-01T09:00:00Z"})
    with pytest.raises(ProtocolError):
        Message.from_json("m1")


def test_detail_counterpart_is_first_other_participant():
    detail = ConversationDetail.from_json(
        {
            "conversationId": "c1",
            "offerId": "o1",
            "offerTitle": "Tiling",
            "participants": [{"id": "u-1", "firstName": "Anna"}, {"id": "u-2", "firstName": None}],
        }
    )

    counterpart = detail.counterpart("u-1")
    assert counterpart.participant_id == "u-2"
    assert counterpart.display_name == ""
    assert detail.counterpart("u-2").display_name == "Anna"


def test_detail_without_counterpart():
    detail = ConversationDetail.from_json({"conversationId": "c1", "participants": None})

    assert detail.participants == ()
    assert detail.counterpart("u-1") is None
