"""Tests for the Mixpanel message model and value coercion."""

import uuid
from dataclasses import FrozenInstanceError
from datetime import date, datetime
from decimal import Decimal

import pytest

from mixpanel_analytics.errors import SerializationError
from mixpanel_analytics.events import (
    MessageType,
    MixpanelMessage,
    ProfileAction,
    coerce_properties,
    coerce_value,
    to_mixpanel_date,
)


class TestMixpanelMessage:
    def test_defaults(self):
        message = MixpanelMessage(MessageType.EVENT, {"event": "A"})
        assert message.is_event
        assert message.timestamp > 0
        assert message.message_id

    def test_message_id_is_unique(self):
        m1 = MixpanelMessage(MessageType.EVENT, {})
        m2 = MixpanelMessage(MessageType.EVENT, {})
        assert m1.message_id != m2.message_id

    def test_immutable(self):
        message = MixpanelMessage(MessageType.EVENT, {"event": "A"})
        with pytest.raises(FrozenInstanceError):
            message.payload = {}

    def test_payload_is_a_private_copy(self):
        source = {"event": "A", "properties": {"plan": "free"}}
        message = MixpanelMessage(MessageType.EVENT, source)
        source["properties"]["plan"] = "changed"

        copied = message.copy()
        copied.payload["properties"]["plan"] = "other"

        assert message.payload["properties"]["plan"] == "free"
        assert copied.message_id == message.message_id

    def test_dict_form_restores_message(self):
        message = MixpanelMessage(
            MessageType.PROFILE_UPDATE,
            {"$token": "t", "$distinct_id": "u", "$set": {"plan": "pro"}},
        )
        data = message.to_dict()

        assert data["message_type"] == "profile_update"
        assert "message_id" not in data["payload"]
        assert MixpanelMessage.from_dict(data) == message

    def test_from_dict_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            MixpanelMessage.from_dict(
                {"message_type": "bogus", "payload": {}, "timestamp": 1, "message_id": "x"}
            )


class TestCoercion:
    def test_passthrough(self):
        assert coerce_value("a") == "a"
        assert coerce_value(3) == 3
        assert coerce_value(1.5) == 1.5
        assert coerce_value(True) is True
        assert coerce_value(None) is None

    def test_dates_use_mixpanel_format(self):
        assert coerce_value(datetime(2014, 8, 19, 9, 5, 3)) == "2014-08-19T09:05:03"
        assert coerce_value(date(2014, 8, 19)) == "2014-08-19T00:00:00"

    def test_containers(self):
        value = {"tags": ("a", "b"), "nested": {"when": date(2020, 1, 2)}}
        assert coerce_properties(value) == {
            "tags": ["a", "b"],
            "nested": {"when": "2020-01-02T00:00:00"},
        }
        assert sorted(coerce_value({1, 2})) == [1, 2]

    def test_decimal_enum_uuid(self):
        uid = uuid.uuid4()
        assert coerce_value(Decimal("1.25")) == 1.25
        assert coerce_value(MessageType.EVENT) == "event"
        assert coerce_value(uid) == str(uid)

    def test_unserializable_value_raises(self):
        with pytest.raises(SerializationError):
            coerce_value(object())

    def test_nan_raises(self):
        with pytest.raises(SerializationError):
            coerce_value(float("nan"))

    def test_non_string_key_raises(self):
        with pytest.raises(SerializationError):
            coerce_properties({1: "a"})


class TestEnums:
    def test_profile_action_values(self):
        assert ProfileAction.SET.value == "$set"
        assert ProfileAction.SET_ONCE.value == "$set_once"
        assert ProfileAction.ADD.value == "$add"
        assert ProfileAction.DELETE.value == "$delete"

    def test_to_mixpanel_date(self):
        assert to_mixpanel_date(datetime(2024, 12, 31, 23, 59, 59)) == "2024-12-31T23:59:59"
