"""
Tests for POST /api/send and the outbound send path.

Tests cover:
- Successful sends recorded with the provider SID
- Validation, configuration and transmission errors (no record written)
- Degraded success when the local write fails after sending
"""

import asyncio

import pytest
from twilio.base.exceptions import TwilioRestException

from conftest import FailingStore, FakeSender, SYSTEM_NUMBER, make_settings
from smsrelay.egress import send_outbound
from smsrelay.errors import ConfigurationError, TransmissionError, ValidationError
from smsrelay.schemas import Direction
from smsrelay.storage import MemoryMessageStore


def stored_messages(client):
    return client.app.state.store.scan_all()


class TestSendSuccess:
    """Test sends accepted by the provider."""

    def test_scenario_send_records_outbound(self, client, fake_sender):
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "sid": fake_sender.sid,
            "recorded": True,
            "warning": None,
        }

        messages = stored_messages(client)
        assert len(messages) == 1
        message = messages[0]
        assert message.id == fake_sender.sid
        assert message.from_msisdn == SYSTEM_NUMBER
        assert message.to == "+15550100"
        assert message.body == "hello"
        assert message.direction is Direction.OUTBOUND

        assert fake_sender.calls == [
            {"from": SYSTEM_NUMBER, "to": "+15550100", "body": "hello", "media_urls": []}
        ]

    def test_destination_is_normalized(self, client):
        client.post("/api/send", json={"to": "  +15550100 ", "body": "hello"})
        assert stored_messages(client)[0].to == "+15550100"

    def test_numeric_fields_accepted(self, client, fake_sender):
        """Numbers in the JSON body are sent as text instead of failing validation."""
        response = client.post("/api/send", json={"to": 15550100, "body": 42})

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert fake_sender.calls[0]["to"] == "15550100"
        assert stored_messages(client)[0].body == "42"

    def test_media_without_body(self, client, fake_sender):
        response = client.post("/api/send", json={"to": "+15550100", "mediaUrl": "https://example.com/a.jpg"})

        assert response.status_code == 200
        message = stored_messages(client)[0]
        assert message.body == ""
        assert message.media_urls == ["https://example.com/a.jpg"]
        assert fake_sender.calls[0]["media_urls"] == ["https://example.com/a.jpg"]

    def test_missing_sid_gets_generated_id(self, make_client):
        client = make_client(sender=FakeSender(sid=None))
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 200
        assert response.json()["sid"] is None
        assert stored_messages(client)[0].id.startswith("out_")

    def test_same_sid_twice_keeps_one_record(self, client):
        client.post("/api/send", json={"to": "+15550100", "body": "first"})
        client.post("/api/send", json={"to": "+15550100", "body": "second"})

        messages = stored_messages(client)
        assert len(messages) == 1
        assert messages[0].body == "second"


class TestSendErrors:
    """Test rejected sends."""

    def test_scenario_empty_to(self, client, fake_sender):
        response = client.post("/api/send", json={"to": "", "body": "hello"})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Missing 'to'"}
        assert stored_messages(client) == []
        assert fake_sender.calls == []

    def test_blank_to(self, client):
        response = client.post("/api/send", json={"to": "   ", "body": "hello"})
        assert response.status_code == 400

    def test_missing_body_and_media(self, client, fake_sender):
        response = client.post("/api/send", json={"to": "+15550100"})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Missing 'body'"}
        assert fake_sender.calls == []

    def test_missing_credentials(self, make_client, fake_sender):
        client = make_client(TWILIO_AUTH_TOKEN="")
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 500
        assert response.json()["ok"] is False
        assert "TWILIO_AUTH_TOKEN" in response.json()["error"]
        assert fake_sender.calls == []
        assert stored_messages(client) == []

    def test_validation_checked_before_configuration(self, make_client):
        client = make_client(TWILIO_PHONE_NUMBER="")
        response = client.post("/api/send", json={"body": "hello"})
        assert response.status_code == 400

    def test_provider_rejection(self, make_client):
        error = TwilioRestException(status=400, uri="/Messages.json", msg="The 'To' number is not valid")
        client = make_client(sender=FakeSender(error=error))
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 502
        assert response.json() == {"ok": False, "error": "The 'To' number is not valid"}
        assert stored_messages(client) == []

    def test_provider_unreachable(self, make_client):
        client = make_client(sender=FakeSender(error=ConnectionError("timed out")))
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 502
        assert response.json()["error"] == "timed out"
        assert stored_messages(client) == []

    def test_storage_failure_after_send_is_degraded_success(self, make_client, fake_sender):
        client = make_client(store=FailingStore())
        response = client.post("/api/send", json={"to": "+15550100", "body": "hello"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["sid"] == fake_sender.sid
        assert data["recorded"] is False
        assert data["warning"]


class TestSendOutbound:
    """Test send_outbound() without the HTTP layer."""

    def test_raises_taxonomy_errors(self):
        store = MemoryMessageStore()
        settings = make_settings()

        with pytest.raises(ValidationError):
            asyncio.run(send_outbound(store, settings, to=None, body="hi", sender=FakeSender()))

        with pytest.raises(ConfigurationError):
            asyncio.run(send_outbound(store, make_settings(TWILIO_ACCOUNT_SID=""), to="+1", body="hi"))

        failing = FakeSender(error=TwilioRestException(status=500, uri="/Messages.json", msg="boom"))
        with pytest.raises(TransmissionError):
            asyncio.run(send_outbound(store, settings, to="+1", body="hi", sender=failing))

        assert store.count() == 0

    def test_returns_result(self):
        store = MemoryMessageStore()
        result = asyncio.run(send_outbound(store, make_settings(), to="+15550100", body="hi", sender=FakeSender()))

        assert result.recorded is True
        assert result.warning is None
        assert store.get(result.message.id) == result.message
