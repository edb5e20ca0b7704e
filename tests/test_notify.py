"""
Tests for alert composition and notification dispatch. Twilio calls are
mocked at requests.post.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

PHONE = "+919812345678"


class _Sender:
    def __init__(self, success=True, exc=None):
        self.success = success
        self.exc = exc
        self.sent = []

    def send(self, target, message, language):
        from agripipe.notify import SendReceipt

        self.sent.append((target, message, language))
        if self.exc is not None:
            raise self.exc
        if self.success:
            return SendReceipt(success=True, message_id="MSG1")
        return SendReceipt(success=False, error="rejected")


def _insights():
    from agripipe.models import Insight

    return {
        "soilHealth": Insight(category="soilHealth", overall="Poor", score=30),
        "yieldPotential": Insight(category="yieldPotential", overall="Good", score=70),
        "pestRisk": Insight(category="pestRisk", overall="Moderate"),
    }


def _recs():
    from agripipe.models import Recommendation

    return [
        Recommendation("Pest Management", "Medium", "Low", "Set pheromone traps", "Ongoing"),
        Recommendation("Water Management", "High", "High", "Irrigate", "1-2 weeks"),
    ]


class TestMaskPhone:
    def test_masks_tail(self):
        from agripipe.notify import mask_phone

        assert mask_phone(PHONE) == "+9198123***"
        assert PHONE not in mask_phone(PHONE)

    def test_empty(self):
        from agripipe.notify import mask_phone

        assert mask_phone(None) == ""


class TestBuildAlertMessage:
    def test_english_message(self):
        from agripipe.notify import build_alert_message

        msg = build_alert_message(_insights(), _recs(), {"temperature": 32.0, "humidity": 85.0},
                                  language="en", max_length=1000)

        assert msg.startswith("🌾 Agricultural Analysis Complete: ")
        assert "Weather: 32.0°C, 85.0% humidity." in msg
        assert "Soil Health: Poor." in msg
        assert "Top Recommendation: Irrigate." in msg
        assert msg.endswith("Check app for details.")

    def test_truncated_to_sms_length(self):
        from agripipe.notify import build_alert_message

        msg = build_alert_message(_insights(), _recs(), {"temperature": 32.0, "humidity": 85.0},
                                  language="en")
        assert len(msg) == 160
        assert msg.endswith("...")

    def test_unknown_language_uses_hindi(self):
        from agripipe.notify import MESSAGE_TEMPLATES, build_alert_message

        msg = build_alert_message(_insights(), [], language="xx", max_length=1000)
        assert msg.startswith(MESSAGE_TEMPLATES["hi"]["prefix"])

    def test_marathi(self):
        from agripipe.notify import MESSAGE_TEMPLATES, build_alert_message

        msg = build_alert_message(_insights(), _recs(), language="mr", max_length=1000)
        assert msg.startswith(MESSAGE_TEMPLATES["mr"]["prefix"])
        assert MESSAGE_TEMPLATES["mr"]["soil"] + "Poor." in msg


class TestNotificationDispatcher:
    def test_channels_are_independent(self):
        from agripipe.notify import NotificationDispatcher

        sms = _Sender(exc=RuntimeError("gateway down"))
        voice = _Sender()
        dispatcher = NotificationDispatcher({"sms": sms, "voice": voice})

        attempts = dispatcher.dispatch(PHONE, "hello", ["sms", "voice", "email"], "hi")

        assert [a.channel for a in attempts] == ["sms", "voice", "email"]
        assert attempts[0].success is False
        assert attempts[0].error == "gateway down"
        assert attempts[1].success is True
        assert attempts[1].message_id == "MSG1"
        assert attempts[2].error == "unknown channel"
        assert voice.sent == [(PHONE, "hello", "hi")]

    def test_targets_are_masked(self):
        from agripipe.notify import NotificationDispatcher

        attempts = NotificationDispatcher({"sms": _Sender()}).dispatch(PHONE, "hi", ["sms"])
        assert all(PHONE not in a.target for a in attempts)

    def test_failed_receipt_recorded(self):
        from agripipe.notify import NotificationDispatcher

        attempts = NotificationDispatcher({"sms": _Sender(success=False)}).dispatch(
            PHONE, "hi", ["sms"])
        assert attempts[0].success is False
        assert attempts[0].error == "rejected"

    def test_skip_sends_nothing(self):
        from agripipe.notify import NotificationDispatcher

        sms = _Sender()
        attempts = NotificationDispatcher({"sms": sms}, skip=True).dispatch(PHONE, "hi", ["sms", "voice"])

        assert [a.channel for a in attempts] == ["sms", "voice"]
        assert all(a.success is False and a.error == "skipped" for a in attempts)
        assert all(a.target == PHONE[:8] + "***" for a in attempts)
        assert sms.sent == []


class TestTwilioSenders:
    def test_unconfigured(self):
        from agripipe.notify import TwilioSmsSender

        receipt = TwilioSmsSender(None, None, None).send(PHONE, "hi", "hi")
        assert receipt.success is False
        assert receipt.error == "twilio not configured"

    def test_sms_posts_message(self):
        from agripipe.notify import TwilioSmsSender

        resp = MagicMock(status_code=201)
        resp.json.return_value = {"sid": "SM123"}
        with patch("agripipe.notify.requests.post", return_value=resp) as mock_post:
            receipt = TwilioSmsSender("AC1", "token", "+15550001111").send(PHONE, "hello", "hi")

        assert receipt.success is True
        assert receipt.message_id == "SM123"
        url = mock_post.call_args[0][0]
        assert url.endswith("/AC1/Messages.json")
        kwargs = mock_post.call_args[1]
        assert kwargs["data"] == {"From": "+15550001111", "To": PHONE, "Body": "hello"}
        assert kwargs["auth"] == ("AC1", "token")

    def test_voice_uses_twiml(self):
        from agripipe.notify import TwilioVoiceSender

        resp = MagicMock(status_code=201)
        resp.json.return_value = {"sid": "CA9"}
        with patch("agripipe.notify.requests.post", return_value=resp) as mock_post:
            receipt = TwilioVoiceSender("AC1", "token", "+15550001111").send(PHONE, "a < b", "mr")

        assert receipt.success is True
        twiml = mock_post.call_args[1]["data"]["Twiml"]
        assert 'language="mr-IN"' in twiml
        assert "a &lt; b" in twiml

    def test_http_error_is_failed_receipt(self):
        from agripipe.notify import TwilioSmsSender

        resp = MagicMock(status_code=400, text="bad")
        resp.json.return_value = {"message": "Invalid 'To' number"}
        with patch("agripipe.notify.requests.post", return_value=resp):
            receipt = TwilioSmsSender("AC1", "token", "+15550001111").send(PHONE, "hello", "hi")

        assert receipt.success is False
        assert receipt.error == "HTTP 400: Invalid 'To' number"


@pytest.mark.parametrize("language", ["en", "hi", "mr"])
def test_every_language_fits_one_sms(language):
    from agripipe.notify import build_alert_message

    msg = build_alert_message(_insights(), _recs(), {"temperature": 32.0, "humidity": 85.0},
                              language=language)
    assert len(msg) <= 160
