"""
Farmer notifications: alert text composition, per-channel dispatch, and the
Twilio SMS/voice senders.

Every requested channel gets exactly one NotificationAttempt, in request order.
A failing or raising channel never affects the others, and dispatch() never
raises. Phone numbers only appear masked in attempts and logs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence
from xml.sax.saxutils import escape

import requests

from agripipe.config import DEFAULT_LANGUAGE, SMS_MAX_LENGTH
from agripipe.models import Insight, NotificationAttempt, Recommendation

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01/Accounts"

# NotificationAttempt.error when SKIP_NOTIFICATIONS suppressed the send
SKIPPED = "skipped"

MESSAGE_TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        "prefix": "🌾 Agricultural Analysis Complete: ",
        "weather": "Weather: ",
        "humidity": "humidity",
        "soil": "Soil Health: ",
        "yield": "Yield Potential: ",
        "risk": "Risk Level: ",
        "top": "Top Recommendation: ",
        "suffix": " Check app for details.",
    },
    "hi": {
        "prefix": "🌾 कृषि विश्लेषण पूरा: ",
        "weather": "मौसम: ",
        "humidity": "नमी",
        "soil": "मिट्टी स्वास्थ्य: ",
        "yield": "उपज क्षमता: ",
        "risk": "जोखिम स्तर: ",
        "top": "मुख्य सिफारिश: ",
        "suffix": " विवरण के लिए ऐप देखें।",
    },
    "mr": {
        "prefix": "🌾 शेती विश्लेषण पूर्ण: ",
        "weather": "हवामान: ",
        "humidity": "आर्द्रता",
        "soil": "माती आरोग्य: ",
        "yield": "उत्पादन क्षमता: ",
        "risk": "धोका पातळी: ",
        "top": "मुख्य शिफारस: ",
        "suffix": " तपशीलांसाठी ॲप तपासा.",
    },
}

VOICE_LANGUAGES = {"en": "en-IN", "hi": "hi-IN", "mr": "mr-IN"}


def mask_phone(phone: Optional[str]) -> str:
    """Keep the first 8 characters of a phone number."""
    if not phone:
        return ""
    return phone[:8] + "***"


def build_alert_message(
    insights: Mapping[str, Insight],
    recommendations: Sequence[Recommendation],
    weather: Optional[Mapping[str, Any]] = None,
    language: str = DEFAULT_LANGUAGE,
    max_length: int = SMS_MAX_LENGTH,
) -> str:
    """
    Compose the localized single-SMS summary of a run.

    Unknown languages use Hindi. Output longer than max_length is cut and
    ends with '...'.
    """
    msg = MESSAGE_TEMPLATES.get(language, MESSAGE_TEMPLATES[DEFAULT_LANGUAGE])
    parts = [msg["prefix"]]

    if weather and weather.get("temperature") is not None:
        parts.append(
            f"{msg['weather']}{weather['temperature']}°C, "
            f"{weather.get('humidity')}% {msg['humidity']}. "
        )
    for key, label in (("soilHealth", "soil"), ("yieldPotential", "yield"), ("pestRisk", "risk")):
        insight = insights.get(key)
        if insight is not None:
            parts.append(f"{msg[label]}{insight.overall}. ")

    if recommendations:
        top = next((r for r in recommendations if r.priority == "High"), recommendations[0])
        parts.append(f"{msg['top']}{top.action}. ")

    parts.append(msg["suffix"])
    message = "".join(parts)
    if len(message) > max_length:
        message = message[:max_length - 3] + "..."
    return message


@dataclass(frozen=True)
class SendReceipt:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationSender:
    """One delivery channel."""

    def send(self, target: str, message: str, language: str) -> SendReceipt:
        raise NotImplementedError


class _TwilioSender(NotificationSender):
    resource = ""

    def __init__(self, account_sid: Optional[str], auth_token: Optional[str],
                 from_number: Optional[str], timeout_s: float = 20.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _form(self, target: str, message: str, language: str) -> Dict[str, str]:
        raise NotImplementedError

    def send(self, target, message, language):
        if not self.configured:
            return SendReceipt(success=False, error="twilio not configured")

        resp = requests.post(
            f"{TWILIO_API_BASE}/{self.account_sid}/{self.resource}",
            data=self._form(target, message, language),
            auth=(self.account_sid, self.auth_token),
            timeout=self.timeout_s,
        )
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                detail = resp.text
            return SendReceipt(success=False, error=f"HTTP {resp.status_code}: {detail}")
        return SendReceipt(success=True, message_id=resp.json().get("sid"))


class TwilioSmsSender(_TwilioSender):
    resource = "Messages.json"

    def _form(self, target, message, language):
        return {"From": self.from_number, "To": target, "Body": message}


class TwilioVoiceSender(_TwilioSender):
    """Reads the message aloud via a TwiML <Say> call."""

    resource = "Calls.json"

    def _form(self, target, message, language):
        voice_lang = VOICE_LANGUAGES.get(language, VOICE_LANGUAGES[DEFAULT_LANGUAGE])
        twiml = f'<Response><Say language="{voice_lang}">{escape(message)}</Say></Response>'
        return {"From": self.from_number, "To": target, "Twiml": twiml}


class NotificationDispatcher:
    """
    Fan a message out to the requested channels.

    Usage:
        dispatcher = NotificationDispatcher({"sms": TwilioSmsSender(...)})
        attempts = dispatcher.dispatch("+919812345678", text, ["sms", "voice"], "hi")
    """

    def __init__(self, senders: Mapping[str, NotificationSender], skip: bool = False):
        self.senders = dict(senders)
        self.skip = skip

    def dispatch(
        self,
        target: str,
        summary_text: str,
        channels: Sequence[str],
        language: str = DEFAULT_LANGUAGE,
    ) -> List[NotificationAttempt]:
        masked = mask_phone(target)
        if self.skip:
            logger.info("notifications_skipped target=%s reason=SKIP_NOTIFICATIONS", masked)
            return [NotificationAttempt(channel, False, masked, error=SKIPPED) for channel in channels]

        attempts: List[NotificationAttempt] = []
        for channel in channels:
            sender = self.senders.get(channel)
            if sender is None:
                attempts.append(NotificationAttempt(channel, False, masked, error="unknown channel"))
                logger.warning("notification channel=%s target=%s outcome=unknown_channel",
                               channel, masked)
                continue
            try:
                receipt = sender.send(target, summary_text, language)
            except Exception as e:
                logger.error("notification_error channel=%s target=%s error=%s",
                             channel, masked, e)
                attempts.append(NotificationAttempt(channel, False, masked, error=str(e)))
                continue

            attempts.append(NotificationAttempt(
                channel, receipt.success, masked,
                error=receipt.error, message_id=receipt.message_id,
            ))
            if receipt.success:
                logger.info("notification channel=%s target=%s outcome=sent id=%s",
                            channel, masked, receipt.message_id)
            else:
                logger.warning("notification channel=%s target=%s outcome=failed error=%s",
                               channel, masked, receipt.error)
        return attempts
