import logging
from abc import ABC, abstractmethod
from datetime import datetime

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from errors import NotificationFailure

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Receives newly surfaced emergency alerts. Delivery is advisory only."""

    @abstractmethod
    def notify(self, alerts):
        pass


def format_alert_message(alerts, now=None):
    now = now or datetime.now()
    body = f"📅 *{now.strftime('%A, %d %B %Y %H:%M')}*\n\n"
    body += f"🚨 *{len(alerts)} new pool emergency alert(s)*\n"
    for alert in alerts:
        body += f"\n❌ {alert.facility_name} ({alert.facility_id})\n{alert.message}\n"
        if alert.recommendation:
            body += f"➡ {alert.recommendation}\n"
        body += f"🆔 {alert.id}\n"
    body += "\nReply *ack <id>* to acknowledge or *dismiss <id>* to dismiss."
    return body


class WhatsAppNotifier(NotificationSink):
    """Sends alerts to the expert numbers over Twilio WhatsApp."""

    def __init__(self, settings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not (self.settings.twilio_sid and self.settings.twilio_auth):
                raise NotificationFailure("Twilio credentials are not configured")
            self._client = Client(self.settings.twilio_sid, self.settings.twilio_auth)
        return self._client

    def send_whatsapp_message(self, to, body):
        self.client.messages.create(
            from_="whatsapp:" + self.settings.twilio_number,
            to="whatsapp:" + to,
            body=body
        )

    def notify(self, alerts):
        if not self.settings.expert_numbers:
            raise NotificationFailure("No expert numbers configured")
        body = format_alert_message(alerts)
        failed = []
        for expert in self.settings.expert_numbers:
            try:
                self.send_whatsapp_message(expert, body)
            except TwilioException as e:
                logger.warning("WhatsApp alert to %s failed: %s", expert, e)
                failed.append(expert)
        if failed:
            raise NotificationFailure(f"Could not reach {', '.join(failed)}")
        logger.info("Sent %d emergency alert(s) to %d expert(s)", len(alerts), len(self.settings.expert_numbers))


def dispatch_notification(sink, alerts):
    """Deliver ``alerts`` through ``sink``, never letting a failure escape."""
    try:
        sink.notify(alerts)
    except Exception as e:
        logger.warning("Notification failed: %s", e)
        return False
    return True
