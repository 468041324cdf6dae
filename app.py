import logging

from flask import Flask, jsonify, request
from twilio.twiml.messaging_response import MessagingResponse

from config import load_settings
from notifications import WhatsAppNotifier
from readings import SheetReadingStore
from scheduler import AlertMonitor, MonitorScheduler

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "🤖 Perintah / Commands:\n"
    "• status - alert summary\n"
    "• alerts - list active alerts\n"
    "• ack <id> - acknowledge an alert\n"
    "• dismiss <id> - dismiss an alert\n"
    "• clear - dismiss all acknowledged alerts\n"
    "• check - run a compliance check now"
)


# === Utilities ===

def format_summary(monitor):
    summary = monitor.summary()
    last = summary["last_check"]
    body = "📊 *Pool Alert Summary*\n"
    body += f"🚨 Emergency: {summary['emergency_count']}\n"
    body += f"⚠️ Critical: {summary['critical_count']}\n"
    body += f"✅ Acknowledged: {summary['acknowledged_count']}\n"
    body += f"🕒 Last check: {last.strftime('%Y-%m-%d %H:%M:%S') if last else 'never'}"
    return body


def format_alert_list(alerts):
    if not alerts:
        return "✅ No active alerts."
    lines = []
    for alert in alerts:
        mark = "☑️" if alert.acknowledged else ("🚨" if alert.severity == "emergency" else "⚠️")
        lines.append(f"{mark} [{alert.id}] {alert.facility_name}: {alert.message}")
    return "\n".join(lines)


def alert_to_dict(alert):
    return {
        "id": alert.id,
        "facility_id": alert.facility_id,
        "facility_name": alert.facility_name,
        "severity": alert.severity,
        "message": alert.message,
        "timestamp": alert.timestamp.isoformat(),
        "chemical": alert.chemical,
        "value": alert.value,
        "recommendation": alert.recommendation,
        "acknowledged": alert.acknowledged,
    }


def handle_command(text, monitor, scheduler=None):
    """Turn one expert message into a reply, applying the command it names."""
    parts = text.strip().split(maxsplit=1)
    if not parts:
        return HELP_TEXT
    command = parts[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""

    if command == "status":
        return format_summary(monitor)
    if command == "alerts":
        return format_alert_list(monitor.active_alerts())
    if command in ("ack", "dismiss") and not arg:
        return f"❓ Usage: {command} <id>"
    if command == "ack":
        if monitor.acknowledge(arg):
            return f"✅ Acknowledged {arg}"
        return f"❓ No active alert {arg}"
    if command == "dismiss":
        was_active = monitor.dismiss(arg)
        return f"🗑️ Dismissed {arg}" if was_active else f"🗑️ {arg} will not be raised again"
    if command == "clear":
        cleared = monitor.clear_acknowledged()
        return f"🧹 Cleared {len(cleared)} acknowledged alert(s)"
    if command == "check":
        added = scheduler.trigger() if scheduler is not None else monitor.run_scan()
        if added is None:
            return "⏳ A check is already running or the readings are unavailable."
        return f"🔎 Check complete: {len(added)} new alert(s)\n\n" + format_summary(monitor)
    return HELP_TEXT


def create_app(monitor, scheduler=None, allowed_numbers=()):
    app = Flask(__name__)
    allowed = set(allowed_numbers)

    # === Webhook Route ===

    @app.route("/webhook", methods=["POST"])
    def whatsapp_reply():
        sender = request.form.get("From", "").replace("whatsapp:", "")
        msg_text = request.form.get("Body", "").strip()
        resp = MessagingResponse()
        msg = resp.message()

        if allowed and sender not in allowed:
            logger.warning("Ignoring command from unknown number %s", sender)
            msg.body("❓ This number is not registered for pool alerts.")
            return str(resp)

        msg.body(handle_command(msg_text, monitor, scheduler))
        return str(resp)

    # === Query Routes ===

    @app.route("/alerts", methods=["GET"])
    def list_alerts():
        return jsonify([alert_to_dict(a) for a in monitor.active_alerts()])

    @app.route("/summary", methods=["GET"])
    def summary():
        data = monitor.summary()
        data["last_check"] = data["last_check"].isoformat() if data["last_check"] else None
        return jsonify(data)

    return app


# === App Entry Point ===

def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    monitor = AlertMonitor(
        SheetReadingStore(settings),
        notifier=WhatsAppNotifier(settings),
        stale_after_days=settings.stale_after_days,
        notifications_enabled=settings.notifications_enabled,
    )
    scheduler = MonitorScheduler(monitor, interval_seconds=settings.check_interval_seconds)
    scheduler.start()
    app = create_app(monitor, scheduler, allowed_numbers=settings.expert_numbers)
    try:
        app.run(host="0.0.0.0", port=settings.port)
    finally:
        scheduler.stop()


if __name__ == '__main__':
    main()
