# SPDX-FileCopyrightText: 2026 AI Power Grid
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import os
import threading
from datetime import datetime, timezone
from queue import Queue

import requests
from loguru import logger

# Message queue for async sending
_message_queue = Queue()
_worker_thread = None

SEVERITY_COLORS = {
    "info": 0x3498DB,  # Blue
    "warning": 0xFFA500,  # Orange
    "critical": 0xFF0000,  # Red
}


def _now():
    return datetime.now(timezone.utc).isoformat()


def _send_worker():
    """Background worker to send Discord messages without blocking."""
    while True:
        webhook_url, embed = _message_queue.get()
        try:
            requests.post(webhook_url, json={"embeds": [embed]}, timeout=5)
        except requests.RequestException:
            # Don't log to avoid recursion through the error sink
            continue
        finally:
            _message_queue.task_done()


def _ensure_worker():
    """Ensure the background sender thread is running."""
    global _worker_thread
    if _worker_thread is None or not _worker_thread.is_alive():
        _worker_thread = threading.Thread(target=_send_worker, daemon=True, name="discord-sender")
        _worker_thread.start()


def send_embed(webhook_url: str, embed: dict):
    """Queue an embed message for async sending."""
    if not webhook_url:
        return
    _ensure_worker()
    _message_queue.put((webhook_url, embed))


def _get_core_webhook():
    return os.getenv("DISCORD_CORE_LOG_WEBHOOK")


def _get_alert_webhook():
    """Alerts go to their own channel when one is configured."""
    return os.getenv("DISCORD_ALERT_WEBHOOK") or _get_core_webhook()


def notify_alert(alert):
    webhook_url = _get_alert_webhook()
    if not webhook_url:
        logger.debug(f"No alert webhook set, alert {alert.type} only logged")
        return

    fields = [{"name": "Type", "value": alert.type, "inline": True}, {"name": "Severity", "value": alert.severity, "inline": True}]
    for key, value in list(alert.details.items())[:6]:
        fields.append({"name": key, "value": str(value)[:200], "inline": True})

    embed = {
        "title": f"{'🚨' if alert.severity == 'critical' else '⚠️'} {alert.message}"[:256],
        "color": SEVERITY_COLORS.get(alert.severity, SEVERITY_COLORS["warning"]),
        "fields": fields,
        "timestamp": alert.timestamp.isoformat(),
    }
    send_embed(webhook_url, embed)


def notify_token_deployed(model_id: str, token_address: str, token_symbol: str, transaction_hash: str, network: str):
    webhook_url = _get_core_webhook()
    if not webhook_url:
        return

    embed = {
        "title": "⛓️ Token Deployed",
        "color": 0x9B59B6,  # Purple
        "fields": [
            {"name": "Model", "value": model_id, "inline": True},
            {"name": "Symbol", "value": token_symbol, "inline": True},
            {"name": "Network", "value": network, "inline": True},
            {"name": "Token", "value": token_address, "inline": False},
        ],
        "footer": {"text": f"tx: {transaction_hash}"},
        "timestamp": _now(),
    }
    send_embed(webhook_url, embed)


# ============================================================================
# Loguru Integration - Add as a log sink
# ============================================================================

def discord_log_sink(message):
    """
    Loguru sink that sends ERROR and CRITICAL logs to Discord.
    Add this to logger with: logger.add(discord_log_sink, level="ERROR")
    """
    webhook_url = _get_core_webhook()
    if not webhook_url:
        return

    record = message.record
    level = record["level"].name
    if level not in ("ERROR", "CRITICAL"):
        return

    msg_text = str(record["message"])[:1500]
    color = 0xFF0000 if level == "CRITICAL" else 0xFFA500  # Red for critical, orange for error

    embed = {
        "title": f"{'🔥' if level == 'CRITICAL' else '❌'} {level}",
        "color": color,
        "description": f"```\n{msg_text}\n```",
        "fields": [
            {"name": "Location", "value": f"{record['name']}:{record['function']}:{record['line']}", "inline": True},
        ],
        "timestamp": _now(),
    }

    if record["exception"]:
        exc_text = str(record["exception"])[:500]
        embed["fields"].append({"name": "Exception", "value": f"```\n{exc_text}\n```", "inline": False})

    send_embed(webhook_url, embed)
