"""
Alert notifier for Slack and e-mail.
"""
import html
import requests
from typing import Any, Dict, List, Optional, Protocol
from datetime import datetime, timedelta
from loguru import logger

from tradedesk.config import as_bool

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationService(Protocol):
    def send_alert(
        self,
        subject: str,
        message: str,
        stocks: Optional[List[Dict[str, Any]]] = None
    ) -> bool:
        ...


class AlertNotifier:
    """
    Sends alerts to the configured channels (Slack webhook, Resend e-mail).
    Includes throttling and deduplication to prevent alert spam.
    """

    def __init__(self, alerts_config: Optional[Dict[str, Any]] = None):
        """
        Initialize alert notifier.

        Args:
            alerts_config: ``alerts`` configuration section
        """
        self.alerts_config = alerts_config or {}

        slack = self.alerts_config.get('slack', {}) or {}
        email = self.alerts_config.get('email', {}) or {}

        self.slack_webhook = slack.get('webhook_url') or None
        self.slack_enabled = as_bool(slack.get('enabled'), False) and bool(self.slack_webhook)

        self.resend_api_key = email.get('resend_api_key') or None
        self.email_from = email.get('from') or "TradeDesk <alerts@tradedesk.local>"
        recipients = email.get('recipients') or []
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(',') if r.strip()]
        self.email_recipients: List[str] = list(recipients)
        self.email_enabled = (
            as_bool(email.get('enabled'), False)
            and bool(self.resend_api_key)
            and bool(self.email_recipients)
        )

        throttling = self.alerts_config.get('throttling', {}) or {}
        self.throttling_enabled = as_bool(throttling.get('enabled'), True)
        self.max_alerts_per_minute = int(throttling.get('max_alerts_per_minute', 10))
        self.max_alerts_per_hour = int(throttling.get('max_alerts_per_hour', 50))
        self.dedupe_window_seconds = int(throttling.get('dedupe_window_seconds', 300))
        self.timeout_seconds = float(self.alerts_config.get('timeout_seconds', 5))

        self.recent_alerts: List[datetime] = []
        self.alert_hashes: Dict[str, datetime] = {}

        logger.info(
            f"AlertNotifier initialized | "
            f"Slack: {self.slack_enabled}, Email: {self.email_enabled}"
        )

    @property
    def enabled(self) -> bool:
        return self.slack_enabled or self.email_enabled

    def _check_throttle(self) -> bool:
        """
        Check if we're within throttling limits.

        Returns:
            True if we can send alert, False if throttled
        """
        if not self.throttling_enabled:
            return True

        now = datetime.now()
        minute_ago = now - timedelta(minutes=1)
        hour_ago = now - timedelta(hours=1)

        self.recent_alerts = [t for t in self.recent_alerts if t > hour_ago]

        alerts_last_minute = sum(1 for t in self.recent_alerts if t > minute_ago)
        if alerts_last_minute >= self.max_alerts_per_minute:
            logger.warning(f"Alert throttled: {alerts_last_minute} alerts in last minute")
            return False

        if len(self.recent_alerts) >= self.max_alerts_per_hour:
            logger.warning(f"Alert throttled: {len(self.recent_alerts)} alerts in last hour")
            return False

        return True

    def _check_dedupe(self, alert_hash: str) -> bool:
        """
        Check if this alert is a duplicate.

        Returns:
            True if alert is new, False if duplicate
        """
        now = datetime.now()
        cutoff = now - timedelta(seconds=self.dedupe_window_seconds)

        self.alert_hashes = {
            h: t for h, t in self.alert_hashes.items()
            if t > cutoff
        }

        if alert_hash in self.alert_hashes:
            logger.debug(f"Duplicate alert suppressed: {alert_hash}")
            return False

        self.alert_hashes[alert_hash] = now
        return True

    def send_alert(
        self,
        subject: str,
        message: str,
        stocks: Optional[List[Dict[str, Any]]] = None,
        severity: str = "info"
    ) -> bool:
        """
        Send an alert through configured channels.

        Args:
            subject: Alert subject line
            message: Alert body
            stocks: Optional rows of {symbol, signal, strength}
            severity: "info", "warning" or "critical"

        Returns:
            True if at least one channel accepted the alert and none failed
        """
        if not self.enabled:
            logger.info(f"Alert skipped (no channels configured): {subject}")
            return False

        symbols = ",".join(sorted(str(s.get("symbol", "")) for s in stocks or []))
        if not self._check_dedupe(f"{subject}:{message}:{symbols}"):
            return False

        if not self._check_throttle():
            return False

        self.recent_alerts.append(datetime.now())
        stocks = stocks or []
        success = True

        if self.slack_enabled:
            try:
                self._send_slack(subject, message, stocks, severity)
            except requests.RequestException as e:
                logger.error(f"Failed to send Slack alert: {e}")
                success = False

        if self.email_enabled:
            try:
                self._send_email(subject, message, stocks)
            except requests.RequestException as e:
                logger.error(f"Failed to send email alert: {e}")
                success = False

        return success

    def _send_slack(
        self,
        subject: str,
        message: str,
        stocks: List[Dict[str, Any]],
        severity: str
    ) -> None:
        color = {'info': '#36a64f', 'warning': '#ff9900', 'critical': '#ff0000'}.get(severity, '#808080')
        fields = [
            {
                'title': s.get('symbol', ''),
                'value': f"{s.get('signal', '')} ({s.get('strength', '')})",
                'short': True
            }
            for s in stocks
        ]
        payload = {
            'attachments': [{
                'color': color,
                'title': subject,
                'text': message,
                'fields': fields,
                'footer': 'TradeDesk',
                'ts': int(datetime.now().timestamp())
            }]
        }

        response = requests.post(self.slack_webhook, json=payload, timeout=self.timeout_seconds)
        response.raise_for_status()
        logger.debug(f"Slack alert sent: {subject}")

    def _send_email(self, subject: str, message: str, stocks: List[Dict[str, Any]]) -> None:
        rows = "".join(
            f"<tr><td><b>{html.escape(str(s.get('symbol', '')))}</b></td>"
            f"<td>{html.escape(str(s.get('signal', '')))}</td>"
            f"<td style=\"text-align:right\">{html.escape(str(s.get('strength', '')))}</td></tr>"
            for s in stocks
        )
        table = (
            "<table style=\"border-collapse:collapse;width:100%;margin-top:20px\">"
            "<tr><th>Symbol</th><th>Signal</th><th>Strength</th></tr>"
            f"{rows}</table>"
        ) if stocks else ""
        body = f"<div style=\"font-family:Arial,sans-serif\"><p>{html.escape(message)}</p>{table}</div>"

        response = requests.post(
            RESEND_API_URL,
            headers={'Authorization': f"Bearer {self.resend_api_key}"},
            json={
                'from': self.email_from,
                'to': self.email_recipients,
                'subject': subject,
                'html': body,
            },
            timeout=self.timeout_seconds
        )
        response.raise_for_status()
        logger.debug(f"Email alert sent: {subject}")
