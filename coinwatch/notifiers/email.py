"""
Email SMTP notifier.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from .base import NotificationEvent, NotificationResult, Notifier


class EmailNotifier(Notifier):
    """Sends notifications via email SMTP."""

    channel = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
        default_to: Optional[list[str]] = None,
    ):
        """
        Initialize email notifier.

        Args:
            smtp_host: SMTP server hostname
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_address: Sender email address
            default_to: Recipients used when an event has none
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address
        self.default_to = default_to or []

    def send(self, event: NotificationEvent) -> NotificationResult:
        """Send event via email."""
        recipients = [event.recipient] if event.recipient else self.default_to
        if not recipients:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error="No recipient",
            )

        try:
            message = self._create_message(event, recipients)

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(message)

            return NotificationResult(success=True, channel=self.channel)

        except smtplib.SMTPAuthenticationError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Authentication failed: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"SMTP error: {str(e)}",
            )

    def _create_message(
        self, event: NotificationEvent, recipients: list[str]
    ) -> MIMEMultipart:
        """Create email message."""
        message = MIMEMultipart("alternative")
        message["Subject"] = self._create_subject(event)
        message["From"] = self.from_address
        message["To"] = ", ".join(recipients)

        message.attach(MIMEText(self._create_text_body(event), "plain"))
        message.attach(MIMEText(self._create_body(event), "html"))

        return message

    def _create_subject(self, event: NotificationEvent) -> str:
        """Create email subject."""
        return f"🚨 Crypto Alert: {event.name} ({event.symbol})"

    def _create_text_body(self, event: NotificationEvent) -> str:
        """Create plain text email body."""
        return f"""
{event.message}

Details:
- Coin: {event.name} ({event.symbol})
- Current Price: {event.current_price}
- 24h Change: {event.change_percentage}
- Alert: {event.kind_label}
- Time: {event.triggered_at.strftime("%Y-%m-%d %H:%M:%S")}

---
This is an automatic alert from CoinWatch.
"""

    def _create_body(self, event: NotificationEvent) -> str:
        """Create HTML email body."""
        color = "#2ECC71" if not event.change_percentage.startswith("-") else "#E74C3C"

        return f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; }}
        .alert-box {{
            border-left: 4px solid {color};
            padding: 15px;
            background-color: #f9f9f9;
            margin-bottom: 20px;
        }}
        .symbol {{ font-size: 24px; font-weight: bold; color: {color}; }}
        .price {{ font-size: 18px; color: #333; }}
        .message {{ margin: 15px 0; color: #555; }}
        .meta {{ color: #888; font-size: 12px; }}
    </style>
</head>
<body>
    <div class="alert-box">
        <div class="symbol">{event.name} ({event.symbol})</div>
        <div class="price">Current Price: {event.current_price} ({event.change_percentage} 24h)</div>
        <div class="message">{event.message}</div>
        <div class="meta">
            Alert: {event.kind_label}<br>
            Time: {event.triggered_at.strftime("%Y-%m-%d %H:%M:%S")}
        </div>
    </div>
</body>
</html>
"""
