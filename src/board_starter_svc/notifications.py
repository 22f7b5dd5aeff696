import logging
import smtplib
from email.message import EmailMessage

from board_starter_svc.config import Settings
from board_starter_svc.exceptions import NotificationError


class EmailSender:
    """
    Sends transactional email. Implementations raise NotificationError when delivery fails.
    """

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        raise NotImplementedError


class LoggingEmailSender(EmailSender):
    """Development sender: logs the recipient and subject instead of delivering."""

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        logging.info("Email to %s: %s (%d characters)", to, subject, len(html_body))


class SmtpEmailSender(EmailSender):
    def __init__(self, host: str, port: int, sender: str, user: str = "", password: str = "",
                 timeout: float = 10.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.timeout = timeout

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html_body, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.user:
                    smtp.starttls()
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"could not send email via {self.host}:{self.port}") from e


def build_email_sender(settings: Settings) -> EmailSender:
    if not settings.smtp_host:
        return LoggingEmailSender()
    return SmtpEmailSender(
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_sender,
        settings.smtp_user,
        settings.smtp_password,
    )
