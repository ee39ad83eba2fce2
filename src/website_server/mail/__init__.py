"""Mail composition and SMTP delivery."""

from website_server.mail.sender import MailSender, MailSenderConfig

__all__ = ["MailSender", "MailSenderConfig"]
