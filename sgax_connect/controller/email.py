from typing import Dict, Iterable, List, Optional, Union
from pydantic import BaseModel, EmailStr, Field
from pathlib import Path
import logging
import mimetypes
import smtplib
from email.message import EmailMessage as MimeMessage
from email.utils import formatdate, getaddresses

from sgax_connect.errors import EmailError

logger = logging.getLogger(__name__)

Recipients = Union[str, Iterable[str], None]


class EmailConfig(BaseModel):
    """Configuration for SMTP settings with validation"""
    smtp_server: str = Field(description="SMTP server address")
    smtp_port: int = Field(default=587, description="SMTP server port")
    username: str = Field(description="Account used to authenticate")
    password: str = Field(default="", description="Password or app password for authentication")
    use_ssl: bool = Field(default=False, description="Connect over implicit SSL (usually port 465)")
    use_tls: bool = Field(default=True, description="Upgrade the connection with STARTTLS")
    sender_email: Optional[str] = Field(default=None, description="From address, defaults to the username")
    timeout: float = Field(default=60, description="Socket timeout in seconds")

    model_config = {"from_attributes": True}

    @property
    def from_address(self) -> str:
        return self.sender_email or self.username


class OutgoingEmail(BaseModel):
    """A fully resolved message, validated right before it is sent"""
    to: List[EmailStr] = Field(min_length=1)
    cc: List[EmailStr] = Field(default_factory=list)
    bcc: List[EmailStr] = Field(default_factory=list)
    subject: str = "(No subject)"
    body: str = ""
    is_html: bool = False
    attachments: List[Path] = Field(default_factory=list)


def split_addresses(recipients: Recipients) -> List[str]:
    """Accept a comma separated string or an iterable of addresses."""
    if not recipients:
        return []
    if isinstance(recipients, str):
        recipients = [recipients]
    return [address for _, address in getaddresses(list(recipients)) if address]


class EmailService:
    """Handles all email sending operations"""

    def __init__(self, config: EmailConfig):
        self.config = config

    def session_properties(self) -> Dict[str, str]:
        """The property map describing the SMTP session this service opens"""
        props = {
            "mail.smtp.host": self.config.smtp_server,
            "mail.smtp.port": str(self.config.smtp_port),
            "mail.smtp.auth": "true",
        }
        if self.config.use_ssl:
            props["mail.smtp.ssl.enable"] = "true"
        if self.config.use_tls:
            props["mail.smtp.starttls.enable"] = "true"
        return props

    def send_email(
        self,
        to: Recipients,
        subject: Optional[str],
        body: Optional[str],
        cc: Recipients = None,
        bcc: Recipients = None,
        attachments: Optional[Iterable[Union[str, Path]]] = None,
        is_html: bool = False
    ) -> None:
        """
        Send an email, plain text or HTML, with optional CC, BCC and attachments.

        Attachments that do not exist on disk are skipped.

        Raises:
            EmailError: If the message is invalid or the server rejects it
        """
        try:
            email = OutgoingEmail(
                to=split_addresses(to),
                cc=split_addresses(cc),
                bcc=split_addresses(bcc),
                subject=subject if subject is not None else "(No subject)",
                body=body or "",
                is_html=is_html,
                attachments=[Path(a) for a in attachments or []]
            )
        except ValueError as e:
            raise EmailError(f"Invalid email: {str(e)}") from e

        msg = self._create_email_message(email)
        self._send(msg, email.to + email.cc + email.bcc)
        logger.info(f"Email sent successfully to {', '.join(email.to)}")

    def send_html_email(self, to: Recipients, subject: str, html_body: str) -> None:
        self.send_email(to, subject, html_body, is_html=True)

    def send_email_with_attachments(self, to: Recipients, subject: str, body: str,
                                    attachments: Iterable[Union[str, Path]]) -> None:
        self.send_email(to, subject, body, attachments=attachments)

    def send_email_to_multiple(self, recipients: Iterable[str], subject: str, body: str) -> None:
        self.send_email(list(recipients), subject, body)

    def new_email(self) -> "EmailBuilder":
        return EmailBuilder(self)

    def _create_email_message(self, email: OutgoingEmail) -> MimeMessage:
        """Create the message with headers, body and attachments"""
        msg = MimeMessage()
        msg['From'] = self.config.from_address
        msg['To'] = ', '.join(email.to)
        if email.cc:
            msg['Cc'] = ', '.join(email.cc)
        msg['Subject'] = email.subject
        msg['Date'] = formatdate(localtime=True)

        msg.set_content(email.body, subtype='html' if email.is_html else 'plain')

        for path in email.attachments:
            if not path.is_file():
                logger.warning(f"Skipping missing attachment {path}")
                continue
            self._attach_file(msg, path)

        return msg

    def _attach_file(self, msg: MimeMessage, file_path: Path) -> None:
        """Attach a file to the email message"""
        content_type, _ = mimetypes.guess_type(file_path.name)
        maintype, subtype = (content_type or 'application/octet-stream').split('/', 1)
        with open(file_path, 'rb') as file:
            msg.add_attachment(file.read(), maintype=maintype, subtype=subtype, filename=file_path.name)

    def _send(self, msg: MimeMessage, recipients: List[str]) -> None:
        """Send the message using SMTP"""
        smtp_class = smtplib.SMTP_SSL if self.config.use_ssl else smtplib.SMTP
        try:
            with smtp_class(self.config.smtp_server, self.config.smtp_port, timeout=self.config.timeout) as server:
                server.ehlo()
                if self.config.use_tls and not self.config.use_ssl:
                    server.starttls()
                    server.ehlo()

                try:
                    server.login(self.config.username, self.config.password)
                except smtplib.SMTPAuthenticationError as auth_error:
                    logger.error(f"Authentication failed: {auth_error}")
                    raise EmailError(
                        "Email authentication failed. Please verify your credentials "
                        "and ensure you're using an App Password if using Gmail."
                    ) from auth_error

                # Bcc must reach the envelope but never the headers
                server.send_message(msg, to_addrs=recipients)
        except smtplib.SMTPConnectError as conn_error:
            logger.error(f"Connection error: {conn_error}")
            raise EmailError(f"Failed to connect to email server: {conn_error}") from conn_error
        except smtplib.SMTPException as smtp_error:
            logger.error(f"Failed to send email: {smtp_error}")
            raise EmailError(f"Email sending failed: {smtp_error}") from smtp_error


class EmailBuilder:
    """
    Fluent message composition. Nothing is validated until ``send()``.

        service.new_email().to("a@example.com").subject("Report").body("...").attach(path).send()
    """

    def __init__(self, sender: EmailService):
        self.sender = sender
        self._to: Optional[str] = None
        self._cc: Optional[str] = None
        self._bcc: Optional[str] = None
        self._subject: Optional[str] = None
        self._body: Optional[str] = None
        self._is_html = False
        self._attachments: List[Path] = []

    def to(self, to: Recipients) -> "EmailBuilder":
        self._to = to
        return self

    def cc(self, cc: Recipients) -> "EmailBuilder":
        self._cc = cc
        return self

    def bcc(self, bcc: Recipients) -> "EmailBuilder":
        self._bcc = bcc
        return self

    def subject(self, subject: str) -> "EmailBuilder":
        self._subject = subject
        return self

    def body(self, body: str) -> "EmailBuilder":
        self._body = body
        self._is_html = False
        return self

    def html_body(self, html_body: str) -> "EmailBuilder":
        self._body = html_body
        self._is_html = True
        return self

    def attach(self, attachment: Union[str, Path]) -> "EmailBuilder":
        self._attachments.append(Path(attachment))
        return self

    def attach_all(self, attachments: Iterable[Union[str, Path]]) -> "EmailBuilder":
        self._attachments.extend(Path(a) for a in attachments)
        return self

    def send(self) -> None:
        """
        Validate and send the message.

        Raises:
            EmailError: If no recipient was given, or sending fails
        """
        if not split_addresses(self._to):
            raise EmailError("A recipient (to) is required")
        self.sender.send_email(
            self._to,
            self._subject,
            self._body,
            cc=self._cc,
            bcc=self._bcc,
            attachments=self._attachments,
            is_html=self._is_html
        )
