"""
Reading mailboxes over IMAP or POP3.

IMAP messages are fetched with ``BODY.PEEK[]`` so reading never marks them
as seen. POP3 has neither folders nor flags, so folder operations and unread
queries are IMAP only.
"""
import email
import imaplib
import logging
import poplib
import re
from datetime import datetime
from email import policy
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import List, Optional, Union

from sgax_connect.errors import MailError, NotConnectedError
from sgax_connect.models.mail import AttachmentInfo, EmailMessage

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {
    ('imap', True): 993,
    ('imap', False): 143,
    ('pop3', True): 995,
    ('pop3', False): 110,
}

LIST_RESPONSE = re.compile(r'\((?P<flags>[^)]*)\) (?P<delimiter>"[^"]*"|NIL) (?P<name>.+)')


def parse_message(raw: bytes, message_number: int, is_read: bool = False,
                  received_date: Optional[datetime] = None) -> EmailMessage:
    """Turn a raw RFC 822 message into an ``EmailMessage`` with its bodies and attachments."""
    msg = email.message_from_bytes(raw, policy=policy.default)

    sent_date = None
    if msg['Date']:
        try:
            sent_date = parsedate_to_datetime(str(msg['Date']))
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header on message {message_number}: {msg['Date']}")

    parsed = EmailMessage(
        message_number=message_number,
        from_address=str(msg['From']) if msg['From'] else None,
        subject=str(msg['Subject']) if msg['Subject'] is not None else None,
        sent_date=sent_date,
        received_date=received_date,
        is_read=is_read
    )

    for part in msg.walk():
        if part.is_multipart():
            continue
        disposition = part.get_content_disposition()
        if disposition in ('attachment', 'inline') and (disposition == 'attachment' or part.get_filename()):
            content = part.get_payload(decode=True) or b''
            parsed.attachments.append(AttachmentInfo(
                file_name=part.get_filename(),
                content_type=part.get_content_type(),
                size=len(content),
                content=content
            ))
        elif part.get_content_type() == 'text/plain' and parsed.text_body is None:
            parsed.text_body = part.get_content()
        elif part.get_content_type() == 'text/html' and parsed.html_body is None:
            parsed.html_body = part.get_content()

    return parsed


class MailReader:
    """
    Reads messages and attachments from an IMAP or POP3 mailbox.

    ``connect()`` opens ``INBOX`` read-only; use ``open_folder`` to switch.
    """

    def __init__(self, host: str, username: str, password: str, port: Optional[int] = None,
                 use_ssl: bool = True, protocol: str = 'imap'):
        self.protocol = protocol.lower()
        if self.protocol not in ('imap', 'pop3'):
            raise ValueError(f"Unsupported mail protocol: {protocol}")
        self.host = host
        self.port = port or DEFAULT_PORTS[(self.protocol, use_ssl)]
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.session = None
        self.folder: Optional[str] = None

    @classmethod
    def for_pop3(cls, host: str, username: str, password: str, port: Optional[int] = None,
                 use_ssl: bool = True) -> "MailReader":
        return cls(host, username, password, port=port, use_ssl=use_ssl, protocol='pop3')

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    def connect(self) -> None:
        """
        Log in and open INBOX.

        Without SSL the connection is upgraded with STARTTLS.
        """
        if self.is_connected:
            return
        try:
            if self.protocol == 'imap':
                self._connect_imap()
            else:
                self._connect_pop3()
            logger.info(f"Connected to {self.protocol.upper()} server {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to connect to {self.host}: {str(e)}")
            self.disconnect()
            raise

    def _connect_imap(self) -> None:
        if self.use_ssl:
            self.session = imaplib.IMAP4_SSL(self.host, self.port)
        else:
            self.session = imaplib.IMAP4(self.host, self.port)
            self.session.starttls()
        self.session.login(self.username, self.password)
        self.open_folder('INBOX')

    def _connect_pop3(self) -> None:
        if self.use_ssl:
            self.session = poplib.POP3_SSL(self.host, self.port)
        else:
            self.session = poplib.POP3(self.host, self.port)
            self.session.stls()
        self.session.user(self.username)
        self.session.pass_(self.password)
        self.folder = 'INBOX'

    def disconnect(self) -> None:
        """Close the folder and the session. Errors while closing are ignored."""
        if self.session is None:
            return
        try:
            if self.protocol == 'imap':
                if self.folder is not None:
                    self.session.close()
                self.session.logout()
            else:
                self.session.quit()
        except Exception as e:
            logger.debug(f"Error while disconnecting from {self.host}: {str(e)}")
        finally:
            self.session = None
            self.folder = None

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.folder is not None

    def require_connection(self) -> None:
        if not self.is_connected:
            raise NotConnectedError(self.protocol.upper())

    def _require_imap(self, operation: str) -> None:
        if self.protocol != 'imap':
            raise MailError(f"{operation} is not supported over POP3")

    @staticmethod
    def _check(status: str, data, action: str):
        if status != 'OK':
            raise MailError(f"{action} failed: {data}")
        return data

    def open_folder(self, folder_name: str) -> None:
        """Switch to another folder, read-only."""
        self._require_imap("Opening folders")
        if self.session is None:
            raise NotConnectedError(self.protocol.upper())
        if self.folder is not None:
            self.session.close()
            self.folder = None
        status, data = self.session.select(_quote(folder_name), readonly=True)
        self._check(status, data, f"Selecting {folder_name}")
        self.folder = folder_name

    def list_folders(self) -> List[str]:
        self._require_imap("Listing folders")
        if self.session is None:
            raise NotConnectedError(self.protocol.upper())
        status, data = self.session.list()
        folders = []
        for line in self._check(status, data, "Listing folders"):
            if not line:
                continue
            match = LIST_RESPONSE.match(line.decode() if isinstance(line, bytes) else line)
            if match:
                folders.append(match.group('name').strip('"'))
        return folders

    def get_message_count(self) -> int:
        self.require_connection()
        if self.protocol == 'pop3':
            count, _ = self.session.stat()
            return count
        status, data = self.session.search(None, 'ALL')
        return len(self._check(status, data, "Search")[0].split())

    def get_unread_message_count(self) -> int:
        self.require_connection()
        self._require_imap("Unread tracking")
        status, data = self.session.status(_quote(self.folder), '(UNSEEN)')
        line = self._check(status, data, "Status")[0]
        line = line.decode() if isinstance(line, bytes) else line
        match = re.search(r'UNSEEN (\d+)', line)
        return int(match.group(1)) if match else 0

    def get_messages(self, max_messages: Optional[int] = None) -> List[EmailMessage]:
        """
        Fetch messages of the open folder, oldest first.

        Args:
            max_messages: Only return the most recent N messages when set
        """
        self.require_connection()
        if self.protocol == 'pop3':
            count, _ = self.session.stat()
            numbers = list(range(1, count + 1))
        else:
            status, data = self.session.search(None, 'ALL')
            numbers = [int(n) for n in self._check(status, data, "Search")[0].split()]

        if max_messages is not None and max_messages > 0:
            numbers = numbers[-max_messages:]
        return [self._fetch(number) for number in numbers]

    def get_unread_messages(self) -> List[EmailMessage]:
        self.require_connection()
        self._require_imap("Unread tracking")
        status, data = self.session.search(None, 'UNSEEN')
        return [self._fetch(int(n)) for n in self._check(status, data, "Search")[0].split()]

    def _fetch(self, number: int) -> EmailMessage:
        if self.protocol == 'pop3':
            _, lines, _ = self.session.retr(number)
            return parse_message(b'\r\n'.join(lines), number)

        status, data = self.session.fetch(str(number), '(FLAGS INTERNALDATE BODY.PEEK[])')
        self._check(status, data, f"Fetching message {number}")
        for item in data:
            if isinstance(item, tuple):
                header, raw = item
                flags = imaplib.ParseFlags(header)
                received = imaplib.Internaldate2tuple(header)
                return parse_message(
                    raw,
                    number,
                    is_read=b'\\Seen' in flags,
                    received_date=datetime(*received[:6]) if received else None
                )
        raise MailError(f"Message {number} returned no content")

    def download_attachment(self, attachment: AttachmentInfo, destination: Union[str, Path]) -> None:
        """Write an attachment to ``destination``, creating parent directories."""
        if attachment.content is None:
            raise MailError(f"Attachment {attachment.file_name} has no content")
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(attachment.content)
        logger.info(f"Saved attachment {attachment.file_name} to {destination}")

    def download_all_attachments(self, message: EmailMessage, destination_dir: Union[str, Path]) -> None:
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        for index, attachment in enumerate(message.attachments, start=1):
            name = Path(attachment.file_name).name if attachment.file_name else f"attachment-{index}"
            self.download_attachment(attachment, destination_dir / name)


def _quote(folder_name: str) -> str:
    if folder_name.startswith('"') or ' ' not in folder_name:
        return folder_name
    return f'"{folder_name}"'
