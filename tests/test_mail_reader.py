import tempfile
import unittest
from email.message import EmailMessage as MimeMessage
from pathlib import Path
from unittest.mock import MagicMock, patch

from sgax_connect.controller.mail_reader import MailReader, parse_message
from sgax_connect.errors import MailError, NotConnectedError
from sgax_connect.models.mail import AttachmentInfo


def build_message(subject='Invoice', with_attachment=True) -> bytes:
    msg = MimeMessage()
    msg['From'] = 'Billing <billing@example.com>'
    msg['To'] = 'robot@example.com'
    msg['Subject'] = subject
    msg['Date'] = 'Tue, 02 Jan 2024 10:30:00 +0000'
    msg.set_content('Plain body')
    msg.add_alternative('<p>HTML body</p>', subtype='html')
    if with_attachment:
        msg.add_attachment(b'%PDF-1.4', maintype='application', subtype='pdf', filename='invoice.pdf')
    return msg.as_bytes()


def fetch_response(raw: bytes, seen: bool):
    flags = '\\Seen' if seen else ''
    header = f'1 (FLAGS ({flags}) INTERNALDATE "02-Jan-2024 10:31:00 +0000" BODY[] {{{len(raw)}}}'.encode()
    return 'OK', [(header, raw), b')']


class TestParseMessage(unittest.TestCase):

    def test_bodies_and_attachments(self):
        message = parse_message(build_message(), 7)

        self.assertEqual(message.message_number, 7)
        self.assertEqual(message.subject, 'Invoice')
        self.assertIn('billing@example.com', message.from_address)
        self.assertEqual(message.sent_date.year, 2024)
        self.assertEqual(message.text_body.strip(), 'Plain body')
        self.assertEqual(message.html_body.strip(), '<p>HTML body</p>')
        self.assertEqual(len(message.attachments), 1)
        attachment = message.attachments[0]
        self.assertEqual(attachment.file_name, 'invoice.pdf')
        self.assertEqual(attachment.content_type, 'application/pdf')
        self.assertEqual(attachment.size, 8)

    def test_attachment_content_is_not_serialized(self):
        message = parse_message(build_message(), 1)

        self.assertNotIn('content', message.model_dump()['attachments'][0])

    def test_message_without_date(self):
        message = parse_message(b'Subject: hi\r\n\r\nbody', 1)

        self.assertIsNone(message.sent_date)
        self.assertEqual(message.text_body.strip(), 'body')


class TestIMAPReader(unittest.TestCase):

    def setUp(self):
        patcher = patch('sgax_connect.controller.mail_reader.imaplib.IMAP4_SSL')
        self.imap_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.session = self.imap_class.return_value
        self.session.login.return_value = ('OK', [b'logged in'])
        self.session.select.return_value = ('OK', [b'2'])
        self.session.search.return_value = ('OK', [b'1 2'])

        self.reader = MailReader('imap.example.com', 'robot@example.com', 'secret')
        self.reader.connect()

    def test_connect_opens_inbox_read_only(self):
        self.imap_class.assert_called_once_with('imap.example.com', 993)
        self.session.select.assert_called_once_with('INBOX', readonly=True)
        self.assertTrue(self.reader.is_connected)

    def test_open_folder_quotes_names_with_spaces(self):
        self.reader.open_folder('Sent Items')

        self.session.close.assert_called_once()
        self.session.select.assert_called_with('"Sent Items"', readonly=True)
        self.assertEqual(self.reader.folder, 'Sent Items')

    def test_open_missing_folder(self):
        self.session.select.return_value = ('NO', [b'no such mailbox'])

        with self.assertRaises(MailError):
            self.reader.open_folder('Archive')

    def test_list_folders(self):
        self.session.list.return_value = ('OK', [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren) "/" "Sent Items"',
            b'(\\HasChildren \\Noselect) "/" Projects',
        ])

        self.assertEqual(self.reader.list_folders(), ['INBOX', 'Sent Items', 'Projects'])

    def test_counts(self):
        self.session.status.return_value = ('OK', [b'INBOX (UNSEEN 1)'])

        self.assertEqual(self.reader.get_message_count(), 2)
        self.assertEqual(self.reader.get_unread_message_count(), 1)

    def test_get_messages_peeks_and_limits(self):
        self.session.fetch.return_value = fetch_response(build_message('Second'), seen=True)

        messages = self.reader.get_messages(max_messages=1)

        self.session.fetch.assert_called_once_with('2', '(FLAGS INTERNALDATE BODY.PEEK[])')
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].message_number, 2)
        self.assertTrue(messages[0].is_read)
        self.assertIsNotNone(messages[0].received_date)

    def test_get_unread_messages(self):
        self.session.search.return_value = ('OK', [b'2'])
        self.session.fetch.return_value = fetch_response(build_message(with_attachment=False), seen=False)

        messages = self.reader.get_unread_messages()

        self.session.search.assert_called_with(None, 'UNSEEN')
        self.assertFalse(messages[0].is_read)
        self.assertEqual(messages[0].attachments, [])

    def test_download_all_attachments(self):
        self.session.fetch.return_value = fetch_response(build_message(), seen=False)
        message = self.reader.get_messages(max_messages=1)[0]

        with tempfile.TemporaryDirectory() as tmp:
            self.reader.download_all_attachments(message, Path(tmp) / 'out')
            self.assertEqual((Path(tmp) / 'out' / 'invoice.pdf').read_bytes(), b'%PDF-1.4')

    def test_download_attachment_without_content(self):
        with self.assertRaises(MailError):
            self.reader.download_attachment(AttachmentInfo(file_name='x.pdf'), 'x.pdf')

    def test_disconnect(self):
        self.reader.disconnect()

        self.session.close.assert_called_once()
        self.session.logout.assert_called_once()
        self.assertFalse(self.reader.is_connected)
        with self.assertRaises(NotConnectedError):
            self.reader.get_messages()


class TestPOP3Reader(unittest.TestCase):

    def setUp(self):
        patcher = patch('sgax_connect.controller.mail_reader.poplib.POP3_SSL')
        self.pop_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.session = self.pop_class.return_value
        self.session.stat.return_value = (2, 4096)

        self.reader = MailReader.for_pop3('pop.example.com', 'robot@example.com', 'secret')
        self.reader.connect()

    def test_connect(self):
        self.pop_class.assert_called_once_with('pop.example.com', 995)
        self.session.user.assert_called_once_with('robot@example.com')
        self.session.pass_.assert_called_once_with('secret')
        self.assertEqual(self.reader.folder, 'INBOX')

    def test_get_messages(self):
        self.session.retr.return_value = (b'+OK', build_message().split(b'\n'), 0)

        messages = self.reader.get_messages()

        self.assertEqual([m.message_number for m in messages], [1, 2])
        self.assertEqual(messages[0].subject, 'Invoice')
        self.assertEqual(self.reader.get_message_count(), 2)

    def test_imap_only_operations(self):
        for operation in (self.reader.list_folders, self.reader.get_unread_messages,
                          self.reader.get_unread_message_count, lambda: self.reader.open_folder('Sent')):
            with self.assertRaises(MailError):
                operation()

    def test_disconnect_swallows_errors(self):
        self.session.quit.side_effect = OSError('connection reset')

        self.reader.disconnect()

        self.assertFalse(self.reader.is_connected)


class TestConstruction(unittest.TestCase):

    def test_unknown_protocol(self):
        with self.assertRaises(ValueError):
            MailReader('mail.example.com', 'u', 'p', protocol='smtp')

    def test_plain_imap_upgrades_with_starttls(self):
        with patch('sgax_connect.controller.mail_reader.imaplib.IMAP4') as imap_class:
            session = imap_class.return_value
            session.select.return_value = ('OK', [b'0'])
            reader = MailReader('imap.example.com', 'u', 'p', use_ssl=False)
            reader.connect()

        imap_class.assert_called_once_with('imap.example.com', 143)
        session.starttls.assert_called_once()

    def test_not_connected(self):
        reader = MailReader('imap.example.com', 'u', 'p')
        with self.assertRaises(NotConnectedError):
            reader.get_messages()


if __name__ == '__main__':
    unittest.main()
