import ftplib
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from sgax_connect.controller.ftp import FTPClient, FTPDownloader, FTPUploader
from sgax_connect.errors import NotConnectedError
from tests.fakes import FakeFTP, RemoteTree


def connect(fake: FakeFTP) -> FTPClient:
    client = FTPClient('ftp.example.com', 'user', 'secret')
    with patch('sgax_connect.controller.ftp.FTP', return_value=fake):
        client.connect()
    return client


class FTPTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.local = Path(self.tmp.name)
        self.tree = RemoteTree('/srv')
        self.fake = FakeFTP(self.tree)
        self.client = connect(self.fake)
        self.uploader = FTPUploader(self.client)
        self.downloader = FTPDownloader(self.client)

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, relative: str, content: str = 'data') -> Path:
        path = self.local / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path


class TestConnection(FTPTestCase):

    def test_connect_uses_passive_binary_mode(self):
        self.assertTrue(self.client.is_connected)
        self.assertIn(('connect', 'ftp.example.com', 21), self.fake.commands)
        self.assertIn(('login', 'user'), self.fake.commands)
        self.assertIn(('pasv', True), self.fake.commands)
        self.assertIn(('voidcmd', 'TYPE I'), self.fake.commands)

    def test_connect_twice_is_a_no_op(self):
        with patch('sgax_connect.controller.ftp.FTP') as ftp_class:
            self.client.connect()
        ftp_class.assert_not_called()

    def test_failed_login_closes_and_propagates(self):
        fake = FakeFTP()
        client = FTPClient('ftp.example.com', 'user', 'wrong')
        with patch.object(fake, 'login', side_effect=ftplib.error_perm('530 Login incorrect')):
            with patch('sgax_connect.controller.ftp.FTP', return_value=fake):
                with self.assertRaises(ftplib.error_perm):
                    client.connect()
        self.assertFalse(client.connected)
        self.assertTrue(fake.closed)

    def test_close_swallows_errors(self):
        with patch.object(self.fake, 'quit', side_effect=EOFError), \
                patch.object(self.fake, 'close', side_effect=OSError):
            self.client.close()
        self.assertFalse(self.client.connected)

    def test_operations_after_close_fail(self):
        self.client.close()
        with self.assertRaises(NotConnectedError):
            self.client.list_files()

    def test_context_manager(self):
        fake = FakeFTP()
        with patch('sgax_connect.controller.ftp.FTP', return_value=fake):
            with FTPClient('ftp.example.com') as client:
                self.assertTrue(client.connected)
        self.assertTrue(fake.closed)


class TestNeverConnected(unittest.TestCase):

    def test_every_operation_fails_without_network(self):
        client = FTPClient('ftp.example.com', 'user', 'secret')
        uploader = FTPUploader(client)
        downloader = FTPDownloader(client)

        with patch('sgax_connect.controller.ftp.FTP') as ftp_class:
            operations = [
                lambda: client.list_files(),
                lambda: client.list_directories('x'),
                lambda: client.exists('x'),
                lambda: client.create_directory('x'),
                lambda: client.delete_file('x'),
                lambda: client.delete_directory('x'),
                lambda: client.rename('x', 'y'),
                lambda: client.change_working_directory('x'),
                lambda: client.get_current_directory(),
                lambda: uploader.upload_file(__file__, 'x'),
                lambda: uploader.upload_directory('.', 'x'),
                lambda: downloader.download_to_stream('x'),
                lambda: downloader.download_directory('x', '.'),
            ]
            for operation in operations:
                with self.assertRaises(NotConnectedError):
                    operation()

        ftp_class.assert_not_called()


class TestFileOperations(FTPTestCase):

    def test_upload_rename_delete_cycle(self):
        source = self.write('text.txt', 'hello')

        self.uploader.upload_file(source, 'text.txt')
        self.assertIn('text.txt', self.client.list_files())

        self.client.rename('text.txt', 'textr.txt')
        files = self.client.list_files()
        self.assertNotIn('text.txt', files)
        self.assertEqual(files.count('textr.txt'), 1)

        self.client.delete_file('textr.txt')
        self.assertNotIn('textr.txt', self.client.list_files())

    def test_upload_missing_local_file(self):
        with self.assertRaises(FileNotFoundError):
            self.uploader.upload_file(self.local / 'missing.txt', 'missing.txt')

    def test_list_separates_files_and_directories(self):
        self.tree.dirs.add('/srv/reports')
        self.tree.files['/srv/readme.md'] = b'x'

        self.assertEqual(self.client.list_files(), ['readme.md'])
        self.assertEqual(self.client.list_directories(), ['reports'])

    def test_exists(self):
        self.tree.files['/srv/readme.md'] = b'x'

        self.assertTrue(self.client.exists('readme.md'))
        self.assertFalse(self.client.exists('other.md'))

    def test_upload_overwrite_replaces_content(self):
        self.tree.files['/srv/report.csv'] = b'old'
        source = self.write('report.csv', 'new')

        self.uploader.upload_file_overwrite(source, 'report.csv')

        self.assertEqual(self.tree.files['/srv/report.csv'], b'new')

    def test_upload_file_to_directory_with_new_name(self):
        self.tree.dirs.add('/srv/in')
        source = self.write('local.txt')

        self.uploader.upload_file_to(source, 'in', 'remote.txt')

        self.assertIn('/srv/in/remote.txt', self.tree.files)

    def test_download_creates_parent_directories(self):
        self.tree.files['/srv/report.csv'] = b'1,2,3'
        target = self.local / 'nested' / 'report.csv'

        self.downloader.download_file('report.csv', target)

        self.assertEqual(target.read_bytes(), b'1,2,3')

    def test_download_to_stream(self):
        self.tree.files['/srv/report.csv'] = b'1,2,3'

        stream = self.downloader.download_to_stream('report.csv')

        self.assertEqual(stream.read(), b'1,2,3')

    def test_text_transfer_restores_binary_mode(self):
        source = self.write('notes.txt', 'first\nsecond\n')

        self.uploader.upload_text_file(source, 'notes.txt')
        self.downloader.download_text_file('notes.txt', self.local / 'copy.txt')

        self.assertEqual((self.local / 'copy.txt').read_text(), 'first\nsecond\n')
        self.assertEqual(self.fake.commands[-1], ('voidcmd', 'TYPE I'))

    def test_text_download_decodes_with_given_encoding(self):
        self.tree.files['/srv/menu.txt'] = 'café\ncrème\n'.encode('latin-1')

        self.downloader.download_text_file('menu.txt', self.local / 'menu.txt', encoding='latin-1')

        self.assertEqual((self.local / 'menu.txt').read_text(encoding='latin-1'), 'café\ncrème\n')
        self.assertEqual(self.fake.encoding, 'utf-8')

    def test_text_download_restores_encoding_after_failure(self):
        with self.assertRaises(ftplib.error_perm):
            self.downloader.download_text_file('missing.txt', self.local / 'missing.txt', encoding='latin-1')

        self.assertEqual(self.fake.encoding, 'utf-8')


class TestDirectoryMirror(FTPTestCase):

    def make_tree(self):
        self.write('site/index.html')
        self.write('site/css/main.css')
        self.write('site/img/icons/logo.svg')
        return self.local / 'site'

    def test_upload_directory_mirrors_relative_file_set(self):
        self.uploader.upload_directory(self.make_tree(), 'site')

        self.assertEqual(self.tree.all_files('site'),
                         {'index.html', 'css/main.css', 'img/icons/logo.svg'})
        self.assertEqual(self.tree.cwd, '/srv')

    def test_upload_into_existing_directory(self):
        self.tree.dirs.add('/srv/site')

        self.uploader.upload_directory(self.make_tree(), 'site')

        self.assertIn('/srv/site/index.html', self.tree.files)

    def test_working_directory_restored_after_failure(self):
        self.fake.fail_on.add('main.css')
        self.client.change_working_directory('/srv')

        with self.assertRaises(ftplib.error_temp):
            self.uploader.upload_directory(self.make_tree(), 'site')

        self.assertEqual(self.client.get_current_directory(), '/srv')

    def test_download_directory_round_trip(self):
        self.uploader.upload_directory(self.make_tree(), 'site')

        self.downloader.download_directory('site', self.local / 'copy')

        copied = {p.relative_to(self.local / 'copy').as_posix()
                  for p in (self.local / 'copy').rglob('*') if p.is_file()}
        self.assertEqual(copied, {'index.html', 'css/main.css', 'img/icons/logo.svg'})
        self.assertEqual(self.tree.cwd, '/srv')

    def test_download_missing_directory_propagates(self):
        with self.assertRaises(ftplib.error_perm):
            self.downloader.download_directory('nowhere', self.local / 'copy')
        self.assertEqual(self.tree.cwd, '/srv')


class TestWithoutMLSD(FTPTestCase):

    def setUp(self):
        super().setUp()
        self.fake.mlsd_supported = False

    def test_listing_falls_back_to_cwd_probe(self):
        self.tree.dirs.add('/srv/reports')
        self.tree.files['/srv/readme.md'] = b'x'

        self.assertEqual(self.client.list_files(), ['readme.md'])
        self.assertEqual(self.client.list_directories(), ['reports'])
        self.assertEqual(self.tree.cwd, '/srv')

    def test_exists_falls_back_to_nlst(self):
        self.tree.dirs.add('/srv/reports')
        self.tree.files['/srv/reports/q1.csv'] = b'x'

        self.assertTrue(self.client.exists('reports/q1.csv'))
        self.assertFalse(self.client.exists('reports/q2.csv'))

    def test_directory_round_trip(self):
        self.write('site/index.html')
        self.write('site/css/main.css')

        self.uploader.upload_directory(self.local / 'site', 'site')
        self.downloader.download_directory('site', self.local / 'copy')

        self.assertTrue((self.local / 'copy' / 'css' / 'main.css').is_file())
        self.assertEqual(self.tree.cwd, '/srv')


if __name__ == '__main__':
    unittest.main()
