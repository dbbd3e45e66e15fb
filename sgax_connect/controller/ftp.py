import ftplib
import io
import logging
import posixpath
from ftplib import FTP
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

from sgax_connect.controller import mirror
from sgax_connect.controller.mirror import PathLike, remember_cwd, remote_join
from sgax_connect.errors import NotConnectedError

logger = logging.getLogger(__name__)


class FTPClient:
    """
    A class to handle an FTP connection: connecting, listing and managing remote files.

    Transfers live in ``FTPUploader`` and ``FTPDownloader``, which share this handle.
    """

    def __init__(self, hostname: str, username: str = '', password: str = '',
                 port: int = 21, passive_mode: bool = True, timeout: Optional[float] = None):
        """
        Initialize FTP client with connection parameters.

        Args:
            hostname: The FTP server hostname
            username: Username for authentication (empty for anonymous)
            password: Password for authentication (empty for anonymous)
            port: Port number (default is 21)
            passive_mode: Whether to use passive mode (default True)
            timeout: Socket timeout in seconds (library default when None)
        """
        self.hostname = hostname
        self.username = username
        self.password = password
        self.port = port
        self.passive_mode = passive_mode
        self.timeout = timeout
        self.ftp = None
        self.connected = False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def connect(self) -> None:
        """
        Establish FTP connection, login and switch to binary passive transfers.

        Raises:
            ftplib.all_errors: If connection or login fails
        """
        if self.connected:
            return
        try:
            self.ftp = FTP() if self.timeout is None else FTP(timeout=self.timeout)
            self.ftp.connect(self.hostname, self.port)
            self.ftp.login(self.username, self.password)
            self.ftp.set_pasv(self.passive_mode)
            self.ftp.voidcmd('TYPE I')
            self.connected = True
            logger.info(f"Connected to {self.hostname}:{self.port}")
            logger.debug(self.ftp.getwelcome())

        except Exception as e:
            logger.error(f"Failed to connect to {self.hostname}: {str(e)}")
            self.close()
            raise

    def close(self) -> None:
        """Close the FTP connection. Errors while closing are ignored."""
        if self.ftp:
            try:
                self.ftp.quit()
            except Exception as e:
                logger.debug(f"QUIT failed, closing socket: {str(e)}")
                try:
                    self.ftp.close()
                except Exception as close_error:
                    logger.debug(f"Close failed: {str(close_error)}")
        self.connected = False
        logger.info("Connection closed")

    disconnect = close

    @property
    def is_connected(self) -> bool:
        return self.connected and self.ftp is not None and self.ftp.sock is not None

    def require_connection(self) -> None:
        if not self.connected or self.ftp is None:
            raise NotConnectedError("FTP")

    def _entries(self, remote_path: Optional[str]) -> List[Tuple[str, str]]:
        """List ``(name, type)`` pairs, type being ``file``, ``dir`` or whatever else MLSD reports."""
        target = remote_path or ''
        try:
            return [
                (posixpath.basename(name.rstrip('/')), facts.get('type', 'file'))
                for name, facts in self.ftp.mlsd(target, facts=['type'])
                if facts.get('type') not in ('cdir', 'pdir')
            ]
        except ftplib.error_perm as e:
            if not str(e).startswith(('500', '502')):
                raise
            logger.debug(f"MLSD unsupported, probing NLST entries of {target or '.'}")
            return self._probe_entries(target)

    def _probe_entries(self, remote_path: str) -> List[Tuple[str, str]]:
        names = self.ftp.nlst(remote_path) if remote_path else self.ftp.nlst()
        entries = []
        # entries CWD accepts are directories
        with remember_cwd(self) as original:
            for name in names:
                base = posixpath.basename(name.rstrip('/'))
                if base in ('.', '..'):
                    continue
                target = name if '/' in name else remote_join(remote_path, name)
                try:
                    self.ftp.cwd(target)
                except ftplib.error_perm:
                    entries.append((base, 'file'))
                else:
                    entries.append((base, 'dir'))
                    self.ftp.cwd(original)
        return entries

    def list_files(self, remote_path: Optional[str] = None) -> List[str]:
        """
        List the regular files of a directory on the FTP server.

        Args:
            remote_path: Directory to list (current directory when None)

        Returns:
            File names, without their directory
        """
        self.require_connection()
        try:
            return [name for name, kind in self._entries(remote_path) if kind == 'file']
        except Exception as e:
            logger.error(f"Failed to list files in {remote_path or '.'}: {str(e)}")
            raise

    def list_directories(self, remote_path: Optional[str] = None) -> List[str]:
        """
        List the subdirectories of a directory on the FTP server.

        Args:
            remote_path: Directory to list (current directory when None)

        Returns:
            Directory names, without their parent
        """
        self.require_connection()
        try:
            return [name for name, kind in self._entries(remote_path) if kind == 'dir']
        except Exception as e:
            logger.error(f"Failed to list directories in {remote_path or '.'}: {str(e)}")
            raise

    def exists(self, remote_path: str) -> bool:
        """Check whether a file or directory exists on the FTP server."""
        self.require_connection()
        try:
            self.ftp.sendcmd(f'MLST {remote_path}')
            return True
        except ftplib.error_perm as e:
            if str(e).startswith('550'):
                return False
            if not str(e).startswith(('500', '502')):
                raise

        parent, name = posixpath.split(remote_path.rstrip('/'))
        try:
            names = self.ftp.nlst(parent) if parent else self.ftp.nlst()
        except ftplib.error_perm:
            return False
        return name in [posixpath.basename(n.rstrip('/')) for n in names]

    def create_directory(self, remote_path: str) -> None:
        """
        Create a directory on the FTP server.

        Args:
            remote_path: Path where the directory should be created
        """
        self.require_connection()
        try:
            self.ftp.mkd(remote_path)
            logger.info(f"Created directory {remote_path}")
        except Exception as e:
            logger.error(f"Failed to create directory {remote_path}: {str(e)}")
            raise

    def delete_file(self, remote_path: str) -> None:
        """
        Remove a file from the FTP server.

        Args:
            remote_path: Path to the file to be removed
        """
        self.require_connection()
        try:
            self.ftp.delete(remote_path)
            logger.info(f"Removed file {remote_path}")
        except Exception as e:
            logger.error(f"Failed to remove file {remote_path}: {str(e)}")
            raise

    def delete_directory(self, remote_path: str) -> None:
        """
        Remove an empty directory from the FTP server.

        Args:
            remote_path: Path to the directory to be removed
        """
        self.require_connection()
        try:
            self.ftp.rmd(remote_path)
            logger.info(f"Removed directory {remote_path}")
        except Exception as e:
            logger.error(f"Failed to remove directory {remote_path}: {str(e)}")
            raise

    def rename(self, from_path: str, to_path: str) -> None:
        """Rename a file or directory on the FTP server."""
        self.require_connection()
        try:
            self.ftp.rename(from_path, to_path)
            logger.info(f"Renamed {from_path} to {to_path}")
        except Exception as e:
            logger.error(f"Failed to rename {from_path}: {str(e)}")
            raise

    def change_working_directory(self, remote_path: str) -> None:
        self.require_connection()
        self.ftp.cwd(remote_path)

    def get_current_directory(self) -> str:
        self.require_connection()
        return self.ftp.pwd()


class FTPUploader:
    """Uploads files, streams and whole directory trees through an ``FTPClient``."""

    def __init__(self, client: FTPClient):
        self.client = client

    def upload_file(self, local_path: PathLike, remote_path: str) -> None:
        """
        Upload a file to the FTP server.

        Args:
            local_path: Path to the local file
            remote_path: Destination path on the FTP server

        Raises:
            NotConnectedError: If the client is not connected
            FileNotFoundError: If the local file does not exist
        """
        self.client.require_connection()
        local_path = Path(local_path)
        if not local_path.is_file():
            raise FileNotFoundError(f"Local file not found: {local_path}")

        try:
            with open(local_path, 'rb') as file:
                self.client.ftp.storbinary(f'STOR {remote_path}', file)
            logger.info(f"Uploaded {local_path} to {remote_path}")
        except Exception as e:
            logger.error(f"Failed to upload {local_path} to {remote_path}: {str(e)}")
            raise

    def upload_fileobj(self, fileobj: BinaryIO, remote_path: str) -> None:
        """Upload the contents of an open binary file object."""
        self.client.require_connection()
        try:
            self.client.ftp.storbinary(f'STOR {remote_path}', fileobj)
            logger.info(f"Uploaded stream to {remote_path}")
        except Exception as e:
            logger.error(f"Failed to upload stream to {remote_path}: {str(e)}")
            raise

    def upload_text_file(self, local_path: PathLike, remote_path: str, encoding: str = 'utf-8') -> None:
        """
        Upload a text file to the FTP server in ASCII mode.

        Args:
            local_path: Path to the local file
            remote_path: Destination path on the FTP server
            encoding: Text encoding (default utf-8)
        """
        self.client.require_connection()
        local_path = Path(local_path)
        if not local_path.is_file():
            raise FileNotFoundError(f"Local file not found: {local_path}")

        try:
            with open(local_path, 'r', encoding=encoding) as file:
                lines = io.BytesIO(file.read().encode(encoding))
            self.client.ftp.storlines(f'STOR {remote_path}', lines)
            # storlines leaves the session in ASCII mode
            self.client.ftp.voidcmd('TYPE I')
            logger.info(f"Uploaded text file {local_path} to {remote_path}")
        except Exception as e:
            logger.error(f"Failed to upload text file {local_path}: {str(e)}")
            raise

    def upload_file_to(self, local_path: PathLike, remote_dir: str, remote_name: str) -> None:
        """Upload a file into ``remote_dir`` under a different name."""
        self.upload_file(local_path, remote_join(remote_dir, remote_name))

    def upload_file_overwrite(self, local_path: PathLike, remote_path: str) -> None:
        """Delete ``remote_path`` first if it exists, then upload."""
        self.client.require_connection()
        if self.client.exists(remote_path):
            self.client.delete_file(remote_path)
        self.upload_file(local_path, remote_path)

    def upload_directory(self, local_dir: PathLike, remote_dir: str) -> None:
        """
        Upload a local directory tree, creating remote directories as needed.

        The remote working directory is the same after the call as before it,
        whether or not the upload succeeded.
        """
        self.client.require_connection()
        mirror.upload_directory(self.client, local_dir, remote_dir, self.upload_file)
        logger.info(f"Uploaded directory {local_dir} to {remote_dir}")


class FTPDownloader:
    """Downloads files, streams and whole directory trees through an ``FTPClient``."""

    def __init__(self, client: FTPClient):
        self.client = client

    def download_file(self, remote_path: str, local_path: PathLike) -> None:
        """
        Download a file from the FTP server, creating local parent directories.

        Args:
            remote_path: Path to the file on the FTP server
            local_path: Destination path on the local machine
        """
        self.client.require_connection()
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(local_path, 'wb') as file:
                self.client.ftp.retrbinary(f'RETR {remote_path}', file.write)
            logger.info(f"Downloaded {remote_path} to {local_path}")
        except Exception as e:
            logger.error(f"Failed to download {remote_path}: {str(e)}")
            raise

    def download_to_stream(self, remote_path: str) -> io.BytesIO:
        """Download a remote file into memory and return it rewound."""
        self.client.require_connection()
        buffer = io.BytesIO()
        try:
            self.client.ftp.retrbinary(f'RETR {remote_path}', buffer.write)
        except Exception as e:
            logger.error(f"Failed to download {remote_path}: {str(e)}")
            raise
        buffer.seek(0)
        return buffer

    def download_text_file(self, remote_path: str, local_path: PathLike, encoding: str = 'utf-8') -> None:
        """
        Download a text file from the FTP server in ASCII mode.

        Args:
            remote_path: Path to the file on the FTP server
            local_path: Destination path on the local machine
            encoding: Text encoding of the remote file and the local copy (default utf-8)
        """
        self.client.require_connection()
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        # retrlines decodes with the session encoding
        previous_encoding = self.client.ftp.encoding
        self.client.ftp.encoding = encoding
        try:
            with open(local_path, 'w', encoding=encoding) as file:
                def write_line(line):
                    file.write(line + '\n')
                self.client.ftp.retrlines(f'RETR {remote_path}', write_line)
            self.client.ftp.voidcmd('TYPE I')
            logger.info(f"Downloaded text file {remote_path} to {local_path}")
        except Exception as e:
            logger.error(f"Failed to download text file {remote_path}: {str(e)}")
            raise
        finally:
            self.client.ftp.encoding = previous_encoding

    def download_file_to(self, remote_path: str, local_dir: PathLike, local_name: str) -> None:
        """Download a file into ``local_dir`` under a different name."""
        self.download_file(remote_path, Path(local_dir) / local_name)

    def download_directory(self, remote_dir: str, local_dir: PathLike) -> None:
        """
        Download a remote directory tree into ``local_dir``.

        The remote working directory is the same after the call as before it,
        whether or not the download succeeded.
        """
        self.client.require_connection()
        mirror.download_directory(self.client, remote_dir, local_dir, self.download_file)
        logger.info(f"Downloaded directory {remote_dir} to {local_dir}")
