import logging
import posixpath
import stat
import paramiko
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional

from sgax_connect.controller import mirror
from sgax_connect.controller.mirror import PathLike, remote_join
from sgax_connect.controller.progress import ProgressMonitor, as_callback, NO_PROGRESS
from sgax_connect.errors import NotConnectedError

logging.getLogger("paramiko").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)

# Transfer modes for SFTPUploader.upload_file_with_mode
OVERWRITE = 0
RESUME = 1
APPEND = 2

CHUNK_SIZE = 32768


class SFTPClient:
    """
    A class to handle an SFTP connection: connecting, listing and managing remote files.

    Transfers live in ``SFTPUploader`` and ``SFTPDownloader``, which share this handle.
    """

    def __init__(self, hostname: str, username: str, password: Optional[str] = None,
                 private_key_path: Optional[str] = None, passphrase: Optional[str] = None,
                 port: int = 22):
        """
        Initialize SFTP client with connection parameters.

        Args:
            hostname: The SFTP server hostname
            username: Username for authentication
            password: Password for authentication (optional if using private key)
            private_key_path: Path to private key file (optional if using password)
            passphrase: Passphrase protecting the private key, if any
            port: Port number (default is 22)
        """
        self.hostname = hostname
        self.username = username
        self.password = password
        self.private_key_path = private_key_path
        self.passphrase = passphrase
        self.port = port
        self.sftp = None
        self.transport = None
        self.connected = False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _load_private_key(self) -> paramiko.PKey:
        for key_type in KEY_TYPES:
            try:
                return key_type.from_private_key_file(self.private_key_path, password=self.passphrase)
            except paramiko.PasswordRequiredException:
                raise
            except paramiko.SSHException:
                continue
        raise paramiko.SSHException(f"Unsupported private key format: {self.private_key_path}")

    def connect(self) -> None:
        """
        Establish SFTP connection using either password or private key authentication.

        Host keys are not verified.

        Raises:
            paramiko.SSHException: If connection fails
            paramiko.AuthenticationException: If authentication fails
        """
        if self.connected:
            return
        try:
            self.transport = paramiko.Transport((self.hostname, self.port))

            if self.private_key_path:
                self.transport.connect(username=self.username, pkey=self._load_private_key())
            else:
                self.transport.connect(username=self.username, password=self.password)

            self.sftp = paramiko.SFTPClient.from_transport(self.transport)
            self.connected = True
            logger.info(f"Connected to {self.hostname}:{self.port}")

        except Exception as e:
            logger.error(f"Failed to connect to {self.hostname}: {str(e)}")
            self.close()
            raise

    def close(self) -> None:
        """Close the SFTP channel and transport. Errors while closing are ignored."""
        for resource in (self.sftp, self.transport):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.debug(f"Error while closing {type(resource).__name__}: {str(e)}")
        self.connected = False
        logger.info("Connection closed")

    disconnect = close

    @property
    def is_connected(self) -> bool:
        return (self.connected and self.transport is not None
                and self.transport.is_active())

    def require_connection(self) -> None:
        if not self.connected or self.sftp is None:
            raise NotConnectedError("SFTP")

    def _entries(self, remote_path: str) -> List[paramiko.SFTPAttributes]:
        return [
            entry for entry in self.sftp.listdir_attr(remote_path)
            if entry.filename not in ('.', '..')
        ]

    def list_files(self, remote_path: str = '.') -> List[str]:
        """
        List the non-directory entries of a directory on the SFTP server.

        Args:
            remote_path: Path to the directory on the SFTP server

        Returns:
            File names, without their directory
        """
        self.require_connection()
        try:
            return [e.filename for e in self._entries(remote_path) if not stat.S_ISDIR(e.st_mode)]
        except Exception as e:
            logger.error(f"Failed to list files in {remote_path}: {str(e)}")
            raise

    def list_directories(self, remote_path: str = '.') -> List[str]:
        """
        List the subdirectories of a directory on the SFTP server.

        Args:
            remote_path: Path to the directory on the SFTP server

        Returns:
            Directory names, without their parent
        """
        self.require_connection()
        try:
            return [e.filename for e in self._entries(remote_path) if stat.S_ISDIR(e.st_mode)]
        except Exception as e:
            logger.error(f"Failed to list directories in {remote_path}: {str(e)}")
            raise

    def exists(self, remote_path: str) -> bool:
        """Check whether a path exists. Never raises for a missing path."""
        self.require_connection()
        try:
            self.sftp.lstat(remote_path)
            return True
        except IOError:
            return False

    def is_file(self, remote_path: str) -> bool:
        self.require_connection()
        return not stat.S_ISDIR(self.sftp.lstat(remote_path).st_mode)

    def is_directory(self, remote_path: str) -> bool:
        self.require_connection()
        return stat.S_ISDIR(self.sftp.lstat(remote_path).st_mode)

    def get_file_size(self, remote_path: str) -> int:
        self.require_connection()
        return self.sftp.lstat(remote_path).st_size

    def create_directory(self, remote_path: str) -> None:
        """
        Create a directory on the SFTP server.

        Args:
            remote_path: Path where the directory should be created
        """
        self.require_connection()
        try:
            self.sftp.mkdir(remote_path)
            logger.info(f"Created directory {remote_path}")
        except Exception as e:
            logger.error(f"Failed to create directory {remote_path}: {str(e)}")
            raise

    def create_directory_recursive(self, remote_path: str) -> None:
        """
        Create a directory and all its parent directories if they don't exist.

        Args:
            remote_path: Path to create on the SFTP server
        """
        self.require_connection()
        current_path = '/' if remote_path.startswith('/') else ''

        for part in remote_path.split('/'):
            if not part:
                continue
            current_path = posixpath.join(current_path, part) if current_path else part
            if not self.exists(current_path):
                self.create_directory(current_path)

    def delete_file(self, remote_path: str) -> None:
        """
        Remove a file from the SFTP server.

        Args:
            remote_path: Path to the file to be removed
        """
        self.require_connection()
        try:
            self.sftp.remove(remote_path)
            logger.info(f"Removed file {remote_path}")
        except Exception as e:
            logger.error(f"Failed to remove file {remote_path}: {str(e)}")
            raise

    def delete_directory(self, remote_path: str) -> None:
        """Remove an empty directory from the SFTP server."""
        self.require_connection()
        try:
            self.sftp.rmdir(remote_path)
            logger.info(f"Removed directory {remote_path}")
        except Exception as e:
            logger.error(f"Failed to remove directory {remote_path}: {str(e)}")
            raise

    def rename(self, from_path: str, to_path: str) -> None:
        self.require_connection()
        try:
            self.sftp.rename(from_path, to_path)
            logger.info(f"Renamed {from_path} to {to_path}")
        except Exception as e:
            logger.error(f"Failed to rename {from_path}: {str(e)}")
            raise

    def change_working_directory(self, remote_path: str) -> None:
        self.require_connection()
        self.sftp.chdir(remote_path)

    def get_current_directory(self) -> str:
        self.require_connection()
        # paramiko only tracks a cwd after the first chdir
        return self.sftp.getcwd() or self.sftp.normalize('.')


class SFTPUploader:
    """Uploads files, streams and whole directory trees through an ``SFTPClient``."""

    def __init__(self, client: SFTPClient):
        self.client = client

    def _check_local_file(self, local_path: PathLike) -> Path:
        self.client.require_connection()
        local_path = Path(local_path)
        if not local_path.is_file():
            raise FileNotFoundError(f"Local file not found: {local_path}")
        return local_path

    def upload_file(self, local_path: PathLike, remote_path: str) -> None:
        """
        Upload a file to the SFTP server.

        Args:
            local_path: Path to the local file
            remote_path: Destination path on the SFTP server

        Raises:
            NotConnectedError: If the client is not connected
            FileNotFoundError: If the local file does not exist
        """
        local_path = self._check_local_file(local_path)
        try:
            logger.info(f"Uploading to {remote_path}")
            self.client.sftp.put(str(local_path), remote_path, confirm=True)
            logger.info(f"Successfully uploaded to {remote_path}")

        except Exception as e:
            logger.error(f"Failed to upload {local_path} to {remote_path}: {str(e)}")
            raise

    def upload_fileobj(self, fileobj: BinaryIO, remote_path: str) -> None:
        """Upload the contents of an open binary file object."""
        self.client.require_connection()
        try:
            self.client.sftp.putfo(fileobj, remote_path)
            logger.info(f"Uploaded stream to {remote_path}")
        except Exception as e:
            logger.error(f"Failed to upload stream to {remote_path}: {str(e)}")
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

    def upload_file_with_mode(self, local_path: PathLike, remote_path: str, mode: int = OVERWRITE) -> None:
        """
        Upload a file with an explicit transfer mode.

        Args:
            local_path: Path to the local file
            remote_path: Destination path on the SFTP server
            mode: ``OVERWRITE`` replaces the remote file, ``APPEND`` adds the whole
                local file to its end, ``RESUME`` sends only the bytes past the
                remote file's current size

        Raises:
            ValueError: If the mode is unknown
            IOError: If resuming onto a remote file larger than the local one
        """
        if mode not in (OVERWRITE, RESUME, APPEND):
            raise ValueError(f"Unknown transfer mode: {mode}")
        local_path = self._check_local_file(local_path)
        if mode == OVERWRITE:
            self.upload_file(local_path, remote_path)
            return

        offset = 0
        if mode == RESUME and self.client.exists(remote_path):
            offset = self.client.get_file_size(remote_path)
            if offset > local_path.stat().st_size:
                raise IOError(f"Cannot resume {remote_path}: remote file is larger than {local_path}")

        try:
            with open(local_path, 'rb') as source, self.client.sftp.open(remote_path, 'ab') as target:
                source.seek(offset)
                for chunk in iter(lambda: source.read(CHUNK_SIZE), b''):
                    target.write(chunk)
            logger.info(f"Uploaded {local_path} to {remote_path} from byte {offset}")
        except Exception as e:
            logger.error(f"Failed to upload {local_path} to {remote_path}: {str(e)}")
            raise

    def upload_file_with_progress(self, local_path: PathLike, remote_path: str,
                                  monitor: Optional[ProgressMonitor] = None) -> None:
        """
        Upload a file, reporting progress to ``monitor``.

        Raises:
            TransferCancelledError: If the monitor's ``count`` returned False
        """
        local_path = self._check_local_file(local_path)
        monitor = monitor or NO_PROGRESS
        monitor.init(ProgressMonitor.PUT, str(local_path), remote_path, local_path.stat().st_size)
        callback = as_callback(monitor, str(local_path), remote_path)
        try:
            self.client.sftp.put(str(local_path), remote_path, callback=callback, confirm=True)
            logger.info(f"Successfully uploaded to {remote_path}")
        except Exception as e:
            logger.error(f"Failed to upload {local_path} to {remote_path}: {str(e)}")
            raise
        finally:
            monitor.end()

    def upload_files(self, local_paths: Iterable[PathLike], remote_dir: str) -> None:
        """Upload several files into ``remote_dir``, keeping their base names."""
        self.client.require_connection()
        if not self.client.exists(remote_dir):
            self.client.create_directory_recursive(remote_dir)

        for local_path in local_paths:
            local_path = Path(local_path)
            self.upload_file(local_path, remote_join(remote_dir, local_path.name))

    def upload_directory(self, local_dir: PathLike, remote_dir: str) -> None:
        """
        Upload a local directory tree, creating remote directories as needed.

        The remote working directory is the same after the call as before it,
        whether or not the upload succeeded.
        """
        self.client.require_connection()
        mirror.upload_directory(self.client, local_dir, remote_dir, self.upload_file)
        logger.info(f"Uploaded directory {local_dir} to {remote_dir}")


class SFTPDownloader:
    """Downloads files, streams and whole directory trees through an ``SFTPClient``."""

    def __init__(self, client: SFTPClient):
        self.client = client

    def download_file(self, remote_path: str, local_path: PathLike) -> None:
        """
        Download a file from the SFTP server, creating local parent directories.

        Args:
            remote_path: Path to the file on the SFTP server
            local_path: Destination path on the local machine
        """
        self.client.require_connection()
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.client.sftp.get(remote_path, str(local_path))
            logger.info(f"Downloaded {remote_path} to {local_path}")
        except Exception as e:
            logger.error(f"Failed to download {remote_path}: {str(e)}")
            raise

    def open_stream(self, remote_path: str) -> paramiko.SFTPFile:
        """Open a remote file for reading. The caller closes it."""
        self.client.require_connection()
        return self.client.sftp.open(remote_path, 'rb')

    def download_file_to(self, remote_path: str, local_dir: PathLike, local_name: str) -> None:
        """Download a file into ``local_dir`` under a different name."""
        self.download_file(remote_path, Path(local_dir) / local_name)

    def download_file_with_progress(self, remote_path: str, local_path: PathLike,
                                    monitor: Optional[ProgressMonitor] = None) -> None:
        """
        Download a file, reporting progress to ``monitor``.

        Raises:
            TransferCancelledError: If the monitor's ``count`` returned False
        """
        self.client.require_connection()
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        monitor = monitor or NO_PROGRESS
        monitor.init(ProgressMonitor.GET, remote_path, str(local_path), self.client.sftp.stat(remote_path).st_size)
        callback = as_callback(monitor, remote_path, str(local_path))
        try:
            self.client.sftp.get(remote_path, str(local_path), callback=callback)
            logger.info(f"Downloaded {remote_path} to {local_path}")
        except Exception as e:
            logger.error(f"Failed to download {remote_path}: {str(e)}")
            raise
        finally:
            monitor.end()

    def download_files(self, remote_paths: Iterable[str], local_dir: PathLike) -> None:
        """Download several remote files into ``local_dir``, keeping their base names."""
        local_dir = Path(local_dir)
        local_dir.mkdir(parents=True, exist_ok=True)

        for remote_path in remote_paths:
            self.download_file(remote_path, local_dir / posixpath.basename(remote_path))

    def download_directory(self, remote_dir: str, local_dir: PathLike) -> None:
        """
        Download a remote directory tree into ``local_dir``.

        The remote working directory is the same after the call as before it,
        whether or not the download succeeded.
        """
        self.client.require_connection()
        mirror.download_directory(self.client, remote_dir, local_dir, self.download_file)
        logger.info(f"Downloaded directory {remote_dir} to {local_dir}")
