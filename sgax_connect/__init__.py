from sgax_connect.controller.email import EmailBuilder, EmailConfig, EmailService
from sgax_connect.controller.ftp import FTPClient, FTPDownloader, FTPUploader
from sgax_connect.controller.mail_reader import MailReader
from sgax_connect.controller.progress import ProgressMonitor
from sgax_connect.controller.s3 import S3Client, S3Downloader, S3Uploader
from sgax_connect.controller.sftp import SFTPClient, SFTPDownloader, SFTPUploader
from sgax_connect.errors import (
    ConnectError,
    EmailError,
    MailError,
    NotConnectedError,
    TransferCancelledError,
)

__version__ = "1.0.0"

__all__ = [
    "ConnectError",
    "EmailBuilder",
    "EmailConfig",
    "EmailError",
    "EmailService",
    "FTPClient",
    "FTPDownloader",
    "FTPUploader",
    "MailError",
    "MailReader",
    "NotConnectedError",
    "ProgressMonitor",
    "S3Client",
    "S3Downloader",
    "S3Uploader",
    "SFTPClient",
    "SFTPDownloader",
    "SFTPUploader",
    "TransferCancelledError",
]
