from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from enum import Enum
from typing import Optional
import logging
import os
from dotenv import load_dotenv

# Load environment variables first
env = os.getenv("APP_ENV", "local")
env_file = ".env"
if env == "local":
    env_file = ".env.local"
load_dotenv(env_file, override=True)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class EnvironmentType(str, Enum):
    LOCAL = "local"
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class FTPSettings(BaseSettings):
    hostname: str = "localhost"
    username: str = ""
    password: str = ""
    port: int = 21
    passive_mode: bool = True

    model_config = SettingsConfigDict(
        env_prefix="FTP_",
        case_sensitive=False,
        extra="allow"
    )

    def client(self):
        from sgax_connect.controller.ftp import FTPClient
        return FTPClient(
            hostname=self.hostname,
            username=self.username,
            password=self.password,
            port=self.port,
            passive_mode=self.passive_mode
        )


class SFTPSettings(BaseSettings):
    hostname: str = "localhost"
    username: str = ""
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
    port: int = 22
    work_dir: str = "/upload"

    model_config = SettingsConfigDict(
        env_prefix="SFTP_",
        case_sensitive=False,
        extra="allow"
    )

    def client(self):
        from sgax_connect.controller.sftp import SFTPClient
        return SFTPClient(
            hostname=self.hostname,
            username=self.username,
            password=self.password,
            private_key_path=self.private_key_path,
            passphrase=self.passphrase,
            port=self.port
        )


class S3Settings(BaseSettings):
    endpoint_url: Optional[str] = None
    region_name: str = "us-east-1"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: str = "test"

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        case_sensitive=False,
        extra="allow"
    )

    def client(self):
        from sgax_connect.controller.s3 import S3Client
        return S3Client(
            region_name=self.region_name,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            endpoint_url=self.endpoint_url
        )


class SMTPSettings(BaseSettings):
    server: str = "smtp.gmail.com"
    port: int = 587
    username: str = ""
    password: str = ""
    use_ssl: bool = False
    use_tls: bool = True

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        case_sensitive=False,
        extra="allow"
    )

    def email_config(self):
        from sgax_connect.controller.email import EmailConfig
        return EmailConfig(
            smtp_server=self.server,
            smtp_port=self.port,
            username=self.username,
            password=self.password,
            use_ssl=self.use_ssl,
            use_tls=self.use_tls
        )


class IMAPSettings(BaseSettings):
    host: str = "imap.gmail.com"
    port: Optional[int] = None
    username: str = ""
    password: str = ""
    use_ssl: bool = True
    protocol: str = "imap"

    model_config = SettingsConfigDict(
        env_prefix="IMAP_",
        case_sensitive=False,
        extra="allow"
    )

    def reader(self):
        from sgax_connect.controller.mail_reader import MailReader
        return MailReader(
            host=self.host,
            username=self.username,
            password=self.password,
            port=self.port,
            use_ssl=self.use_ssl,
            protocol=self.protocol
        )


class Settings(BaseSettings):
    app_env: EnvironmentType = EnvironmentType.LOCAL
    log_level: str = "INFO"
    work_dir: str = "testfile"

    ftp: FTPSettings = Field(default_factory=FTPSettings)
    sftp: SFTPSettings = Field(default_factory=SFTPSettings)
    s3: S3Settings = Field(default_factory=S3Settings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    imap: IMAPSettings = Field(default_factory=IMAPSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file_encoding='utf-8',
        extra="allow",
        env_nested_delimiter='__'
    )


@lru_cache()
def get_settings() -> Settings:
    """Get settings instance with environment-based configuration"""
    env = os.getenv("APP_ENV", "local")
    env_file = ".env"
    if env == "local":
        env_file = ".env.local"

    logging.getLogger(__name__).debug(f"Loading settings from {env_file} (exists: {os.path.exists(env_file)})")
    return Settings(_env_file=env_file)


def configure_logging(level: str = "INFO") -> None:
    """Install the shared log format and quiet the chatty transport libraries"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler()
        ]
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
