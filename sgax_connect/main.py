"""
Smoke checks against real servers, configured through the environment.

    sgax-connect ftp     upload, list, rename, list, delete, list
    sgax-connect sftp    same cycle inside SFTP_WORK_DIR (or a sftp-test directory)
    sgax-connect s3      ensure bucket, upload, list, download
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sgax_connect.controller.ftp import FTPUploader
from sgax_connect.controller.s3 import S3Downloader, S3Uploader
from sgax_connect.controller.sftp import SFTPUploader
from sgax_connect.settings import Settings, configure_logging, get_settings

logger = logging.getLogger(__name__)

SOURCE_NAME = "text.txt"
RENAMED_NAME = "textr.txt"


def check_cycle(client, uploader, source: Path) -> None:
    """
    Upload ``source`` as text.txt, rename it to textr.txt and delete it,
    checking the listing after every step.
    """
    uploader.upload_file(source, SOURCE_NAME)
    files = client.list_files()
    if SOURCE_NAME not in files:
        raise AssertionError(f"{SOURCE_NAME} missing after upload: {files}")
    logger.info(f"Upload OK, {len(files)} files listed")

    client.rename(SOURCE_NAME, RENAMED_NAME)
    files = client.list_files()
    if SOURCE_NAME in files or files.count(RENAMED_NAME) != 1:
        raise AssertionError(f"Unexpected listing after rename: {files}")
    logger.info(f"Rename OK: {SOURCE_NAME} -> {RENAMED_NAME}")

    client.delete_file(RENAMED_NAME)
    files = client.list_files()
    if RENAMED_NAME in files:
        raise AssertionError(f"{RENAMED_NAME} still listed after delete: {files}")
    logger.info(f"Delete OK: {RENAMED_NAME}")


def check_ftp(settings: Settings, source: Path) -> None:
    client = settings.ftp.client()
    try:
        client.connect()
        check_cycle(client, FTPUploader(client), source)
    finally:
        client.close()


def check_sftp(settings: Settings, source: Path) -> None:
    client = settings.sftp.client()
    try:
        client.connect()
        logger.info(f"Current directory: {client.get_current_directory()}")
        try:
            client.change_working_directory(settings.sftp.work_dir)
        except IOError:
            # fall back to a scratch directory under the login directory
            if not client.exists("sftp-test"):
                client.create_directory("sftp-test")
            client.change_working_directory("sftp-test")
        logger.info(f"Working in {client.get_current_directory()}")
        check_cycle(client, SFTPUploader(client), source)
    finally:
        client.close()


def check_s3(settings: Settings, source: Path) -> None:
    client = settings.s3.client()
    bucket = settings.s3.bucket
    client.ensure_bucket(bucket)

    S3Uploader(client).upload(bucket, SOURCE_NAME, source, content_type="text/plain")
    keys = client.list_objects(bucket)
    if SOURCE_NAME not in keys:
        raise AssertionError(f"{SOURCE_NAME} missing from bucket {bucket}")
    logger.info(f"Listing OK, {len(keys)} objects in {bucket}")

    destination = source.with_name(f"downloaded {SOURCE_NAME}")
    S3Downloader(client).download(bucket, SOURCE_NAME, destination)
    if destination.read_bytes() != source.read_bytes():
        raise AssertionError(f"Downloaded content differs from {source}")
    logger.info(f"Download OK: {destination}")


CHECKS = {
    "ftp": check_ftp,
    "sftp": check_sftp,
    "s3": check_s3,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="sgax-connect", description="Run a transfer smoke check")
    parser.add_argument("service", choices=sorted(CHECKS))
    parser.add_argument("--source", type=Path, help="File to upload (default: WORK_DIR/text.txt)")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)
    source = args.source or Path(settings.work_dir) / SOURCE_NAME
    if not source.is_file():
        logger.error(f"Test file not found: {source}")
        return 2

    try:
        CHECKS[args.service](settings, source)
    except Exception as e:
        logger.error(f"{args.service} check failed: {str(e)}")
        return 1
    logger.info(f"{args.service} check completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
