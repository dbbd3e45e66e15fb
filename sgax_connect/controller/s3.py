import logging
from contextlib import closing
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from sgax_connect.controller.mirror import PathLike

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class S3Client:
    """
    Wraps a boto3 S3 client for AWS S3 or any S3-compatible service (MinIO, LocalStack...).

    Without explicit keys boto3's default credential chain is used. Passing an
    ``endpoint_url`` switches to path-style addressing, which is what most
    self-hosted services expect.
    """

    def __init__(self, region_name: str = 'us-east-1', aws_access_key_id: Optional[str] = None,
                 aws_secret_access_key: Optional[str] = None, aws_session_token: Optional[str] = None,
                 endpoint_url: Optional[str] = None):
        self.region_name = region_name
        self.endpoint_url = endpoint_url

        session_kwargs = {'region_name': region_name}
        if aws_access_key_id and aws_secret_access_key:
            session_kwargs.update({
                'aws_access_key_id': aws_access_key_id,
                'aws_secret_access_key': aws_secret_access_key
            })
        if aws_session_token:
            session_kwargs['aws_session_token'] = aws_session_token

        client_kwargs = {}
        if endpoint_url:
            client_kwargs['endpoint_url'] = endpoint_url
            client_kwargs['config'] = Config(s3={'addressing_style': 'path'})

        session = boto3.Session(**session_kwargs)
        self.s3 = session.client('s3', **client_kwargs)

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=bucket)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchBucket'):
                return False
            raise

    def create_bucket(self, bucket: str) -> None:
        kwargs = {'Bucket': bucket}
        # us-east-1 rejects an explicit location constraint
        if self.region_name and self.region_name != 'us-east-1':
            kwargs['CreateBucketConfiguration'] = {'LocationConstraint': self.region_name}
        self.s3.create_bucket(**kwargs)
        logger.info(f"Created bucket {bucket}")

    def ensure_bucket(self, bucket: str) -> None:
        """Create ``bucket`` unless it already exists."""
        if not self.bucket_exists(bucket):
            self.create_bucket(bucket)

    def list_objects(self, bucket: str, prefix: Optional[str] = None) -> List[str]:
        """
        List every key in a bucket, optionally under a prefix, across all result pages.
        """
        keys = []
        params = {'Bucket': bucket}
        if prefix:
            params['Prefix'] = prefix
        paginator = self.s3.get_paginator('list_objects_v2')
        for page in paginator.paginate(**params):
            for obj in page.get('Contents', []):
                keys.append(obj['Key'])
        logger.info(f"Listed {len(keys)} objects under s3://{bucket}/{prefix or ''}")
        return keys


def key_prefix(key: str) -> Optional[str]:
    """Return the directory part of ``key`` including its trailing slash, if any."""
    idx = key.rfind('/')
    if idx <= 0:
        return None
    return key[:idx + 1]


class S3Uploader:
    def __init__(self, client: S3Client):
        self.client = client

    def _ensure_prefix_exists(self, bucket: str, key: str) -> None:
        prefix = key_prefix(key)
        if not prefix:
            return
        resp = self.client.s3.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=1)
        if resp.get('KeyCount', 0) == 0:
            self.client.s3.put_object(Bucket=bucket, Key=prefix, Body=b'')
            logger.debug(f"Created folder marker s3://{bucket}/{prefix}")

    def upload(self, bucket: str, key: str, source: PathLike, content_type: Optional[str] = None) -> dict:
        """
        Upload a local file to ``s3://bucket/key``.

        A folder marker object is written for the key's prefix when nothing
        exists under it yet, so folder-oriented browsers show the directory.

        Returns:
            The PutObject response
        """
        source = Path(source)
        if not source.is_file():
            raise FileNotFoundError(f"Local file not found: {source}")

        try:
            self._ensure_prefix_exists(bucket, key)
            extra = {'ContentType': content_type} if content_type else {}
            with open(source, 'rb') as body:
                resp = self.client.s3.put_object(Bucket=bucket, Key=key, Body=body, **extra)
            logger.info(f"Uploaded {source} to s3://{bucket}/{key}")
            return resp
        except ClientError as e:
            logger.error(f"Failed to upload {source} to s3://{bucket}/{key}: {str(e)}")
            raise


class S3Downloader:
    def __init__(self, client: S3Client):
        self.client = client

    def download(self, bucket: str, key: str, destination: PathLike) -> dict:
        """
        Download ``s3://bucket/key`` to a local file, creating parent directories.

        Returns:
            The GetObject response metadata (everything but the body stream)
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            resp = self.client.s3.get_object(Bucket=bucket, Key=key)
            body = resp.pop('Body')
            with closing(body), open(destination, 'wb') as file:
                for chunk in iter(lambda: body.read(CHUNK_SIZE), b''):
                    file.write(chunk)
            logger.info(f"Downloaded s3://{bucket}/{key} to {destination}")
            return resp
        except ClientError as e:
            logger.error(f"Failed to download s3://{bucket}/{key}: {str(e)}")
            raise
