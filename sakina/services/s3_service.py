import boto3
import logging
from typing import Optional
from botocore.config import Config
from botocore.exceptions import ClientError
from sakina.config import settings
from sakina.services.storage_service import StorageBackend

logger = logging.getLogger(__name__)


class S3Storage(StorageBackend):
    """
    S3-compatible object storage (AWS S3, Cloudflare R2, MinIO).
    Objects are private; clients get presigned GET URLs.
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ):
        self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
        if not self.bucket_name:
            raise ValueError("S3_BUCKET_NAME must be set when STORAGE_BACKEND=s3")

        if client is not None:
            self.s3_client = client
        else:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=endpoint_url or settings.S3_ENDPOINT_URL,
                region_name=settings.AWS_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                config=Config(signature_version='s3v4'),
            )
        logger.info(f"✅ S3 storage initialized - Bucket: {self.bucket_name}")

    async def save(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        extra_args = {'ContentType': content_type or 'application/octet-stream'}
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=data, **extra_args)
        except ClientError as e:
            logger.error(f"❌ S3 upload failed for {key}: {e}")
            raise
        logger.info(f"✅ Uploaded to S3: {key} ({len(data)} bytes)")
        return key

    async def read(self, key: str) -> bytes:
        response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        return response['Body'].read()

    def delete(self, key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"🗑️ Deleted from S3: {key}")
            return True
        except ClientError as e:
            logger.error(f"❌ S3 deletion failed for {key}: {e}")
            return False

    def exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError:
            return False

    def url(self, key: str, expires: Optional[int] = None) -> str:
        return self.s3_client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket_name, 'Key': key},
            ExpiresIn=expires or settings.SIGNED_URL_EXPIRE_SECONDS,
        )

    def test_connection(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            logger.info("✅ S3 connection test successful")
            return True
        except ClientError as e:
            error_code = e.response['Error']['Code']
            logger.error(f"❌ S3 connection test failed: {error_code}")
            return False
