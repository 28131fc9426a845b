"""AWS S3 storage transport for streamrelay.

Drives native S3 multipart uploads via aiobotocore. Works against any
S3-compatible endpoint (MinIO, etc.) when ``endpoint_url`` is set.

Credentials are resolved via the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.) unless explicit keys are
configured.
"""

import logging
from typing import Any

from aiobotocore.session import AioSession
from botocore.exceptions import ClientError

from streamrelay.models import CompletedPart

logger = logging.getLogger(__name__)


class AWSTransport:
    """Storage transport backed by an aiobotocore S3 client.

    Attributes:
        region: The AWS region.
        endpoint_url: Custom S3 endpoint, empty for AWS.
        use_path_style: Use path-style addressing (needed by most S3 clones).
        verify_bucket: Bucket to check with head_bucket on init, empty to skip.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: str = "",
        use_path_style: bool = False,
        access_key_id: str = "",
        secret_access_key: str = "",
        verify_bucket: str = "",
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.verify_bucket = verify_bucket
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client and optionally verify the bucket.

        Raises:
            ValueError: If the bucket to verify does not exist or is inaccessible.
        """
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.use_path_style:
            from botocore.config import Config as BotoConfig
            client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})

        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        if self.verify_bucket:
            try:
                await self._client.head_bucket(Bucket=self.verify_bucket)
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                await self.close()
                raise ValueError(
                    f"Cannot access S3 bucket '{self.verify_bucket}': {code}"
                ) from e

        logger.info(
            "AWS transport initialized: region=%s endpoint=%s",
            self.region,
            self.endpoint_url or "default",
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def begin_session(self, bucket: str, key: str) -> tuple[str, dict[str, Any]]:
        """Create a multipart upload and return its UploadId."""
        resp = await self._client.create_multipart_upload(Bucket=bucket, Key=key)
        return resp["UploadId"], resp.get("ResponseMetadata", {})

    async def upload_part(
        self, bucket: str, key: str, session_id: str, part_number: int, body: bytes
    ) -> str:
        """Upload one part; the returned ETag is passed back verbatim on complete."""
        resp = await self._client.upload_part(
            Bucket=bucket,
            Key=key,
            UploadId=session_id,
            PartNumber=part_number,
            Body=body,
        )
        return resp["ETag"]

    async def complete_session(
        self, bucket: str, key: str, session_id: str, parts: list[CompletedPart]
    ) -> dict[str, Any]:
        """Complete the multipart upload.

        Returns:
            ``Location`` and ``ETag`` of the assembled object (ETag quotes stripped).
        """
        resp = await self._client.complete_multipart_upload(
            Bucket=bucket,
            Key=key,
            UploadId=session_id,
            MultipartUpload={"Parts": [p.to_dict() for p in parts]},
        )
        return {
            "Location": resp.get("Location", ""),
            "ETag": resp.get("ETag", "").strip('"'),
        }

    async def abort_session(self, bucket: str, key: str, session_id: str) -> None:
        """Abort the multipart upload and let S3 discard its parts."""
        await self._client.abort_multipart_upload(
            Bucket=bucket,
            Key=key,
            UploadId=session_id,
        )

    async def put_object(self, bucket: str, key: str, body: bytes) -> str:
        """Upload a whole object with a single PutObject call."""
        resp = await self._client.put_object(Bucket=bucket, Key=key, Body=body)
        return resp.get("ETag", "").strip('"')
