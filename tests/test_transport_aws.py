"""Unit tests for the aiobotocore S3 transport.

All tests use a mocked aiobotocore client -- no real AWS credentials or
network access required. The mock S3 client is injected directly onto
transport._client to bypass session creation.
"""

from unittest.mock import AsyncMock, patch

import pytest
from botocore.exceptions import ClientError

from streamrelay.models import CompletedPart
from streamrelay.transport.aws import AWSTransport


def _client_error(code: str, message: str = "error") -> ClientError:
    """Create a botocore ClientError with the given error code."""
    return ClientError(
        {"Error": {"Code": code, "Message": message}},
        "TestOperation",
    )


def _make_transport(**kwargs) -> AWSTransport:
    """Create an AWSTransport with a mock client (skip init)."""
    transport = AWSTransport(**kwargs)
    transport._client = AsyncMock()
    transport._client_ctx = AsyncMock()
    return transport


def _patched_session(mock_client):
    patcher = patch("streamrelay.transport.aws.AioSession")
    mock_session_cls = patcher.start()
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__ = AsyncMock(return_value=mock_client)
    mock_ctx.__aexit__ = AsyncMock(return_value=False)
    mock_session_cls.return_value.create_client.return_value = mock_ctx
    return patcher, mock_session_cls


class TestInit:
    """Tests for init() and close()."""

    async def test_init_verifies_bucket(self):
        mock_client = AsyncMock()
        patcher, _ = _patched_session(mock_client)
        try:
            transport = AWSTransport(region="us-west-2", verify_bucket="my-bucket")
            await transport.init()
            mock_client.head_bucket.assert_awaited_once_with(Bucket="my-bucket")
            await transport.close()
        finally:
            patcher.stop()

    async def test_init_skips_verification_without_bucket(self):
        mock_client = AsyncMock()
        patcher, _ = _patched_session(mock_client)
        try:
            transport = AWSTransport()
            await transport.init()
            mock_client.head_bucket.assert_not_awaited()
        finally:
            patcher.stop()

    async def test_init_raises_on_missing_bucket(self):
        mock_client = AsyncMock()
        mock_client.head_bucket = AsyncMock(side_effect=_client_error("404", "Not Found"))
        patcher, _ = _patched_session(mock_client)
        try:
            transport = AWSTransport(verify_bucket="no-such-bucket")
            with pytest.raises(ValueError, match="Cannot access S3 bucket"):
                await transport.init()
            assert transport._client is None
        finally:
            patcher.stop()

    async def test_init_passes_endpoint_and_credentials(self):
        mock_client = AsyncMock()
        patcher, mock_session_cls = _patched_session(mock_client)
        try:
            transport = AWSTransport(
                endpoint_url="http://minio:9000",
                use_path_style=True,
                access_key_id="AK",
                secret_access_key="SK",
            )
            await transport.init()
            session = mock_session_cls.return_value
            session.set_credentials.assert_called_once_with("AK", "SK")
            _, kwargs = session.create_client.call_args
            assert kwargs["endpoint_url"] == "http://minio:9000"
            assert kwargs["config"].s3 == {"addressing_style": "path"}
        finally:
            patcher.stop()

    async def test_close_exits_context(self):
        transport = _make_transport()
        ctx_ref = transport._client_ctx
        await transport.close()
        ctx_ref.__aexit__.assert_awaited_once()
        assert transport._client is None
        assert transport._client_ctx is None

    async def test_close_noop_when_not_initialized(self):
        transport = AWSTransport()
        await transport.close()  # Should not raise


class TestMultipartCalls:
    """Each protocol operation maps to one S3 call."""

    async def test_begin_session(self):
        transport = _make_transport()
        transport._client.create_multipart_upload.return_value = {
            "UploadId": "up-1",
            "ResponseMetadata": {"HTTPStatusCode": 200},
        }

        session_id, meta = await transport.begin_session("bkt", "c/file.bin")

        assert session_id == "up-1"
        assert meta == {"HTTPStatusCode": 200}
        transport._client.create_multipart_upload.assert_awaited_once_with(
            Bucket="bkt", Key="c/file.bin"
        )

    async def test_upload_part_returns_etag(self):
        transport = _make_transport()
        transport._client.upload_part.return_value = {"ETag": '"abc"'}

        etag = await transport.upload_part("bkt", "k", "up-1", 2, b"data")

        assert etag == '"abc"'
        transport._client.upload_part.assert_awaited_once_with(
            Bucket="bkt", Key="k", UploadId="up-1", PartNumber=2, Body=b"data"
        )

    async def test_upload_part_error_propagates(self):
        transport = _make_transport()
        transport._client.upload_part.side_effect = _client_error("NoSuchUpload")
        with pytest.raises(ClientError):
            await transport.upload_part("bkt", "k", "up-1", 1, b"data")

    async def test_complete_session_sends_parts(self):
        transport = _make_transport()
        transport._client.complete_multipart_upload.return_value = {
            "Location": "https://bkt.s3.amazonaws.com/k",
            "ETag": '"final-2"',
        }
        parts = [CompletedPart(1, '"a"'), CompletedPart(2, '"b"')]

        result = await transport.complete_session("bkt", "k", "up-1", parts)

        assert result == {"Location": "https://bkt.s3.amazonaws.com/k", "ETag": "final-2"}
        transport._client.complete_multipart_upload.assert_awaited_once_with(
            Bucket="bkt",
            Key="k",
            UploadId="up-1",
            MultipartUpload={
                "Parts": [
                    {"PartNumber": 1, "ETag": '"a"'},
                    {"PartNumber": 2, "ETag": '"b"'},
                ]
            },
        )

    async def test_abort_session(self):
        transport = _make_transport()
        await transport.abort_session("bkt", "k", "up-1")
        transport._client.abort_multipart_upload.assert_awaited_once_with(
            Bucket="bkt", Key="k", UploadId="up-1"
        )

    async def test_put_object(self):
        transport = _make_transport()
        transport._client.put_object.return_value = {"ETag": '"d41d8cd98f00b204e9800998ecf8427e"'}

        etag = await transport.put_object("bkt", "k", b"")

        assert etag == "d41d8cd98f00b204e9800998ecf8427e"
        transport._client.put_object.assert_awaited_once_with(Bucket="bkt", Key="k", Body=b"")
