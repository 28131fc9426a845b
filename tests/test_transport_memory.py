"""Tests for the in-memory storage transport."""

import hashlib

import pytest

from streamrelay.config import StorageConfig
from streamrelay.models import CompletedPart
from streamrelay.transport import create_transport
from streamrelay.transport.aws import AWSTransport
from streamrelay.transport.memory import (
    InvalidPart,
    MemoryTransport,
    MemoryTransportError,
    NoSuchSession,
)


@pytest.fixture
async def memory():
    transport = MemoryTransport()
    await transport.init()
    yield transport
    await transport.close()


class TestSessions:
    async def test_full_lifecycle(self, memory):
        sid, meta = await memory.begin_session("b", "k")
        e1 = await memory.upload_part("b", "k", sid, 1, b"hello ")
        e2 = await memory.upload_part("b", "k", sid, 2, b"world")

        result = await memory.complete_session(
            "b", "k", sid, [CompletedPart(1, e1), CompletedPart(2, e2)]
        )

        data, etag = memory.objects[("b", "k")]
        assert data == b"hello world"
        assert etag == result["ETag"]
        assert etag.endswith("-2")
        assert meta["HTTPStatusCode"] == 200
        assert memory.open_sessions == []

    async def test_part_etag_is_quoted_md5(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        etag = await memory.upload_part("b", "k", sid, 1, b"abc")
        assert etag == f'"{hashlib.md5(b"abc").hexdigest()}"'

    async def test_reuploaded_part_replaces_previous(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        await memory.upload_part("b", "k", sid, 1, b"old")
        etag = await memory.upload_part("b", "k", sid, 1, b"new")
        await memory.complete_session("b", "k", sid, [CompletedPart(1, etag)])
        assert memory.objects[("b", "k")][0] == b"new"

    async def test_abort_discards_session(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        await memory.upload_part("b", "k", sid, 1, b"x")
        await memory.abort_session("b", "k", sid)
        assert memory.open_sessions == []
        with pytest.raises(NoSuchSession):
            await memory.upload_part("b", "k", sid, 2, b"y")

    async def test_put_object(self, memory):
        etag = await memory.put_object("b", "empty", b"")
        assert memory.objects[("b", "empty")] == (b"", etag)


class TestValidation:
    async def test_unknown_session(self, memory):
        with pytest.raises(NoSuchSession):
            await memory.upload_part("b", "k", "nope", 1, b"x")

    async def test_session_bound_to_key(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        with pytest.raises(NoSuchSession):
            await memory.abort_session("b", "other", sid)

    async def test_part_number_range(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        with pytest.raises(MemoryTransportError):
            await memory.upload_part("b", "k", sid, 0, b"x")

    async def test_empty_completion_rejected(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        with pytest.raises(MemoryTransportError):
            await memory.complete_session("b", "k", sid, [])

    async def test_stale_etag_rejected(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        await memory.upload_part("b", "k", sid, 1, b"x")
        with pytest.raises(InvalidPart):
            await memory.complete_session("b", "k", sid, [CompletedPart(1, '"bogus"')])

    async def test_out_of_order_parts_rejected(self, memory):
        sid, _ = await memory.begin_session("b", "k")
        e1 = await memory.upload_part("b", "k", sid, 1, b"x")
        e2 = await memory.upload_part("b", "k", sid, 2, b"y")
        with pytest.raises(InvalidPart):
            await memory.complete_session(
                "b", "k", sid, [CompletedPart(2, e2), CompletedPart(1, e1)]
            )


class TestCreateTransport:
    def test_memory(self):
        assert isinstance(create_transport(StorageConfig(backend="memory")), MemoryTransport)

    def test_aws(self):
        transport = create_transport(
            StorageConfig(backend="aws", bucket="uploads", aws_region="eu-west-1")
        )
        assert isinstance(transport, AWSTransport)
        assert transport.region == "eu-west-1"
        assert transport.verify_bucket == "uploads"

    def test_aws_without_verification(self):
        transport = create_transport(
            StorageConfig(backend="aws", bucket="uploads", verify_bucket=False)
        )
        assert transport.verify_bucket == ""

    def test_aws_requires_bucket(self):
        with pytest.raises(ValueError, match="storage.bucket is required"):
            create_transport(StorageConfig(backend="aws"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_transport(StorageConfig(backend="ftp"))
