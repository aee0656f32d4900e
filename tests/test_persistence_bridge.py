"""
tests.test_persistence_bridge
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

PersistenceBridge 单元测试 —— 临时 ID 跳过、失败不外抛、文本 / 二进制互斥。
"""
from __future__ import annotations

import asyncio
import base64
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.schemas.realtime import DocumentUpdateMessage
from app.services.persistence_bridge import PersistenceBridge, PersistOutcome, parse_durable_id

DURABLE_ID = "3f2b8c1e-9a4d-4e5f-8b6a-1c2d3e4f5a6b"


def text_update(document_id: str, content: str = "hello", author: str | None = None) -> DocumentUpdateMessage:
    return DocumentUpdateMessage.model_validate(
        {"documentId": document_id, "content": content, "authorName": author},
    )


class TestParseDurableId:
    def test_canonical_uuid(self) -> None:
        assert parse_durable_id(DURABLE_ID) == uuid.UUID(DURABLE_ID)

    def test_uppercase_uuid_accepted(self) -> None:
        assert parse_durable_id(DURABLE_ID.upper()) == uuid.UUID(DURABLE_ID)

    @pytest.mark.parametrize(
        "value",
        ["doc-temp-1", "", "1234", DURABLE_ID.replace("-", ""), "{" + DURABLE_ID + "}", "urn:uuid:" + DURABLE_ID],
    )
    def test_non_durable_ids(self, value: str) -> None:
        assert parse_durable_id(value) is None


class TestPersistenceBridge:
    """测试持久化桥的各种结果。"""

    def setup_method(self) -> None:
        self.store = MagicMock()
        self.store.update_document = AsyncMock(return_value={"_id": DURABLE_ID})
        self.bridge = PersistenceBridge(self.store, timeout=1.0)

    @pytest.mark.asyncio
    async def test_temporary_id_never_calls_store(self) -> None:
        outcome = await self.bridge.apply_update("room", text_update("doc-temp-1"))

        assert outcome is PersistOutcome.SKIPPED_TEMPORARY
        self.store.update_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_text_update_forwarded(self) -> None:
        outcome = await self.bridge.apply_update("room", text_update(DURABLE_ID, "hello", author="alice"))

        assert outcome is PersistOutcome.PERSISTED
        self.store.update_document.assert_awaited_once()
        document_id, patch = self.store.update_document.await_args.args
        assert document_id == uuid.UUID(DURABLE_ID)
        assert patch.content == "hello"
        assert patch.binary_content is None
        assert self.store.update_document.await_args.kwargs == {"author_name": "alice"}

    @pytest.mark.asyncio
    async def test_binary_update_forwards_only_binary(self) -> None:
        update = DocumentUpdateMessage.model_validate({
            "documentId": DURABLE_ID,
            "content": "ignored",
            "binaryContent": base64.b64encode(b"\x89PNG").decode(),
            "contentType": "image/png",
        })

        await self.bridge.apply_update("room", update)

        patch = self.store.update_document.await_args.args[1]
        assert patch.content is None
        assert patch.binary_content == b"\x89PNG"
        assert patch.content_type == "image/png"

    @pytest.mark.asyncio
    async def test_missing_document(self) -> None:
        self.store.update_document.return_value = None

        assert await self.bridge.apply_update("room", text_update(DURABLE_ID)) is PersistOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_store_error_is_swallowed(self) -> None:
        self.store.update_document.side_effect = ConnectionError("mongo down")

        assert await self.bridge.apply_update("room", text_update(DURABLE_ID)) is PersistOutcome.FAILED

    @pytest.mark.asyncio
    async def test_store_timeout_is_failure(self) -> None:
        async def slow_update(*args: object, **kwargs: object) -> dict:
            await asyncio.sleep(1)
            return {}

        self.store.update_document = slow_update
        bridge = PersistenceBridge(self.store, timeout=0.01)

        assert await bridge.apply_update("room", text_update(DURABLE_ID)) is PersistOutcome.FAILED
