"""
tests.test_update_cache
~~~~~~~~~~~~~~~~~~~~~~~

UpdateCache 单元测试。
"""
from __future__ import annotations

import base64

from app.schemas.realtime import DocumentUpdateMessage
from app.services.update_cache import UpdateCache


def text_update(document_id: str, content: str, author: str | None = None) -> DocumentUpdateMessage:
    return DocumentUpdateMessage.model_validate(
        {"documentId": document_id, "content": content, "username": author},
    )


class TestUpdateCache:
    def test_last_write_wins(self) -> None:
        cache = UpdateCache()
        cache.put("room", text_update("doc", "v1"))
        cache.put("room", text_update("doc", "v2", author="bob"))

        entry = cache.get("room", "doc")
        assert entry is not None
        assert entry.content == "v2"
        assert entry.author_name == "bob"
        assert len(cache.documents("room")) == 1

    def test_binary_update_replaces_text(self) -> None:
        cache = UpdateCache()
        cache.put("room", text_update("img", "placeholder"))
        cache.put("room", DocumentUpdateMessage.model_validate({
            "documentId": "img",
            "binaryContent": base64.b64encode(b"\x89PNG").decode(),
            "contentType": "image/png",
        }))

        entry = cache.get("room", "img")
        assert entry is not None
        assert entry.is_binary
        assert entry.content is None
        assert entry.binary_content == b"\x89PNG"

    def test_rooms_are_isolated_and_clearable(self) -> None:
        cache = UpdateCache()
        cache.put("a", text_update("doc", "in a"))
        cache.put("b", text_update("doc", "in b"))

        assert cache.clear_room("a") == 1
        assert cache.get("a", "doc") is None
        assert not cache.has_room("a")
        assert cache.get("b", "doc").content == "in b"
        assert cache.clear_room("a") == 0

    def test_to_event_encodes_binary(self) -> None:
        cache = UpdateCache()
        entry = cache.put("room", DocumentUpdateMessage.model_validate({
            "documentId": "img",
            "binaryContent": base64.b64encode(b"abc").decode(),
            "contentType": "image/gif",
            "username": "alice",
        }))

        event = entry.to_event(replay=True)

        assert event.binary_content == base64.b64encode(b"abc").decode()
        assert event.content is None
        assert event.username == "alice"
        assert event.replay is True
        assert event.timestamp == entry.updated_at
