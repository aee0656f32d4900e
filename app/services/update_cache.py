"""
app.services.update_cache
~~~~~~~~~~~~~~~~~~~~~~~~~

文档更新缓存 —— 每个房间内每个文档最近一次看到的内容（后写覆盖）。

用于向新 JOIN 的成员回放房间当前状态。缓存只在内存中同步更新，
持久化与否都不影响它；房间被回收时整房间清空，以限制内存占用。
"""
from __future__ import annotations

import base64

from pydantic import BaseModel, Field

from app.schemas.realtime import DocumentUpdateEvent, DocumentUpdateMessage, now_millis


class CachedDocument(BaseModel):
    """缓存中的单个文档内容。"""

    document_id: str
    content: str | None = None
    binary_content: bytes | None = None
    content_type: str | None = None
    author_name: str | None = None
    updated_at: int = Field(default_factory=now_millis)

    @property
    def is_binary(self) -> bool:
        return self.binary_content is not None

    def to_event(self, replay: bool = True) -> DocumentUpdateEvent:
        return DocumentUpdateEvent(
            document_id=self.document_id,
            content=self.content,
            binary_content=(
                base64.b64encode(self.binary_content).decode("ascii")
                if self.binary_content is not None else None
            ),
            content_type=self.content_type,
            username=self.author_name,
            timestamp=self.updated_at,
            replay=replay,
        )


class UpdateCache:
    """房间 → 文档 ID → 最新内容。"""

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, CachedDocument]] = {}

    def put(self, room_key: str, update: DocumentUpdateMessage) -> CachedDocument:
        """用一次文档更新覆盖缓存条目并返回新条目。"""
        entry = CachedDocument(
            document_id=update.document_id,
            content=update.content,
            binary_content=update.binary_content,
            content_type=update.content_type,
            author_name=update.author_name,
        )
        self._rooms.setdefault(room_key, {})[update.document_id] = entry
        return entry

    def get(self, room_key: str, document_id: str) -> CachedDocument | None:
        return self._rooms.get(room_key, {}).get(document_id)

    def documents(self, room_key: str) -> list[CachedDocument]:
        return list(self._rooms.get(room_key, {}).values())

    def has_room(self, room_key: str) -> bool:
        return room_key in self._rooms

    def clear_room(self, room_key: str) -> int:
        """丢弃房间的全部缓存，返回丢弃的条目数。"""
        return len(self._rooms.pop(room_key, {}))
