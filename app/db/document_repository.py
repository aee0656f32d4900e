"""
app.db.document_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~

文档持久化仓库 —— 封装 MongoDB ``documents`` / ``document_revisions`` 集合的更新操作。

文档的创建、删除、查询属于外围 CRUD 层，本仓库只提供实时通道需要的
``update_document``。文本内容发生变化时，把被覆盖的旧文本另存为一条修订记录。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TypedDict
from uuid import UUID

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, model_validator
from pymongo import ReturnDocument

from app.core.logging import get_logger

logger = get_logger(__name__)

_DOCUMENTS = "documents"
_REVISIONS = "document_revisions"


class DocumentPatch(BaseModel):
    """一次内容更新：文本与二进制二选一。"""

    content: str | None = None
    binary_content: bytes | None = None
    content_type: str | None = None

    @model_validator(mode="after")
    def _exclusive_content(self) -> DocumentPatch:
        if (self.content is None) == (self.binary_content is None):
            raise ValueError("DocumentPatch 必须且只能包含 content 或 binary_content 之一")
        return self

    @property
    def is_binary(self) -> bool:
        return self.binary_content is not None


class DocumentRecord(TypedDict, total=False):
    """代表 MongoDB 中 documents 集合的单条记录"""
    _id: str
    room_id: str
    name: str
    content: str | None
    content_binary: bytes | None
    content_type: str | None
    updated_by: str | None
    updated_at: datetime
    version: int


class DocumentRepository:
    """文档持久化仓库。

    每次更新用一条 ``find_one_and_update`` 同时写入内容并 ``$inc`` 文档的 ``version``，
    同一文档的并发更新由 MongoDB 串行化，后到的写入生效。修订号直接取本次更新得到的
    ``version``，因此不会冲突（只有文本变化才落修订，编号可能不连续）。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._documents = db[_DOCUMENTS]
        self._revisions = db[_REVISIONS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._revisions.create_index(
            [("document_id", 1), ("revision_number", -1)],
            name="idx_document_revision",
            unique=True,
        )
        self._indexes_created = True
        logger.debug("document_revisions 索引已就绪")

    async def update_document(
        self,
        document_id: UUID,
        patch: DocumentPatch,
        author_name: str | None = None,
    ) -> DocumentRecord | None:
        """更新文档内容。

        Args:
            document_id: 持久化文档 ID。
            patch: 文本或二进制内容。
            author_name: 更新者显示名。

        Returns:
            更新后的文档记录；文档不存在时返回 ``None``。
        """
        await self._ensure_indexes()
        key = str(document_id)
        fields = {
            "content": patch.content,
            "content_binary": patch.binary_content,
            "content_type": patch.content_type,
            "updated_by": author_name,
            "updated_at": datetime.now(timezone.utc),
        }
        before = await self._documents.find_one_and_update(
            {"_id": key},
            {"$set": fields, "$inc": {"version": 1}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            return None

        version = before.get("version", 0) + 1
        previous = before.get("content")
        if previous is not None and patch.content is not None and previous != patch.content:
            await self._create_revision(key, version, previous, author_name)

        return {**before, **fields, "version": version}

    async def _create_revision(
        self, document_id: str, revision_number: int, previous_content: str, author_name: str | None,
    ) -> None:
        """把被覆盖的文本保存为一条修订记录。"""
        await self._revisions.insert_one({
            "document_id": document_id,
            "revision_number": revision_number,
            "content_diff": previous_content,
            "updated_by": author_name,
            "created_at": datetime.now(timezone.utc),
        })

    async def count_revisions(self, document_id: UUID) -> int:
        """获取指定文档的修订记录数。"""
        await self._ensure_indexes()
        return await self._revisions.count_documents({"document_id": str(document_id)})
