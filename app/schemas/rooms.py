"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间状态 REST 接口的 Pydantic 响应模型。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class RoomInfoData(BaseModel):
    """活跃房间摘要信息。"""

    room_key: str = Field(..., description="房间 key")
    online_count: int = Field(..., description="当前连接数")
    users: list[str] = Field(..., description="已 JOIN 的用户显示名（可能重复）")
    cached_documents: int = Field(..., description="更新缓存中的文档数量")


class CachedDocumentInfo(BaseModel):
    """更新缓存中单个文档的摘要（不含内容本身）。"""

    document_id: str = Field(..., description="文档 ID")
    kind: Literal["text", "binary"] = Field(..., description="内容类型")
    content_type: str | None = Field(default=None, description="MIME 类型")
    author_name: str | None = Field(default=None, description="最后更新者")
    durable: bool = Field(..., description="是否为持久化文档 ID")
    updated_at: int = Field(..., description="最后更新时间（毫秒时间戳）")
