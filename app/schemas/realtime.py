"""
app.schemas.realtime
~~~~~~~~~~~~~~~~~~~~

实时协作通道的消息模型。

入站消息（客户端 → 服务端）是松散的 JSON 对象，由 ``MessageRouter`` 先分类、
再用这里的模型校验；出站事件（服务端 → 客户端）统一使用驼峰字段名序列化。
"""
from __future__ import annotations

import base64
import binascii
import time
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def now_millis() -> int:
    """当前 Unix 时间戳（毫秒）。"""
    return int(time.time() * 1000)


# ── 入站消息 ──────────────────────────────────────────────────────────

class PresenceMessage(BaseModel):
    """JOIN / LEAVE 消息体。"""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="消息类型标签")
    username: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("username", "userName"),
        description="用户显示名",
    )


class DocumentUpdateMessage(BaseModel):
    """文档更新消息体。

    ``content`` 与 ``binaryContent`` 互斥：同时出现时以二进制内容为准，文本被清空。
    ``binaryContent`` 在 JSON 中以 base64 字符串传输，校验后解码为 ``bytes``。
    """

    model_config = ConfigDict(extra="ignore")

    document_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("documentId", "document_id"),
        description="文档 ID（持久化 UUID 或客户端临时 ID）",
    )
    content: str | None = Field(default=None, description="文本内容")
    binary_content: bytes | None = Field(
        default=None,
        validation_alias=AliasChoices("binaryContent", "binary_content"),
        description="二进制内容（如图片）",
    )
    content_type: str | None = Field(
        default=None,
        validation_alias=AliasChoices("contentType", "content_type"),
        description="内容 MIME 类型，二进制内容必填",
    )
    author_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("username", "userName", "authorName"),
        description="更新者显示名",
    )

    @field_validator("binary_content", mode="before")
    @classmethod
    def _decode_base64(cls, value: Any) -> Any:
        if value is None or isinstance(value, bytes):
            return value
        if not isinstance(value, str):
            raise ValueError("binaryContent 必须是 base64 字符串")
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("binaryContent 不是合法的 base64") from e

    @model_validator(mode="after")
    def _exclusive_content(self) -> DocumentUpdateMessage:
        if self.binary_content is not None:
            if not self.content_type:
                raise ValueError("binaryContent 需要同时提供 contentType")
            self.content = None
        elif self.content is None:
            raise ValueError("文档更新缺少 content 或 binaryContent")
        return self

    @property
    def is_binary(self) -> bool:
        return self.binary_content is not None


# ── 出站事件 ──────────────────────────────────────────────────────────

class RealtimeEvent(BaseModel):
    """出站事件基类，序列化为驼峰字段名并省略空字段。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ConnectedEvent(RealtimeEvent):
    """连接注册成功后仅发给该连接的欢迎事件。"""

    type: Literal["CONNECTED"] = "CONNECTED"
    room_id: str
    session_id: str
    message: str


class ErrorEvent(RealtimeEvent):
    """仅发给消息来源连接的错误事件。"""

    type: Literal["ERROR"] = "ERROR"
    message: str


class PresenceEvent(RealtimeEvent):
    """用户进入 / 离开房间的广播事件。"""

    type: Literal["USER_JOINED", "USER_LEFT"]
    username: str | None = None
    room_id: str
    session_id: str | None = None
    timestamp: int = Field(default_factory=now_millis)


class UsersListEvent(RealtimeEvent):
    """房间在线用户列表（每次 JOIN / LEAVE 后重新广播）。"""

    type: Literal["USERS_LIST"] = "USERS_LIST"
    room_id: str
    users: list[str]


class DocumentUpdateEvent(RealtimeEvent):
    """文档最新内容事件，用于转发实时更新和向新成员回放缓存。"""

    type: Literal["DOCUMENT_UPDATE"] = "DOCUMENT_UPDATE"
    document_id: str
    content: str | None = None
    binary_content: str | None = Field(default=None, description="base64 编码的二进制内容")
    content_type: str | None = None
    username: str | None = None
    timestamp: int = Field(default_factory=now_millis)
    replay: bool = False

