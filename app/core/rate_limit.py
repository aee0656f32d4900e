"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 接口的限流配置。

实时通道本身不做限流：协作编辑会高频发送文档更新，丢弃任何一条都会让房间状态落后。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流，进程内存存储
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
