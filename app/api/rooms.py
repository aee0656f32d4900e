"""
app.api.rooms
~~~~~~~~~~~~~

房间状态 REST 接口 —— 只读查询实时协作中枢的内存状态。

路由前缀 ``/api``。房间的创建、删除、密码等 CRUD 由外围服务负责。

端点:
  - ``GET /rooms``                         → 获取活跃房间列表
  - ``GET /rooms/{room_key}``              → 获取房间详情
  - ``GET /rooms/{room_key}/documents``    → 获取房间更新缓存中的文档摘要
"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.api.deps import get_collab_hub
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import CachedDocumentInfo, RoomInfoData
from app.services.collab_hub import CollabHub

router: APIRouter = APIRouter()


def _room_not_found(room_key: str) -> JSONResponse:
    response = ApiResponse.not_found(f"房间 {room_key} 当前没有活跃连接")
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=response.model_dump())


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, hub: CollabHub = Depends(get_collab_hub)):
    """返回所有当前有连接的协作房间。"""
    return ApiResponse.ok(data=hub.list_rooms())


@router.get("/rooms/{room_key}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("10/second")
async def room_info(request: Request, room_key: str, hub: CollabHub = Depends(get_collab_hub)):
    """返回指定房间的在线连接数、在线用户和缓存文档数。

    Args:
        room_key: 房间 key。
    """
    info = hub.room_info(room_key)
    if info is None:
        return _room_not_found(room_key)
    return ApiResponse.ok(data=info)


@router.get(
    "/rooms/{room_key}/documents",
    summary="获取房间缓存文档",
    response_model=ApiResponse[list[CachedDocumentInfo]],
)
@limiter.limit("10/second")
async def room_documents(request: Request, room_key: str, hub: CollabHub = Depends(get_collab_hub)):
    """返回房间更新缓存中每个文档的摘要（不含内容）。

    Args:
        room_key: 房间 key。
    """
    documents = hub.cached_documents(room_key)
    if documents is None:
        return _room_not_found(room_key)
    return ApiResponse.ok(data=documents)
