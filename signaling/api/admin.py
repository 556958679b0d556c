"""
signaling.api.admin
~~~~~~~~~~~~~~~~~~~

管理接口 —— 带外强制结束会议 + 房间查看。

端点:
  - ``GET /endRoom?room=<name>``  → 强制结束房间，返回 ``{"success": true}``
  - ``GET /api/rooms``            → 获取活跃房间列表
  - ``GET /api/rooms/{room}``     → 获取房间摘要
"""
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from signaling.api.deps import get_event_router, get_registry
from signaling.core.config import settings
from signaling.core.logging import get_logger
from signaling.core.rate_limit import limiter
from signaling.schemas.api_response import ApiResponse
from signaling.schemas.rooms import EndRoomData, RoomInfoData
from signaling.services.event_router import EventRouter
from signaling.services.registry import RoomRegistry

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/endRoom", summary="强制结束会议", response_model=EndRoomData)
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def end_room(
    request: Request,
    room: str = Query(..., min_length=1, description="房间名"),
    event_router: EventRouter = Depends(get_event_router),
):
    """通知房间内所有成员与等候者会议结束，并销毁房间。

    房间不存在时同样返回成功；不等待消息送达。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room: 房间名。
    """
    logger.info("管理员请求结束会议 | room=%s", room)
    await event_router.end_room(room)
    return EndRoomData(success=True)


@router.get("/api/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def list_rooms(request: Request, registry: RoomRegistry = Depends(get_registry)):
    """返回所有活跃房间的摘要。"""
    return ApiResponse.ok(data=registry.list_rooms())


@router.get("/api/rooms/{room}", summary="获取房间摘要", response_model=ApiResponse[RoomInfoData])
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def room_info(request: Request, room: str, registry: RoomRegistry = Depends(get_registry)):
    """返回指定房间的摘要，房间不存在时返回 404（查询不会创建房间）。"""
    meeting = registry.get(room)
    if meeting is None:
        response = ApiResponse.fail(msg=f"房间不存在: {room}", code=404)
        return JSONResponse(status_code=404, content=response.model_dump())
    return ApiResponse.ok(data=meeting.info())
