from fastapi import Request
from signaling.services.event_router import EventRouter
from signaling.services.registry import RoomRegistry

def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry

def get_event_router(request: Request) -> EventRouter:
    return request.app.state.event_router
