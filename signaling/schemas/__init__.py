"""
signaling.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket protocol.
"""
from signaling.schemas.api_response import ApiResponse
from signaling.schemas.events import InboundEvent, OutboundEvent, WaitingUserData, parse_event
from signaling.schemas.rooms import EndRoomData, HealthData, RoomInfoData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
