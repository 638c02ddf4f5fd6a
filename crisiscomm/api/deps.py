"""FastAPI dependencies for the crisis room routes."""

from fastapi import Request

from crisiscomm.rooms.service import CrisisRoomService


def get_service(request: Request) -> CrisisRoomService:
    """The service built once at startup and kept on app.state."""
    return request.app.state.service


__all__ = ["get_service"]
