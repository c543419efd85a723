from fastapi import APIRouter, WebSocket

from src.notifications.websocket import websocket_endpoint

router = APIRouter()

@router.websocket("/ws")
async def booking_notifications(websocket: WebSocket):
    """WebSocket endpoint for booking lifecycle notifications"""
    await websocket_endpoint(websocket)
