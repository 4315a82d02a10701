from fastapi import APIRouter, WebSocket

router = APIRouter()


# Chat WS: authenticate, track presence, relay room events. See chatapp.gateway.
@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    await websocket.app.state.gateway.serve(websocket)
