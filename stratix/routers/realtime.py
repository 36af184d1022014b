from fastapi import APIRouter, WebSocket


router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    # credential comes from the subprotocol, Authorization header or ?token=
    gateway = websocket.app.state.gateway
    await gateway.serve(websocket)
