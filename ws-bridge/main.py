"""
WebSocket Bridge Microservice

Subscribes to the API's Redis dashboard channels and relays every change
event to the dashboards of the same restaurant:
- Tenant-wide channel: dashboard:tenant:{tenant_id}

Clients refetch the affected table (or the full table list) on each event.
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


CHANNEL_PATTERN = "dashboard:tenant:*"

# tenant_id -> set of WebSockets
tenant_connections: dict[int, set[WebSocket]] = {}

# Configuration
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_THIS_IN_PRODUCTION")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
API_URL = os.getenv("API_URL", "http://localhost:8000")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")


def validate_jwt_token(token: str) -> Optional[dict]:
    """Validate the API session token and extract tenant_id."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        tenant_id = payload.get("tenant_id")
        if tenant_id is None:
            return None
        return {"tenant_id": int(tenant_id), "principal_id": payload.get("sub")}
    except (JWTError, TypeError, ValueError):
        return None


async def session_is_current(token: str) -> bool:
    """Ask the API whether the session was signed out since it was issued."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f"{API_URL}/me", headers={"Authorization": f"Bearer {token}"}
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Error checking session against API: {e}")
        return False


def parse_channel(channel: str) -> Optional[int]:
    parts = channel.split(":")
    if len(parts) != 3 or parts[0] != "dashboard" or parts[1] != "tenant":
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


async def broadcast(tenant_id: int, data: str) -> int:
    """Send to every dashboard of the tenant; drop connections that fail."""
    connections = tenant_connections.get(tenant_id)
    if not connections:
        return 0
    dead_connections = set()
    delivered = 0
    for ws in list(connections):
        try:
            await ws.send_text(data)
            delivered += 1
        except Exception:
            dead_connections.add(ws)
    connections -= dead_connections
    if not connections:
        tenant_connections.pop(tenant_id, None)
    return delivered


async def redis_listener():
    """Subscribe to Redis and broadcast to WebSocket clients."""
    while True:
        try:
            r = redis.from_url(REDIS_URL)
            pubsub = r.pubsub()
            await pubsub.psubscribe(CHANNEL_PATTERN)

            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                tenant_id = parse_channel(message["channel"].decode())
                if tenant_id is None:
                    continue
                await broadcast(tenant_id, message["data"].decode())

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Redis connection error: {e}", exc_info=True)
            await asyncio.sleep(5)  # Retry after 5 seconds


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(redis_listener())
    yield
    task.cancel()


app = FastAPI(title="WS Bridge", lifespan=lifespan)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """HTTP middleware to log all incoming requests for debugging."""
    async def dispatch(self, request: Request, call_next):
        client_host = request.client.host if request.client else "unknown"
        logger.debug(f"Request: {request.method} {request.url.path} from {client_host}")
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Error processing request {request.method} {request.url.path}: {e}", exc_info=True)
            raise


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "tenant_connections": sum(len(c) for c in tenant_connections.values()),
        "config": {
            "api_url_configured": bool(API_URL),
            "secret_key_configured": bool(SECRET_KEY and SECRET_KEY != "CHANGE_THIS_IN_PRODUCTION"),
            "algorithm": ALGORITHM,
        },
    }


@app.websocket("/ws/tenant/{tenant_id}")
@app.websocket("/tenant/{tenant_id}")  # Also accept without /ws prefix (for HAProxy)
async def websocket_tenant_endpoint(
    websocket: WebSocket,
    tenant_id: int,
    token: Optional[str] = Query(None)
):
    """Dashboard feed for one restaurant - requires the API session token."""
    client_host = websocket.client.host if websocket.client else "unknown"
    await websocket.accept()

    if not token:
        logger.warning(f"WebSocket /ws/tenant/{tenant_id}: Missing token from {client_host}")
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    token_info = validate_jwt_token(token)
    if not token_info:
        logger.warning(f"WebSocket /ws/tenant/{tenant_id}: Invalid token from {client_host}")
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    if token_info["tenant_id"] != tenant_id:
        logger.warning(
            f"WebSocket /ws/tenant/{tenant_id}: Tenant ID mismatch from {client_host} "
            f"(token has {token_info['tenant_id']})"
        )
        await websocket.close(code=1008, reason="Tenant ID mismatch")
        return

    if not await session_is_current(token):
        logger.warning(f"WebSocket /ws/tenant/{tenant_id}: Revoked session from {client_host}")
        await websocket.close(code=1008, reason="Session is no longer valid")
        return

    logger.info(f"WebSocket /ws/tenant/{tenant_id}: dashboard connected from {client_host}")
    tenant_connections.setdefault(tenant_id, set()).add(websocket)

    try:
        while True:
            # Keep connection alive; client messages are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if tenant_id in tenant_connections:
            tenant_connections[tenant_id].discard(websocket)
            if not tenant_connections[tenant_id]:
                del tenant_connections[tenant_id]
