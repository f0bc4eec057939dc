"""
AgriBuddy Main Server - FastAPI marketplace, community and voice assistant
HTTP API, Server-Sent Events for live bids, and a WebSocket voice channel
"""
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sse_starlette.sse import EventSourceResponse
from contextlib import asynccontextmanager
from typing import Optional, Dict, List, Any
import asyncio
import base64
import binascii
import json
import secrets
import uuid

from core.auth import AuthManager
from core.config import Settings, settings
from core.errors import AppError, AuthenticationRequired, NotFound, PermissionDenied, ValidationFailed
from core.events import EventHub
from core.logger import setup_logger
from core.models import (
    Bid,
    BidCreate,
    CloseResult,
    LoginRequest,
    Post,
    PostCreate,
    Product,
    ProductCreate,
    RegisterRequest,
    TextRequest,
    UploadResult,
    User,
    UserUpdate,
    VideoPostCreate,
    VoiceResult,
)
from core.session import SessionManager
from core.storage import MemStorage
from services.assistant import VoiceAssistant
from services.ws_protocol import (
    RATE_LIMIT_CODE,
    ConnectionRegistry,
    ConnectionState,
    LockedSocket,
    new_session_id,
    split_session_prefix,
)

logger = setup_logger(__name__)

VERSION = "1.0.0"
UPLOAD_CHUNK_SIZE = 1024 * 1024
VIDEO_SUFFIXES = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-matroska": ".mkv",
}

def user_payload(user: User) -> Dict[str, Any]:
    """Public view of a user (never includes the password hash)"""
    return user.model_dump(mode="json", by_alias=True, include={"id", "username", "name", "user_type", "location"})

def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path", "form"))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"

async def marketplace_event_stream(hub: EventHub, request, poll_seconds: float = 15.0):
    """
    Server-Sent Events generator for live marketplace events

    Subscribes on first iteration and always unsubscribes, whether the
    client disconnects or the response is torn down.
    """
    queue = hub.subscribe()
    try:
        yield {"event": "ready", "data": json.dumps({"type": "ready"})}
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                continue
            yield {"event": event.get("type", "message"), "data": json.dumps(event)}
    finally:
        hub.unsubscribe(queue)

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application with its own storage, auth and assistant state

    Args:
        app_settings: Settings to use (defaults to the environment-driven instance)
    """
    app_settings = app_settings or settings

    storage = MemStorage()
    auth = AuthManager(storage, app_settings.SESSION_MAX_AGE, app_settings.BCRYPT_ROUNDS)
    sessions = SessionManager(app_settings.ASSISTANT_SESSION_TIMEOUT, app_settings.MAX_ASSISTANT_HISTORY)
    assistant = VoiceAssistant(app_settings, auth, sessions)
    hub = EventHub(max_queue_size=app_settings.WS_MAX_QUEUE_SIZE)
    connections = ConnectionRegistry(app_settings.WS_MAX_QUEUE_SIZE, app_settings.ASSISTANT_SESSION_TIMEOUT)

    if app_settings.SEED_DEMO_DATA:
        storage.seed_demo_data(auth.hash_password(secrets.token_urlsafe(16)))

    upload_dir = app_settings.UPLOAD_PATH
    upload_dir.mkdir(parents=True, exist_ok=True)
    max_upload_bytes = app_settings.MAX_UPLOAD_MB * 1024 * 1024
    max_ws_payload = app_settings.WS_MAX_PAYLOAD_MB * 1024 * 1024

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log the service banner on startup, purge expired state on shutdown"""
        logger.info("=" * 50)
        logger.info("AgriBuddy Marketplace Starting")
        logger.info("=" * 50)
        logger.info(f"Host: {app_settings.HOST}:{app_settings.PORT}")
        logger.info(f"AI mode: {'simulation' if app_settings.simulation_mode else app_settings.CHAT_MODEL}")
        logger.info(f"Languages: {', '.join(app_settings.SUPPORTED_LANGUAGES)}")
        logger.info("=" * 50)
        yield
        logger.info("AgriBuddy shutting down...")
        sessions.cleanup_expired()
        auth.cleanup_expired()
        connections.cleanup()

    app = FastAPI(title="AgriBuddy", version=VERSION, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.storage = storage
    app.state.auth = auth
    app.state.sessions = sessions
    app.state.assistant = assistant
    app.state.hub = hub
    app.state.connections = connections

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )
    app.mount("/uploads", StaticFiles(directory=str(upload_dir)), name="uploads")

    # === Error handling ===

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = ValidationFailed(_validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # === Auth dependencies ===

    def session_token(request: Request) -> Optional[str]:
        header = request.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
            if token:
                return token
        return request.cookies.get(app_settings.SESSION_COOKIE_NAME)

    def current_user(request: Request) -> Optional[User]:
        return auth.get_user_for_token(session_token(request))

    def require_user(user: Optional[User] = Depends(current_user)) -> User:
        if user is None:
            raise AuthenticationRequired()
        return user

    def login_response(user: User, status_code: int = 200) -> JSONResponse:
        token = auth.create_session(user)
        response = JSONResponse(
            status_code=status_code,
            content={"success": True, "user": user_payload(user), "token": token}
        )
        response.set_cookie(
            key=app_settings.SESSION_COOKIE_NAME,
            value=token,
            max_age=app_settings.SESSION_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=app_settings.COOKIE_SECURE,
        )
        return response

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        simulated = app_settings.simulation_mode
        return {
            "status": "healthy",
            "version": VERSION,
            "simulationMode": simulated,
            "services": {
                "stt": "simulated" if simulated else app_settings.STT_MODEL,
                "chat": "simulated" if simulated else app_settings.CHAT_MODEL,
                "tts": "simulated" if simulated else app_settings.TTS_MODEL,
                "images": "simulated" if simulated else app_settings.IMAGE_MODEL,
            },
            "connections": hub.connection_count,
        }

    # === Auth API ===

    @app.post("/api/auth/register", status_code=201)
    @app.post("/api/register", status_code=201, include_in_schema=False)
    async def register(request: RegisterRequest):
        user = auth.register(
            username=request.username,
            password=request.password,
            name=request.name,
            user_type=request.user_type,
            location=request.location
        )
        return login_response(user, status_code=201)

    @app.post("/api/auth/login")
    @app.post("/api/login", include_in_schema=False)
    async def login(request: LoginRequest):
        user = auth.authenticate(request.username, request.password)
        return login_response(user)

    @app.post("/api/auth/logout")
    @app.post("/api/logout", include_in_schema=False)
    async def logout(request: Request):
        auth.logout(session_token(request))
        response = JSONResponse(content={"success": True, "message": "Logout successful"})
        response.delete_cookie(key=app_settings.SESSION_COOKIE_NAME)
        return response

    @app.get("/api/user")
    async def get_current_user(user: User = Depends(require_user)):
        return {"success": True, "user": user_payload(user)}

    # === User profiles ===

    @app.get("/api/users/me")
    async def get_my_profile(user: User = Depends(require_user)):
        return {"success": True, "user": user_payload(user)}

    @app.get("/api/users/{user_id}")
    async def get_user_profile(user_id: int):
        user = storage.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return {"success": True, "user": user_payload(user)}

    @app.put("/api/users/{user_id}")
    async def update_user_profile(user_id: int, data: UserUpdate, user: User = Depends(require_user)):
        """Owner-only profile update (name, location, password)"""
        if user.id != user_id:
            raise PermissionDenied("Not authorized to update this user")
        updated = auth.update_profile(
            user_id,
            name=data.name,
            location=data.location,
            password=data.password
        )
        return {"success": True, "user": user_payload(updated)}

    # === Marketplace API ===

    @app.get("/api/products", response_model=List[Product])
    async def list_products():
        return storage.list_products()

    @app.get("/api/products/{product_id}", response_model=Product)
    async def get_product(product_id: int):
        return storage.get_product(product_id)

    @app.post("/api/products", response_model=Product, status_code=201)
    async def create_product(data: ProductCreate, user: User = Depends(require_user)):
        return storage.create_product(user.id, data, app_settings.DEFAULT_BIDDING_HOURS)

    @app.delete("/api/products/{product_id}")
    async def delete_product(product_id: int, user: User = Depends(require_user)):
        storage.delete_product(product_id, user.id)
        return {"message": "Product deleted successfully"}

    @app.post("/api/products/{product_id}/bid", response_model=Bid, status_code=201)
    async def place_bid(product_id: int, data: BidCreate, user: User = Depends(require_user)):
        bid = storage.place_bid(product_id, user.id, data.amount)
        await hub.broadcast({
            "type": "bid",
            "productId": product_id,
            "amount": bid.amount,
            "userId": user.id
        })
        return bid

    @app.get("/api/products/{product_id}/bids", response_model=List[Bid])
    async def list_bids(product_id: int):
        return storage.bids_for_product(product_id)

    @app.post("/api/products/{product_id}/close", response_model=CloseResult)
    async def close_bidding(product_id: int, user: User = Depends(require_user)):
        result = storage.close_bidding(product_id, user.id)
        await hub.broadcast({
            "type": "bidding_closed",
            "productId": product_id,
            "winningBid": jsonable_encoder(result.winning_bid) if result.winning_bid else None
        })
        return result

    @app.get("/api/events")
    async def marketplace_events(request: Request):
        """Server-Sent Events stream of live marketplace events"""
        return EventSourceResponse(marketplace_event_stream(hub, request))

    # === Community API ===

    @app.get("/api/posts", response_model=List[Post])
    async def list_posts():
        return storage.list_posts()

    @app.get("/api/posts/{post_id}", response_model=Post)
    async def get_post(post_id: int):
        return storage.get_post(post_id)

    @app.post("/api/posts", response_model=Post, status_code=201)
    async def create_post(data: PostCreate, user: User = Depends(require_user)):
        return storage.create_post(user.id, data.title, data.content, video_url=data.video_url)

    @app.post("/api/posts/video", response_model=Post, status_code=201)
    async def create_video_post(data: VideoPostCreate, user: User = Depends(require_user)):
        return storage.create_post(
            user.id,
            data.title,
            data.content,
            video_url=data.video_url,
            video_thumbnail=data.video_thumbnail,
            video_duration=data.video_duration
        )

    @app.delete("/api/posts/{post_id}")
    async def delete_post(post_id: int, user: User = Depends(require_user)):
        storage.delete_post(post_id, user.id)
        return {"message": "Post deleted successfully"}

    @app.post("/api/posts/{post_id}/like", response_model=Post)
    async def like_post(post_id: int):
        return storage.increment_post_counter(post_id, "likes")

    @app.post("/api/posts/{post_id}/share", response_model=Post)
    async def share_post(post_id: int):
        return storage.increment_post_counter(post_id, "shares")

    @app.post("/api/posts/{post_id}/save", response_model=Post)
    async def save_post(post_id: int):
        return storage.increment_post_counter(post_id, "saves")

    @app.post("/api/upload", response_model=UploadResult)
    async def upload_video(video: UploadFile = File(...), user: User = Depends(require_user)):
        """Store an uploaded video under UPLOAD_PATH and return its public URL"""
        content_type = (video.content_type or "").lower()
        if content_type not in app_settings.ALLOWED_VIDEO_TYPES:
            raise ValidationFailed(f"Unsupported video type: {content_type or 'unknown'}")

        filename = f"{uuid.uuid4().hex}{VIDEO_SUFFIXES.get(content_type, '.bin')}"
        target = upload_dir / filename
        written = 0
        try:
            with open(target, "wb") as out:
                while True:
                    chunk = await video.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_upload_bytes:
                        raise ValidationFailed(f"Video exceeds the {app_settings.MAX_UPLOAD_MB} MB limit")
                    out.write(chunk)
            if written == 0:
                raise ValidationFailed("Uploaded video is empty")
        except AppError:
            target.unlink(missing_ok=True)
            raise

        logger.info(f"User {user.id} uploaded {filename} ({written} bytes)")
        return UploadResult(video_url=f"/uploads/{filename}")

    # === Voice assistant over HTTP ===

    @app.post("/api/assistant/voice", response_model=VoiceResult)
    async def assistant_voice(
        audio: UploadFile = File(...),
        language: Optional[str] = Form(None),
        session_id: Optional[str] = Form(None, alias="sessionId")
    ):
        """Audio in, transcript + spoken reply out"""
        audio_bytes = await audio.read()
        return await assistant.process_voice_input(audio_bytes, language, session_id or "default")

    @app.post("/api/assistant/text", response_model=VoiceResult)
    async def assistant_text(request: TextRequest):
        return await assistant.process_text_input(request.text, request.language, request.session_id or "default")

    # === WebSocket channel ===

    async def send_tracked(sender: LockedSocket, state: ConnectionState, payload: Dict[str, Any]):
        state.track(payload)
        await sender.send_json(payload)

    async def voice_turn(
        sender: LockedSocket,
        state: ConnectionState,
        audio: bytes,
        language: Optional[str]
    ):
        remaining = state.voice_cooldown_remaining(app_settings.WS_VOICE_COOLDOWN_MS)
        if remaining > 0:
            raise AppError(
                f"Please wait {remaining:.1f}s before sending another recording",
                error="Rate limited",
                status_code=RATE_LIMIT_CODE
            )
        state.mark_voice()
        await sender.send_json({
            "type": "processing_started",
            "message": "Your voice recording is being processed..."
        })
        result = await assistant.process_voice_input(audio, language or state.language, state.session_id)
        logger.info(f"Voice processing completed for {state.connection_id}, sending response")
        await send_tracked(sender, state, {
            "type": "ai_response",
            "content": result.model_dump(mode="json", by_alias=True),
            "sessionId": state.session_id
        })

    async def handle_json(sender: LockedSocket, state: ConnectionState, data: Dict[str, Any]):
        msg_type = data.get("type")
        payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}

        if msg_type == "ping":
            await sender.send_json({"type": "pong"})

        elif msg_type == "init":
            state.session_id = payload.get("sessionId") or data.get("sessionId") or new_session_id()
            state.language = payload.get("language") or state.language
            logger.info(f"Session initialized: {state.session_id}")
            await sender.send_json({
                "type": "init_response",
                "payload": {"sessionId": state.session_id, "message": "Session initialized"}
            })

        elif msg_type == "voice_input":
            try:
                audio = base64.b64decode(data.get("audio") or "", validate=True)
            except (binascii.Error, ValueError):
                raise ValidationFailed("Audio must be base64 encoded")
            if data.get("sessionId"):
                state.session_id = data["sessionId"]
            await voice_turn(sender, state, audio, data.get("language"))

        elif msg_type == "message":
            text = payload.get("text") or ""
            if payload.get("sessionId"):
                state.session_id = payload["sessionId"]
            result = await assistant.process_text_input(
                text,
                payload.get("language") or state.language,
                state.session_id
            )
            await send_tracked(sender, state, {
                "type": "ai_response",
                "content": result.model_dump(mode="json", by_alias=True),
                "sessionId": state.session_id
            })

        elif msg_type == "transcript":
            await hub.broadcast(
                {"type": "response", "content": f"Received: {data.get('content', '')}"},
                streams=False
            )

        elif msg_type == "auth":
            user = auth.get_user_for_token(data.get("token"))
            if user is None:
                await sender.send_json({"type": "auth_failed", "message": "Invalid or expired token"})
                return
            state.user_id = user.id
            await sender.send_json({"type": "auth_success", "user": user_payload(user)})

        elif msg_type == "ack":
            message_id = data.get("messageId") or ""
            delivered = state.acknowledge(message_id)
            await sender.send_json({
                "type": "ack",
                "messageId": message_id,
                "status": "delivered" if delivered else "unknown"
            })

        elif msg_type == "reconnect":
            if data.get("token"):
                user = auth.get_user_for_token(data["token"])
                state.user_id = user.id if user else state.user_id
            replay = connections.resume(data.get("connectionId") or "", state)
            if replay is None:
                raise ValidationFailed("Unknown connection", error="Reconnect failed")
            await sender.send_json({
                "type": "reconnected",
                "connectionId": state.connection_id,
                "sessionId": state.session_id,
                "replayed": len(replay)
            })
            for message in replay:
                await sender.send_json(message)

        else:
            raise ValidationFailed(f"Unknown message type: {msg_type}")

    async def handle_frame(sender: LockedSocket, state: ConnectionState, message: Dict[str, Any]):
        raw = message.get("bytes")
        text = message.get("text")
        size = len(raw) if raw is not None else len((text or "").encode("utf-8"))
        if size > max_ws_payload:
            raise ValidationFailed("Message too large")
        if not state.allow_message(app_settings.WS_MAX_MESSAGES_PER_MINUTE):
            raise AppError("Too many messages. Please slow down.", error="Rate limited", status_code=RATE_LIMIT_CODE)

        if raw is not None:
            logger.debug(f"Received binary frame: {len(raw)} bytes")
            prefixed_session, audio = split_session_prefix(raw)
            if prefixed_session:
                state.session_id = prefixed_session
            await voice_turn(sender, state, audio, None)
            return

        try:
            data = json.loads(text or "")
        except json.JSONDecodeError:
            raise ValidationFailed("Invalid JSON message")
        if not isinstance(data, dict):
            raise ValidationFailed("Message must be a JSON object")
        await handle_json(sender, state, data)

    @app.websocket("/ws")
    async def websocket_channel(websocket: WebSocket):
        """
        WebSocket endpoint for the voice assistant and live marketplace events

        Protocol:
        1. Server greets with the connection id (needed to resume later)
        2. Client sends audio (binary or base64 JSON) or text messages
        3. Server answers with processing_started, then ai_response
        4. Client acknowledges each ai_response by messageId
        """
        await websocket.accept()
        state = connections.open()
        sender = LockedSocket(websocket)
        hub.add_socket(state.connection_id, sender)
        logger.info(f"WebSocket client connected: {state.connection_id}")

        try:
            await sender.send_json({
                "type": "connected",
                "connectionId": state.connection_id,
                "sessionId": state.session_id
            })
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                try:
                    await handle_frame(sender, state, message)
                except AppError as e:
                    await sender.send_json({"type": "error", "message": e.message, "code": e.status_code})
                except Exception as e:
                    logger.exception(f"WebSocket message handling error: {e}")
                    await sender.send_json({"type": "error", "message": "Failed to process message"})
        except WebSocketDisconnect:
            pass
        finally:
            hub.remove_socket(state.connection_id)
            connections.close(state.connection_id)
            logger.info(f"WebSocket client disconnected: {state.connection_id}")

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
        log_level="info",
        ws_ping_interval=settings.WS_PING_INTERVAL,
        ws_ping_timeout=settings.WS_PING_TIMEOUT,
        ws_max_size=settings.WS_MAX_PAYLOAD_MB * 1024 * 1024
    )
