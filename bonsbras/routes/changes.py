import json
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import decode_token
from ..db import get_db
from ..models.models import Project, User
from ..services.change_feed import feed, topic, TOPIC_COLUMNS


router = APIRouter(tags=["changes"])
logger = structlog.get_logger(__name__)

USER_COLUMNS = {"client_id", "pro_id", "user_id"}


def can_subscribe(db: Session, user_id: uuid.UUID, table: str, column: str, value: str) -> bool:
    """A user may follow rows that carry their own id, or any sub-record of a project they are party to."""
    if column not in TOPIC_COLUMNS.get(table, set()):
        return False
    try:
        value_uuid = uuid.UUID(str(value))
    except ValueError:
        return False
    if column in USER_COLUMNS:
        return value_uuid == user_id
    project = db.query(Project).filter(Project.id == value_uuid).first()
    return project is not None and user_id in (project.client_id, project.pro_id)


def _user_from_ws_token(db: Session, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    try:
        payload = decode_token(token)
        if payload.get("type") is not None:
            return None
        user_id = uuid.UUID(str(payload.get("sub")))
    except Exception:
        return None
    user = db.query(User).filter(User.id == user_id).first()
    return user if user and user.is_active else None


@router.websocket("/ws/changes")
async def ws_changes(websocket: WebSocket, token: Optional[str] = None, db: Session = Depends(get_db)):
    user = _user_from_ws_token(db, token)
    if user is None:
        await websocket.close(code=4401)
        return
    user_id = user.id

    await websocket.accept()
    try:
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
                continue
            try:
                msg = json.loads(data)
                action = msg.get("action")
                table, column, value = msg["table"], msg["column"], str(msg["value"])
            except (ValueError, KeyError, TypeError, AttributeError):
                await websocket.send_json({"event": "error", "detail": "Invalid message"})
                continue
            key = topic(table, column, value)
            if action == "subscribe":
                if not can_subscribe(db, user_id, table, column, value):
                    await websocket.send_json({"event": "error", "detail": "Subscription not allowed", "topic": key})
                    continue
                await feed.subscribe(key, websocket)
                await websocket.send_json({"event": "subscribed", "topic": key})
            elif action == "unsubscribe":
                await feed.unsubscribe(key, websocket)
                await websocket.send_json({"event": "unsubscribed", "topic": key})
            else:
                await websocket.send_json({"event": "error", "detail": f"Unknown action {action!r}"})
    except WebSocketDisconnect:
        await feed.drop(websocket)
    except Exception as e:
        logger.warning("change_feed_socket_error", user_id=str(user_id), error=str(e))
        await feed.drop(websocket)
        try:
            await websocket.close()
        except Exception:
            pass
