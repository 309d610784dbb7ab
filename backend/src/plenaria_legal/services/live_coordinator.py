"""
Live Session Coordinator for Plenaria Legal.

Bridges the consultation state machine to per-consultation publish/subscribe
channels carried over WebSockets:

- ``ChannelHub`` tracks which connections joined which consultation;
- ``LiveSessionCoordinator`` applies commands through ``ConsultationService``
  and fans the resulting events out to the channel.

Commands on one consultation are applied and broadcast under a per-consultation
``asyncio.Lock``, so members receive state changes in the order they were
applied. Typing indicators bypass the lock and are best effort.
"""

import asyncio
import json
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from starlette.requests import HTTPConnection

from plenaria_legal.core.config import ConsultationConfig, get_config
from plenaria_legal.core.exceptions import (
    AuthenticationError, AuthorizationError, ConsultationError, ValidationError,
)
from plenaria_legal.models import Consultation, Message, User
from plenaria_legal.schemas import MessageCreate
from plenaria_legal.services.access_policy import evaluate_access
from plenaria_legal.services.consultation_service import ConsultationService
from plenaria_legal.services.live_sessions import LiveSessionRegistry
from plenaria_legal.services.message_service import to_message_response

logger = logging.getLogger(__name__)

# Server-originated events
JOINED_CONSULTATION = "joined_consultation"
USER_JOINED = "user_joined"
USER_LEFT = "user_left"
CONSULTATION_ACCEPTED = "consultation_accepted"
CONSULTATION_REJECTED = "consultation_rejected"
CONSULTATION_CANCELLED = "consultation_cancelled"
NEW_MESSAGE = "new_message"
MESSAGE_DELIVERED = "message_delivered"
SESSION_ENDED = "session_ended"
USER_TYPING = "user_typing"
USER_STOPPED_TYPING = "user_stopped_typing"
ERROR = "error"


class LiveConnection:
    """One authenticated WebSocket client."""

    def __init__(self, websocket, user: User):
        self.websocket = websocket
        self.user_id = user.id
        self.email = user.email
        self.role = user.role

    def identity(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "email": self.email, "role": self.role}

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": jsonable_encoder(data)})

    async def send_error(self, exc: ConsultationError) -> None:
        await self.send(ERROR, exc.to_dict())

    def __repr__(self):
        return f"<LiveConnection(user_id={self.user_id}, role='{self.role}')>"


class ChannelHub:
    """Membership of connections in consultation channels."""

    def __init__(self):
        self._channels: Dict[int, Set[LiveConnection]] = defaultdict(set)

    def join(self, consultation_id: int, connection: LiveConnection) -> None:
        self._channels[consultation_id].add(connection)

    def leave(self, consultation_id: int, connection: LiveConnection) -> bool:
        members = self._channels.get(consultation_id)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self._channels[consultation_id]
        return True

    def leave_all(self, connection: LiveConnection) -> List[int]:
        """Remove ``connection`` everywhere; returns the channels it left."""
        left = [cid for cid, members in self._channels.items() if connection in members]
        for cid in left:
            self.leave(cid, connection)
        return left

    def is_member(self, consultation_id: int, connection: LiveConnection) -> bool:
        return connection in self._channels.get(consultation_id, ())

    def members(self, consultation_id: int) -> List[LiveConnection]:
        return list(self._channels.get(consultation_id, ()))

    async def publish(
        self,
        consultation_id: int,
        event: str,
        data: Any,
        exclude: Optional[LiveConnection] = None,
    ) -> int:
        """Send an event to every member; returns how many received it."""
        delivered = 0
        for connection in self.members(consultation_id):
            if connection is exclude:
                continue
            try:
                await connection.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping unreachable connection {connection!r}: {e}")
                self.leave_all(connection)
        return delivered


def consultation_id_from(data: Any) -> int:
    """Event payloads carry either a bare id or ``{"consultation_id": ...}``."""
    value = data.get("consultation_id") if isinstance(data, dict) else data
    if isinstance(value, bool):
        value = None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError("consultation_id is required", details={"field": "consultation_id"})


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class LiveSessionCoordinator:
    """Applies live commands and broadcasts their outcome in order."""

    def __init__(
        self,
        hub: Optional[ChannelHub] = None,
        registry: Optional[LiveSessionRegistry] = None,
        settings: Optional[ConsultationConfig] = None,
    ):
        self.settings = settings or get_config().consultation
        self.hub = hub or ChannelHub()
        self.registry = registry or LiveSessionRegistry(
            max_session_minutes=self.settings.max_session_minutes,
            idle_timeout_minutes=self.settings.idle_timeout_minutes,
            auto_expiry_enabled=self.settings.session_auto_expiry_enabled,
        )
        self._locks: Dict[int, _LockEntry] = {}
        self._handlers: Dict[str, Callable] = {
            "join_consultation": self._on_join,
            "accept_consultation": self._on_accept,
            "reject_consultation": self._on_reject,
            "send_message": self._on_send_message,
            "end_consultation": self._on_end,
            "typing": self._on_typing,
            "stopped_typing": self._on_stopped_typing,
            "leave_consultation": self._on_leave,
        }

    @asynccontextmanager
    async def _consultation_lock(self, consultation_id: int):
        """
        Serialize commands on one consultation.

        Entries are reference counted by holders and waiters and removed when
        the last one leaves, so the map only holds consultations with a
        command in flight.
        """
        entry = self._locks.get(consultation_id)
        if entry is None:
            entry = self._locks[consultation_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(consultation_id, None)

    # Commands shared by the HTTP routes and the live channel

    async def accept(
        self,
        service: ConsultationService,
        lawyer: User,
        consultation_id: int,
        live: bool = False,
        connection: Optional[LiveConnection] = None,
        now: Optional[datetime] = None,
    ) -> Consultation:
        async with self._consultation_lock(consultation_id):
            consultation = service.accept(lawyer, consultation_id, now=now, live=live)
            if live:
                self.registry.start(consultation_id, now=consultation.start_at)
            if connection is not None:
                self.hub.join(consultation_id, connection)
            await self.hub.publish(consultation_id, CONSULTATION_ACCEPTED, {
                "consultation": service.to_response(consultation),
                "message": "Consultation has been accepted",
            })
        return consultation

    async def reject(
        self,
        service: ConsultationService,
        lawyer: User,
        consultation_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Consultation:
        async with self._consultation_lock(consultation_id):
            consultation = service.reject(lawyer, consultation_id, reason=reason, now=now)
            await self.hub.publish(consultation_id, CONSULTATION_REJECTED, {
                "consultation": service.to_response(consultation),
                "reason": consultation.rejection_reason,
            })
        return consultation

    async def cancel(
        self,
        service: ConsultationService,
        customer: User,
        consultation_id: int,
        now: Optional[datetime] = None,
    ) -> Consultation:
        async with self._consultation_lock(consultation_id):
            consultation = service.cancel(customer, consultation_id, now=now)
            await self.hub.publish(consultation_id, CONSULTATION_CANCELLED, {
                "consultation": service.to_response(consultation),
            })
        return consultation

    async def send_message(
        self,
        service: ConsultationService,
        sender: User,
        consultation_id: int,
        text: Optional[str],
        attachments: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Message:
        async with self._consultation_lock(consultation_id):
            message = service.send_message(sender, consultation_id, text, attachments, now=now)
            # Only IN_PROGRESS consultations are tracked
            self.registry.touch(consultation_id, now=message.created_at)
            await self.hub.publish(consultation_id, NEW_MESSAGE, to_message_response(message))
        return message

    async def end_session(
        self,
        service: ConsultationService,
        actor: User,
        consultation_id: int,
        now: Optional[datetime] = None,
    ) -> Consultation:
        async with self._consultation_lock(consultation_id):
            consultation = service.end_session(actor, consultation_id, now=now)
            self.registry.end(consultation_id)
            await self.hub.publish(consultation_id, SESSION_ENDED, {
                "consultation_id": consultation_id,
                "reason": "manual",
                "message": "User ended session",
                "duration": consultation.session_duration,
            })
        logger.info(
            f"Consultation {consultation_id} ended: manual ({consultation.session_duration} minutes)"
        )
        return consultation

    # Live channel frames

    async def handle_frame(self, connection: LiveConnection, raw: str, session_factory) -> None:
        """
        Decode and dispatch one client frame.

        Failures are reported to the sender as an ``error`` event; the socket
        stays open.
        """
        try:
            frame = json.loads(raw)
        except ValueError:
            await connection.send_error(ValidationError("Malformed frame"))
            return

        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await connection.send_error(ValidationError("Frame must carry an event name"))
            return

        event = frame["event"]
        handler = self._handlers.get(event)
        if handler is None:
            await connection.send_error(ValidationError(f"Unknown event: {event}", details={"event": event}))
            return

        db = session_factory()
        try:
            actor = db.get(User, connection.user_id)
            if actor is None or actor.is_suspended():
                raise AuthenticationError("User not found")
            await handler(connection, ConsultationService(db), actor, frame.get("data"))
        except ConsultationError as e:
            logger.info(f"Live event {event} from user {connection.user_id} refused: {e.message}")
            await connection.send_error(e)
        except Exception as e:
            logger.error(f"Live event {event} from user {connection.user_id} failed: {e}", exc_info=True)
            await connection.send(ERROR, {
                "message": f"Failed to handle {event}",
                "code": "infrastructure_error",
            })
        finally:
            db.close()

    async def disconnect(self, connection: LiveConnection) -> None:
        for consultation_id in self.hub.leave_all(connection):
            await self.hub.publish(consultation_id, USER_LEFT, connection.identity())
        logger.info(f"User disconnected: {connection.email}")

    async def _on_join(self, connection, service, actor, data):
        consultation_id = consultation_id_from(data)
        consultation = service.get_for(actor, consultation_id)
        access = evaluate_access(actor, consultation)
        if not (access.participant or actor.is_admin()):
            raise AuthorizationError("Access denied")

        self.hub.join(consultation_id, connection)
        await connection.send(JOINED_CONSULTATION, {"consultation_id": consultation_id})
        await self.hub.publish(consultation_id, USER_JOINED, connection.identity(), exclude=connection)
        logger.info(f"User {connection.email} joined consultation {consultation_id}")

    async def _on_accept(self, connection, service, actor, data):
        await self.accept(service, actor, consultation_id_from(data), live=True, connection=connection)

    async def _on_reject(self, connection, service, actor, data):
        reason = data.get("reason") if isinstance(data, dict) else None
        await self.reject(service, actor, consultation_id_from(data), reason=reason)

    async def _on_send_message(self, connection, service, actor, data):
        if not isinstance(data, dict):
            raise ValidationError("Message payload must be an object")
        consultation_id = consultation_id_from(data)
        try:
            payload = MessageCreate.model_validate({**data, "attachments": data.get("attachments") or []})
        except PydanticValidationError as e:
            fields = sorted({str(error["loc"][0]) for error in e.errors() if error.get("loc")})
            raise ValidationError("Invalid message payload", details={"fields": fields})

        message = await self.send_message(service, actor, consultation_id, payload.body, payload.attachments)
        await connection.send(MESSAGE_DELIVERED, {
            "message_id": message.id,
            "delivered_at": message.delivered_at,
        })

    async def _on_end(self, connection, service, actor, data):
        await self.end_session(service, actor, consultation_id_from(data))

    async def _on_typing(self, connection, service, actor, data):
        await self._relay_typing(connection, consultation_id_from(data), USER_TYPING)

    async def _on_stopped_typing(self, connection, service, actor, data):
        await self._relay_typing(connection, consultation_id_from(data), USER_STOPPED_TYPING)

    async def _relay_typing(self, connection: LiveConnection, consultation_id: int, event: str) -> None:
        if not self.hub.is_member(consultation_id, connection):
            return
        await self.hub.publish(consultation_id, event, {
            "consultation_id": consultation_id,
            "user_id": connection.user_id,
            "email": connection.email,
        }, exclude=connection)

    async def _on_leave(self, connection, service, actor, data):
        consultation_id = consultation_id_from(data)
        if self.hub.leave(consultation_id, connection):
            await self.hub.publish(consultation_id, USER_LEFT, connection.identity())
            logger.info(f"User {connection.email} left consultation {consultation_id}")

    def shutdown(self) -> None:
        self.registry.clear()
        self._locks.clear()


def get_live_coordinator(connection: HTTPConnection) -> LiveSessionCoordinator:
    """Dependency returning the coordinator built in the application lifespan."""
    return connection.app.state.live_coordinator
