"""Socket.IO connection lifecycle and inbound event dispatch.

Connect handshake, in order:

1. resolve the bearer token to an active user, or refuse the connection;
2. give up quietly if the transport closed meanwhile;
3. register the connection (presence count goes up);
4. join the user's personal channel. This step is part of the handshake and
   never happens through a client event;
5. persist presence (best-effort).

Steps 3 to 5 are undone together if any of them fails.

Every inbound event name is a member of ``InboundEvent`` and has exactly one
handler in ``HANDLERS``; registration refuses to start when one is missing.
Handlers return the acknowledgement envelope. Errors never escape to the
transport: primary events report them to the originating connection only,
best-effort events just log them.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from django.core.exceptions import ImproperlyConfigured
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

from alumni_portal.core.api import envelope
from alumni_portal.core.api import failure_envelope
from alumni_portal.core.exceptions import AuthError
from alumni_portal.core.exceptions import ForbiddenError
from alumni_portal.core.exceptions import RelayError
from alumni_portal.core.exceptions import TransientError
from alumni_portal.messaging import services as messaging
from alumni_portal.notifications import services as notifications

from .channels import CHAT_CHANNEL
from .channels import FORUM_CHANNEL
from .channels import forum_key
from .channels import room_for_chat
from .channels import room_for_forum
from .channels import room_for_user
from .channels import split_room
from .events.chat import NEW_MESSAGE
from .events.chat import build_message_payload
from .payloads import ChatRefPayload
from .payloads import ForumRefPayload
from .payloads import NotificationRefPayload
from .payloads import SendMessagePayload
from .payloads import TypingPayload
from .payloads import parse_payload
from .presence import mark_offline
from .presence import mark_online
from .socketio import bind_relay_loop
from .socketio import broadcast_to_room
from .socketio import emit_to_sid
from .socketio import registry
from .socketio import sio
from .socketio import spawn

if TYPE_CHECKING:  # import for type checking only
    from collections.abc import Awaitable
    from collections.abc import Callable

    from .channels import Connection

logger = logging.getLogger(__name__)

UNAUTHORIZED = "unauthorized"
JWT_EXPIRED = "jwt_expired"
SERVER_ERROR = "server_error"


# Handshake
# ------------------------------------------------------------------------------


def _extract_token(environ: dict[str, Any], auth: Any | None) -> str | None:
    """Extract the JWT from ``auth.token``, a Bearer header or ``?token=``.

    Handles python-socketio environ shapes across ASGI/WSGI servers.
    """

    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token.strip():
            return auth_token.strip()

    header = environ.get("HTTP_AUTHORIZATION", "") if isinstance(environ, dict) else ""
    if isinstance(header, str) and header.lower().startswith("bearer "):
        bearer = header[7:].strip()
        if bearer:
            return bearer

    scope: Any = environ
    if isinstance(environ, dict) and "asgi.scope" in environ:
        inner = environ.get("asgi.scope")
        if isinstance(inner, dict):
            scope = inner

    query_string: str | bytes = ""
    if isinstance(scope, dict) and "query_string" in scope:
        query_string = scope.get("query_string", b"")
    elif isinstance(environ, dict) and "QUERY_STRING" in environ:
        query_string = environ.get("QUERY_STRING", "")

    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    if isinstance(token, str) and token:
        return token
    return None


def _token_expired(raw: str) -> bool:
    try:
        unverified = AccessToken(raw, verify=False)
    except TokenError:
        return False
    try:
        unverified.check_exp()
    except TokenError:
        return True
    return False


@database_sync_to_async
def _resolve_user(raw: str):
    """Return the active user behind ``raw`` or raise AuthError."""
    jwt_auth = JWTAuthentication()
    try:
        validated = jwt_auth.get_validated_token(raw)
    except (AuthenticationFailed, TokenError) as exc:
        code = JWT_EXPIRED if _token_expired(raw) else UNAUTHORIZED
        raise AuthError(code) from exc
    try:
        user = jwt_auth.get_user(validated)
    except (AuthenticationFailed, TokenError) as exc:  # unknown or inactive user
        raise AuthError(UNAUTHORIZED) from exc
    if not user.is_active:
        raise AuthError(UNAUTHORIZED)
    return user


@sio.event
async def connect(sid: str, environ: dict[str, Any], auth: Any | None = None):
    bind_relay_loop()
    token = _extract_token(environ, auth)
    if not token:
        raise ConnectionRefusedError(UNAUTHORIZED)

    try:
        user = await _resolve_user(token)
    except AuthError as exc:
        raise ConnectionRefusedError(exc.message) from exc
    except Exception as exc:
        logger.exception("Socket.IO connect error")
        raise ConnectionRefusedError(SERVER_ERROR) from exc

    if not sio.manager.is_connected(sid, "/"):
        # The transport closed while the token was checked and the disconnect
        # handler has already run: registering now would leave a ghost.
        logger.info("Socket %s closed during the handshake", sid)
        return False

    conn, came_online = registry.register(sid, user.pk, user.public_identity())
    try:
        registry.join(sid, room_for_user(conn.user_id))
        await mark_online(conn.user_id)
    except BaseException as exc:
        # All or nothing: no connection, membership or presence count survives
        # a handshake that did not finish.
        departure = registry.drop(sid)
        if not isinstance(exc, Exception):
            raise
        logger.exception("Socket.IO connect error")
        if departure is not None and departure.went_offline:
            await mark_offline(conn.user_id)
        raise ConnectionRefusedError(SERVER_ERROR) from exc

    logger.info(
        "User %s connected (%s)%s",
        conn.user_id,
        sid,
        " and is now online" if came_online else "",
    )


@sio.event
async def disconnect(sid: str, reason: Any = None):
    departure = registry.drop(sid)
    if departure is None:
        return
    conn = departure.connection
    for channel in departure.channels:
        parsed = split_room(channel)
        if parsed is None:
            continue
        kind, key = parsed
        if kind == CHAT_CHANNEL:
            await broadcast_to_room(
                channel,
                "user_left_chat",
                _membership_payload(conn, chat_id=int(key)),
            )
        elif kind == FORUM_CHANNEL:
            await broadcast_to_room(
                channel,
                "user_left_forum",
                _membership_payload(conn, forum_id=key),
            )
    if departure.went_offline:
        await mark_offline(conn.user_id)
    logger.info("User %s disconnected (%s): %s", conn.user_id, sid, reason)


# Inbound events
# ------------------------------------------------------------------------------


class InboundEvent(str, Enum):
    JOIN_CHAT = "join_chat"
    LEAVE_CHAT = "leave_chat"
    JOIN_FORUM = "join_forum"
    LEAVE_FORUM = "leave_forum"
    SEND_MESSAGE = "send_message"
    TYPING = "typing"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    MARK_NOTIFICATION_READ = "mark_notification_read"

    @property
    def best_effort(self) -> bool:
        return self in BEST_EFFORT_EVENTS

    @property
    def error_event(self) -> str:
        return "message_error" if self is InboundEvent.SEND_MESSAGE else "relay_error"


BEST_EFFORT_EVENTS = frozenset(
    {
        InboundEvent.TYPING,
        InboundEvent.TYPING_START,
        InboundEvent.TYPING_STOP,
        InboundEvent.MARK_NOTIFICATION_READ,
    }
)


def _membership_payload(conn: Connection, **ref: Any) -> dict[str, Any]:
    return {**ref, "user_id": conn.user_id, "user": conn.identity}


async def handle_join_chat(conn: Connection, data: Any) -> dict[str, Any]:
    chat_id = parse_payload(ChatRefPayload, data)["chat_id"]
    await database_sync_to_async(messaging.get_chat_for_participant)(
        chat_id,
        conn.user_id,
    )
    room = room_for_chat(chat_id)
    joined = registry.join(conn.sid, room)
    if joined:
        await broadcast_to_room(
            room,
            "user_joined_chat",
            _membership_payload(conn, chat_id=chat_id),
            exclude_sids={conn.sid},
        )
    return {"chat_id": chat_id, "joined": joined}


async def handle_leave_chat(conn: Connection, data: Any) -> dict[str, Any]:
    chat_id = parse_payload(ChatRefPayload, data)["chat_id"]
    room = room_for_chat(chat_id)
    left = registry.leave(conn.sid, room)
    if left:
        await broadcast_to_room(
            room,
            "user_left_chat",
            _membership_payload(conn, chat_id=chat_id),
        )
    return {"chat_id": chat_id, "left": left}


async def handle_join_forum(conn: Connection, data: Any) -> dict[str, Any]:
    forum_id = forum_key(parse_payload(ForumRefPayload, data)["forum_id"])
    room = room_for_forum(forum_id)
    joined = registry.join(conn.sid, room)
    if joined:
        await broadcast_to_room(
            room,
            "user_joined_forum",
            _membership_payload(conn, forum_id=forum_id),
            exclude_sids={conn.sid},
        )
    return {"forum_id": forum_id, "joined": joined}


async def handle_leave_forum(conn: Connection, data: Any) -> dict[str, Any]:
    forum_id = forum_key(parse_payload(ForumRefPayload, data)["forum_id"])
    room = room_for_forum(forum_id)
    left = registry.leave(conn.sid, room)
    if left:
        await broadcast_to_room(
            room,
            "user_left_forum",
            _membership_payload(conn, forum_id=forum_id),
        )
    return {"forum_id": forum_id, "left": left}


@database_sync_to_async
def _store_message(user_id: int, fields: dict[str, Any]) -> dict[str, Any]:
    message = messaging.send_message(
        chat_id=fields["chat_id"],
        sender_id=user_id,
        content=fields.get("content", ""),
        message_type=fields.get("type", "text"),
        reply_to_id=fields.get("reply_to"),
        file_url=fields.get("file_url", ""),
        file_name=fields.get("file_name", ""),
        file_size=fields.get("file_size"),
    )
    return build_message_payload(message)


async def handle_send_message(conn: Connection, data: Any) -> dict[str, Any]:
    fields = parse_payload(SendMessagePayload, data)
    payload = await _store_message(conn.user_id, fields)
    # Stored first; the fan-out runs on its own and reaches whoever is in the
    # chat channel when it happens, the author's joined connections included.
    spawn(
        broadcast_to_room(room_for_chat(fields["chat_id"]), NEW_MESSAGE, payload),
        name=f"new_message:{payload['id']}",
    )
    return {"message": payload}


async def _relay_typing(conn: Connection, chat_id: int, *, is_typing: bool) -> dict:
    room = room_for_chat(chat_id)
    if not registry.is_member(conn.sid, room):
        msg = "Join the chat before sending typing signals."
        raise ForbiddenError(msg)
    delivered = await broadcast_to_room(
        room,
        "user_typing",
        _membership_payload(conn, chat_id=chat_id, is_typing=is_typing),
        exclude_sids=registry.sids_for_user(conn.user_id),
    )
    return {"chat_id": chat_id, "is_typing": is_typing, "delivered": delivered}


async def handle_typing(conn: Connection, data: Any) -> dict[str, Any]:
    fields = parse_payload(TypingPayload, data)
    return await _relay_typing(conn, fields["chat_id"], is_typing=fields["is_typing"])


async def handle_typing_start(conn: Connection, data: Any) -> dict[str, Any]:
    chat_id = parse_payload(ChatRefPayload, data)["chat_id"]
    return await _relay_typing(conn, chat_id, is_typing=True)


async def handle_typing_stop(conn: Connection, data: Any) -> dict[str, Any]:
    chat_id = parse_payload(ChatRefPayload, data)["chat_id"]
    return await _relay_typing(conn, chat_id, is_typing=False)


async def handle_mark_notification_read(conn: Connection, data: Any) -> dict[str, Any]:
    notification_id = parse_payload(NotificationRefPayload, data)["notification_id"]
    await database_sync_to_async(notifications.mark_read)(notification_id, conn.user_id)
    return {"notification_id": notification_id, "is_read": True}


HANDLERS: dict[InboundEvent, Callable[[Connection, Any], Awaitable[dict[str, Any]]]] = {
    InboundEvent.JOIN_CHAT: handle_join_chat,
    InboundEvent.LEAVE_CHAT: handle_leave_chat,
    InboundEvent.JOIN_FORUM: handle_join_forum,
    InboundEvent.LEAVE_FORUM: handle_leave_forum,
    InboundEvent.SEND_MESSAGE: handle_send_message,
    InboundEvent.TYPING: handle_typing,
    InboundEvent.TYPING_START: handle_typing_start,
    InboundEvent.TYPING_STOP: handle_typing_stop,
    InboundEvent.MARK_NOTIFICATION_READ: handle_mark_notification_read,
}


async def _fail(event: InboundEvent, sid: str, exc: RelayError) -> dict[str, Any]:
    body = failure_envelope(exc)
    if event.best_effort:
        logger.warning("Dropped %s from %s: %s", event.value, sid, exc.message)
    else:
        await emit_to_sid(
            sid,
            event.error_event,
            {**body, "event": event.value, "code": exc.code},
        )
    return body


async def dispatch(event: InboundEvent, sid: str, data: Any = None) -> dict[str, Any]:
    """Run the handler for ``event`` and turn its outcome into an envelope."""
    conn = registry.get(sid)
    if conn is None or not conn.alive:
        return await _fail(event, sid, AuthError("Not connected."))
    try:
        result = await HANDLERS[event](conn, data)
    except RelayError as exc:
        return await _fail(event, sid, exc)
    except Exception:
        logger.exception("Unhandled error in %s from %s", event.value, sid)
        return await _fail(event, sid, TransientError())
    return envelope(data=result)


def _bind(event: InboundEvent):
    async def handler(sid: str, data: Any = None):
        return await dispatch(event, sid, data)

    handler.__name__ = f"on_{event.value}"
    return handler


def register_handlers(server=sio) -> None:
    missing = [event.value for event in InboundEvent if event not in HANDLERS]
    if missing:
        msg = f"No handler registered for inbound event(s): {', '.join(missing)}"
        raise ImproperlyConfigured(msg)
    for event in InboundEvent:
        server.on(event.value, handler=_bind(event))


register_handlers()
