"""Global Socket.IO server and the fan-out primitives built on it.

Delivery never goes through python-socketio rooms: membership lives in the
``ChannelRegistry`` below, and a broadcast emits to each member sid that is
live at the moment of the broadcast. A failure to reach one sid is logged and
does not stop delivery to the others.

Frontend convention:
- Socket.IO path: ``settings.SOCKETIO_PATH`` (``/ws/socket.io`` by default)
- Auth: ``auth.token``, an ``Authorization: Bearer`` header or ``?token=``
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from typing import Any

import socketio
from asgiref.sync import async_to_sync
from django.conf import settings

from .channels import ChannelRegistry
from .channels import room_for_chat
from .channels import room_for_forum
from .channels import room_for_user

if TYPE_CHECKING:  # import for type checking only
    from collections.abc import Coroutine
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.SOCKETIO_CORS_ALLOWED_ORIGINS,
    # One connection's events run one after another, in arrival order.
    async_handlers=False,
    logger=False,
    engineio_logger=False,
)

registry = ChannelRegistry()

_background_tasks: set[asyncio.Task] = set()
_relay_loop: asyncio.AbstractEventLoop | None = None


async def emit_to_sid(sid: str, event: str, payload: dict[str, Any]) -> bool:
    try:
        await sio.emit(event, payload, to=sid)
    except Exception:
        logger.exception("Failed to deliver %s to %s", event, sid)
        return False
    return True


async def broadcast_to_room(
    room: str,
    event: str,
    payload: dict[str, Any],
    *,
    exclude_sids: Iterable[str] = (),
) -> int:
    """Emit ``event`` to every current member of ``room``.

    Returns how many sids the event was handed to. An empty room is not an
    error: the event is simply dropped.
    """
    excluded = set(exclude_sids)
    delivered = 0
    for sid in registry.members(room):
        if sid in excluded:
            continue
        if await emit_to_sid(sid, event, payload):
            delivered += 1
    logger.debug("%s -> %s: %s recipient(s)", event, room, delivered)
    return delivered


def _forget_task(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task %s failed",
            task.get_name(),
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def spawn(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
    """Run ``coro`` without waiting for it; failures are logged, not raised."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_forget_task)
    return task


async def drain_background_tasks() -> None:
    """Wait until every spawned task has finished."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


def bind_relay_loop() -> None:
    """Remember the event loop serving sockets in this process."""
    global _relay_loop  # noqa: PLW0603
    _relay_loop = asyncio.get_running_loop()


def _spawn_broadcast(room: str, event: str, payload: dict[str, Any]) -> None:
    spawn(broadcast_to_room(room, event, payload), name=f"{event}:{room}")


def emit_event_to_room(room: str, event: str, payload: dict[str, Any]) -> int:
    """Emit an event to a room from sync Django code."""

    return async_to_sync(broadcast_to_room)(room, event, payload)


def schedule_event_to_room(room: str, event: str, payload: dict[str, Any]) -> None:
    """Queue a broadcast on the socket loop and return without waiting for it.

    A process whose loop is not serving sockets (WSGI, Celery, a shell) has
    nobody to hand the work to and broadcasts inline instead.
    """
    loop = _relay_loop
    if loop is None or not loop.is_running():
        emit_event_to_room(room, event, payload)
        return
    loop.call_soon_threadsafe(_spawn_broadcast, room, event, payload)


def schedule_event_to_chat(chat_id: int, event: str, payload: dict[str, Any]) -> None:
    schedule_event_to_room(room_for_chat(chat_id), event, payload)


def emit_event_to_user(user_id: int, event: str, payload: dict[str, Any]) -> int:
    return emit_event_to_room(room_for_user(user_id), event, payload)


def emit_event_to_forum(forum_id: Any, event: str, payload: dict[str, Any]) -> int:
    return emit_event_to_room(room_for_forum(forum_id), event, payload)
