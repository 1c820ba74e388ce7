"""Liveness endpoint for load balancers and the deploy smoke test.

Each probe returns ``{"ok": bool, ...}``; the overall status is ``ok`` when
every probe passes, ``down`` when none does and ``degraded`` otherwise.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import redis
from django.conf import settings
from django.db import connection
from django.http import JsonResponse

from alumni_portal.realtime.socketio import registry

PROBE_TIMEOUT = 0.5

Probe = Callable[[], None]


def _ping_database() -> None:
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1;")
        cursor.fetchone()


def _ping_redis() -> None:
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        msg = "REDIS_URL not configured"
        raise RuntimeError(msg)
    redis.Redis.from_url(
        url,
        socket_timeout=PROBE_TIMEOUT,
        socket_connect_timeout=PROBE_TIMEOUT,
    ).ping()


PROBES: dict[str, Probe] = {
    "db": _ping_database,
    "redis": _ping_redis,
}


def run_probe(probe: Probe) -> dict[str, Any]:
    try:
        probe()
    except Exception as exc:  # noqa: BLE001 - a failing dependency degrades, never 500s
        return {"ok": False, "error": str(exc)}
    return {"ok": True}


def overall_status(components: dict[str, dict[str, Any]]) -> str:
    passed = [c["ok"] for c in components.values()]
    if all(passed):
        return "ok"
    return "degraded" if any(passed) else "down"


def health(request):
    components = {name: run_probe(probe) for name, probe in PROBES.items()}
    status = overall_status(components)
    # Socket counters are per process; a WSGI worker always reports zeros.
    realtime = {"ok": True, **registry.stats()}
    return JsonResponse(
        {"status": status, "components": components, "realtime": realtime},
        status=200 if status == "ok" else 503,
    )
