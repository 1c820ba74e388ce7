from unittest import mock

import pytest
from rest_framework.test import APIClient

from alumni_portal.realtime.channels import room_for_user
from alumni_portal.realtime.socketio import registry
from alumni_portal.realtime.socketio import sio
from tests.factories import create_user


@pytest.fixture(autouse=True)
def _reset_registry():
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def emit():
    """Replace the Socket.IO transport; every delivery lands on this mock."""
    with mock.patch.object(sio, "emit", new_callable=mock.AsyncMock) as patched:
        yield patched


@pytest.fixture
def socket_transport():
    """Tell the handshake the engine.io transport is still open; tests have none."""
    with mock.patch.object(sio.manager, "is_connected", return_value=True) as patched:
        yield patched


@pytest.fixture
def live_socket():
    """Register an authenticated connection the way the handshake does."""

    def _connect(sid, user):
        conn, _ = registry.register(sid, user.pk, user.public_identity())
        registry.join(sid, room_for_user(user.pk))
        return conn

    return _connect


@pytest.fixture
def alice(db):
    return create_user("alice", first_name="Alice", last_name="Ng")


@pytest.fixture
def bob(db):
    return create_user("bob", first_name="Bob", last_name="Okafor")


@pytest.fixture
def carol(db):
    return create_user("carol", first_name="Carol", last_name="Diaz")


@pytest.fixture
def api_client():
    return APIClient()
