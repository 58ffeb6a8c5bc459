import asyncio
import dataclasses
import json

import pytest

from services.realtime.broadcaster import Broadcaster
from services.realtime.session_registry import SessionRegistry


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("connection closed")
        self.messages.append(json.loads(text))


def test_broadcast_reaches_every_client():
    broadcaster = Broadcaster()
    sockets = [FakeSocket(), FakeSocket()]
    for ws in sockets:
        broadcaster.register(ws)

    delivered = asyncio.run(broadcaster.broadcast("screenshot:added", {"id": "1"}))

    assert delivered == 2
    for ws in sockets:
        assert ws.messages == [{"event": "screenshot:added", "data": {"id": "1"}}]


def test_failed_socket_is_dropped():
    broadcaster = Broadcaster()
    healthy, broken = FakeSocket(), FakeSocket(fail=True)
    broadcaster.register(healthy)
    broadcaster.register(broken)

    assert asyncio.run(broadcaster.broadcast("screenshots:cleared", {})) == 1
    assert broadcaster.client_count == 1
    assert len(healthy.messages) == 1


def test_broadcast_with_no_clients():
    assert asyncio.run(Broadcaster().broadcast("project:created", {"projectId": "x"})) == 0


def test_unregister_unknown_socket_is_noop():
    broadcaster = Broadcaster()
    broadcaster.unregister(FakeSocket())
    assert broadcaster.client_count == 0


def test_sessions_are_bound_to_their_project(store):
    registry = SessionRegistry(store)

    alpha = registry.open("alpha")
    beta = registry.open("beta")
    second_alpha = registry.open("alpha")

    assert alpha.session_id != beta.session_id != second_alpha.session_id
    assert registry.get(alpha.session_id).project_id == "alpha"
    assert registry.get(beta.session_id).project_id == "beta"
    assert registry.counts_by_project() == {"alpha": 2, "beta": 1}
    with pytest.raises(dataclasses.FrozenInstanceError):
        alpha.project_id = "beta"


def test_open_registers_project(store):
    registry = SessionRegistry(store)

    assert store.is_new_project("fresh")
    registry.open("fresh")
    assert not store.is_new_project("fresh")
    assert "fresh" in store.list_projects()


def test_close_session():
    registry = SessionRegistry()
    session = registry.open("alpha")

    assert session.session_id in registry
    registry.close(session.session_id)
    assert session.session_id not in registry
    assert registry.counts_by_project() == {}
    with pytest.raises(KeyError):
        registry.get(session.session_id)
    with pytest.raises(KeyError):
        registry.close(session.session_id)


def test_open_requires_project():
    with pytest.raises(ValueError):
        SessionRegistry().open("")
