import asyncio

import pytest

from signal_client.schemas.collections import USERS
from signal_client.services.presence import PresenceHeartbeat


async def _presence(store, uid: str) -> tuple[bool, object]:
    document = await store.get(USERS, uid)
    return document.get("isOnline"), document.get("lastActive")


@pytest.mark.asyncio
async def test_heartbeat_marks_online_then_offline(alice) -> None:
    await alice.store.update(USERS, "alice", {"isOnline": False})
    heartbeat = PresenceHeartbeat(alice)

    await heartbeat.start()
    await asyncio.sleep(0.03)
    online, first_seen = await _presence(alice.store, "alice")
    assert heartbeat.running
    assert online is True

    await asyncio.sleep(0.03)
    _, later_seen = await _presence(alice.store, "alice")
    assert later_seen > first_seen

    await heartbeat.stop()
    online, _ = await _presence(alice.store, "alice")
    assert not heartbeat.running
    assert online is False


@pytest.mark.asyncio
async def test_hidden_app_goes_offline_and_resumes(alice) -> None:
    heartbeat = PresenceHeartbeat(alice)
    await heartbeat.start()

    await heartbeat.set_visible(False)
    assert (await _presence(alice.store, "alice"))[0] is False

    await heartbeat.set_visible(True)
    await asyncio.sleep(0.02)
    assert (await _presence(alice.store, "alice"))[0] is True
    await heartbeat.stop()


@pytest.mark.asyncio
async def test_beat_without_profile_is_skipped(context_for) -> None:
    heartbeat = PresenceHeartbeat(context_for("nobody"))

    assert await heartbeat.beat() is False
