"""Maintenance sweep and heartbeat tests."""

import asyncio

from hassstream.realtime.broadcaster import BroadcastLimits, Broadcaster

from conftest import SECRET, RecordingSender


async def test_idle_client_evicted_on_next_sweep(broadcaster, connect, clock):
    await connect("idle")

    clock.advance(301)
    evicted = await broadcaster.scheduler.sweep()

    assert evicted == 1
    assert "idle" not in broadcaster.registry
    assert broadcaster.registry.heartbeat_count() == 0


async def test_client_within_timeout_survives_sweep(broadcaster, connect, clock):
    await connect("recent")

    clock.advance(300)  # not *more* than the timeout
    assert await broadcaster.scheduler.sweep() == 0
    assert "recent" in broadcaster.registry


async def test_pinged_client_never_evicted(broadcaster, connect, clock):
    sender, _ = await connect("alive")

    for _ in range(40):  # 20 minutes of wall-clock time
        clock.advance(30)
        assert await broadcaster.scheduler.ping("alive") is True
        await broadcaster.scheduler.sweep()
        assert "alive" in broadcaster.registry

    assert sender.types() == ["ping"] * 40


async def test_successful_broadcast_counts_as_activity(broadcaster, connect, clock):
    await connect("c1")
    broadcaster.subscribe_to_domain("c1", "light")

    clock.advance(200)
    await broadcaster.broadcast_state_change({"entity_id": "light.a", "state": "on"})
    clock.advance(200)

    assert await broadcaster.scheduler.sweep() == 0


async def test_sweep_resets_expired_rate_limit_window(broadcaster, connect, clock):
    _, client = await connect("c1")
    client.rate_limit.count = 500

    clock.advance(61)
    await broadcaster.scheduler.sweep()

    assert client.rate_limit.count == 0
    assert client.rate_limit.window_start == clock.now


async def test_sweep_keeps_unexpired_rate_limit_window(broadcaster, connect, clock):
    _, client = await connect("c1")
    client.rate_limit.count = 500

    clock.advance(30)
    await broadcaster.scheduler.sweep()
    assert client.rate_limit.count == 500


async def test_sweep_continues_past_a_failing_client(broadcaster, connect, clock, monkeypatch):
    _, first = await connect("first")
    _, second = await connect("second")
    first.rate_limit.count = second.rate_limit.count = 10
    clock.advance(61)

    real_reset = broadcaster.rate_limiter.reset_if_expired

    def flaky_reset(state, now):
        if state is first.rate_limit:
            raise RuntimeError("boom")
        return real_reset(state, now)

    monkeypatch.setattr(broadcaster.rate_limiter, "reset_if_expired", flaky_reset)

    await broadcaster.scheduler.sweep()
    assert second.rate_limit.count == 0


async def test_failed_ping_removes_client(broadcaster, connect):
    sender, _ = await connect("c1")
    sender.fail = True

    assert await broadcaster.scheduler.ping("c1") is False
    assert "c1" not in broadcaster.registry


async def test_ping_for_missing_client_is_noop(broadcaster):
    assert await broadcaster.scheduler.ping("ghost") is False


async def test_heartbeat_task_pings_and_stops_on_removal():
    b = Broadcaster(
        secret_token=SECRET,
        limits=BroadcastLimits(ping_interval=0.01),
    )
    sender = RecordingSender()
    await b.add_client("c1", sender, SECRET)

    await asyncio.sleep(0.1)
    assert "ping" in sender.types()

    b.remove_client("c1")
    pings = len(sender.of_type("ping"))
    await asyncio.sleep(0.05)
    assert len(sender.of_type("ping")) == pings
    await b.stop()


async def test_maintenance_loop_runs_in_background():
    b = Broadcaster(
        secret_token=SECRET,
        limits=BroadcastLimits(maintenance_interval=0.01, client_timeout=0.0, ping_interval=60),
    )
    await b.add_client("c1", RecordingSender(), SECRET)
    b.start()

    await asyncio.sleep(0.1)
    assert b.connected_clients == 0
    await b.stop()
