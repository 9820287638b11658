"""
tests/test_session.py

Integration tests for tracking/session.py.
The position source is faked, the publisher and reward engine are mocked.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tracking.errors import PermissionDenied, PositionTimeout
from tracking.schemas import AccuracyTier, FixError, FixErrorKind
from tracking.services.battery import BatteryEstimator
from tracking.session import RewardRateGuard, SharingSession
from tests.fixtures import TEST_NOW, TEST_USER_ID, FakePositionSource, build_fix


class _Clock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = TEST_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _battery(level: float = 0.8) -> BatteryEstimator:
    source = MagicMock()
    source.level = AsyncMock(return_value=level)
    return BatteryEstimator(source=source)


def _session(source: FakePositionSource, clock: _Clock | None = None) -> SharingSession:
    return SharingSession(
        TEST_USER_ID,
        source,
        battery=_battery(),
        display_name="Ana",
        clock=clock or _Clock(),
    )


# ── RewardRateGuard ─────────────────────────────────────────

def test_guard_first_sample_only_arms_timer() -> None:
    guard = RewardRateGuard(interval_seconds=30)
    assert guard.due(40, TEST_NOW) is None
    assert guard.due(40, TEST_NOW + timedelta(seconds=29)) is None


def test_guard_yields_elapsed_minutes_and_restarts() -> None:
    guard = RewardRateGuard(interval_seconds=30)
    guard.due(40, TEST_NOW)

    elapsed = guard.due(40, TEST_NOW + timedelta(seconds=45))
    assert elapsed == pytest.approx(0.75)
    assert guard.due(40, TEST_NOW + timedelta(seconds=60)) is None


def test_guard_reset_rearms() -> None:
    guard = RewardRateGuard(interval_seconds=30)
    guard.due(40, TEST_NOW)
    guard.reset()
    assert guard.due(40, TEST_NOW + timedelta(hours=1)) is None


# ── Enabling / disabling ────────────────────────────────────

@pytest.mark.asyncio
async def test_enable_uses_bootstrap_tier() -> None:
    # 15 m is "low" in steady state but "medium" for the bootstrap fix
    source = FakePositionSource(bootstrap=build_fix(accuracy_m=15.0))
    session = _session(source)

    tier = await session.enable()

    assert tier is AccuracyTier.MEDIUM
    assert session.sharing is True
    assert source.current_fix_calls[0].max_fix_age_ms == 0
    await session.disable()


@pytest.mark.asyncio
async def test_enable_permission_denied_keeps_sharing_off() -> None:
    source = FakePositionSource(bootstrap_error=PermissionDenied("denied"))
    session = _session(source)

    with pytest.raises(PermissionDenied):
        await session.enable()

    assert session.sharing is False
    assert source.watch_calls == []


@pytest.mark.asyncio
async def test_enable_timeout_keeps_sharing_off() -> None:
    session = _session(FakePositionSource(bootstrap_error=PositionTimeout("slow")))

    with pytest.raises(PositionTimeout):
        await session.enable()

    assert session.sharing is False


@pytest.mark.asyncio
async def test_toggle_flips_sharing() -> None:
    session = _session(FakePositionSource())

    assert await session.toggle() is AccuracyTier.HIGH
    assert session.sharing is True
    assert await session.toggle() is None
    assert session.sharing is False
    await session.wait_closed()


@pytest.mark.asyncio
async def test_disable_clears_history_and_tier() -> None:
    session = _session(FakePositionSource())
    await session.enable()
    with patch("tracking.session.publish_motion_sample", new_callable=AsyncMock):
        await session.process_fix(build_fix(accuracy_m=2.0, reported_speed_mps=10.0))

    assert len(session.inference.speed_history) == 1
    await session.disable()

    assert session.sharing is False
    assert session.tier is AccuracyTier.MEDIUM
    assert len(session.inference.speed_history) == 0
    assert len(session.inference.movement_history) == 0
    await session.wait_closed()


# ── Fix processing ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_process_fix_publishes_sample() -> None:
    session = _session(FakePositionSource())
    await session.enable()
    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ) as mock_publish:
        sample = await session.process_fix(
            build_fix(accuracy_m=8.0, reported_speed_mps=10.0)
        )

    assert sample.speed_mph == 22
    assert sample.battery_pct == 80
    assert session.tier is AccuracyTier.MEDIUM
    assert session.current_sample == sample
    mock_publish.assert_awaited_once()
    assert mock_publish.await_args.kwargs["display_name"] == "Ana"
    await session.disable()


@pytest.mark.asyncio
async def test_process_fix_ignored_when_not_sharing() -> None:
    session = _session(FakePositionSource())
    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ) as mock_publish:
        assert await session.process_fix(build_fix()) is None
    mock_publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_rewards_recorded_at_most_every_thirty_seconds() -> None:
    clock = _Clock()
    session = _session(FakePositionSource(), clock)
    await session.enable()

    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ), patch(
        "tracking.session.record_observation", new_callable=AsyncMock
    ) as mock_record:
        await session.process_fix(build_fix(offset_ms=0, reported_speed_mps=20.0))
        clock.advance(10)
        await session.process_fix(
            build_fix(offset_ms=10_000, reported_speed_mps=20.0)
        )
        mock_record.assert_not_awaited()

        clock.advance(26)
        await session.process_fix(
            build_fix(offset_ms=36_000, reported_speed_mps=20.0)
        )

    mock_record.assert_awaited_once()
    user_id, speed, minutes = mock_record.await_args.args
    assert user_id == TEST_USER_ID
    assert speed == 45
    assert minutes == pytest.approx(0.6)
    assert mock_record.await_args.kwargs["now"] == clock.now
    await session.disable()


@pytest.mark.asyncio
async def test_fix_dropped_if_disabled_during_battery_read() -> None:
    session = _session(FakePositionSource())
    await session.enable()

    async def slow_level():
        await session.disable()
        return 0.5

    session._battery = BatteryEstimator(source=MagicMock(level=slow_level))
    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ) as mock_publish:
        assert await session.process_fix(build_fix()) is None

    mock_publish.assert_not_awaited()
    assert len(session.inference.movement_history) == 0


@pytest.mark.asyncio
async def test_fix_from_previous_subscription_dropped_after_reenable() -> None:
    session = _session(FakePositionSource())
    await session.enable()
    release = asyncio.Event()

    async def blocked_level():
        await release.wait()
        return 0.5

    session._battery = BatteryEstimator(source=MagicMock(level=blocked_level))
    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ) as mock_publish, patch(
        "tracking.session.record_observation", new_callable=AsyncMock
    ) as mock_record:
        pending = asyncio.create_task(
            session.process_fix(build_fix(reported_speed_mps=30.0))
        )
        await asyncio.sleep(0)
        await session.disable()
        await session.enable()
        release.set()

        assert await asyncio.wait_for(pending, timeout=1) is None

    mock_publish.assert_not_awaited()
    mock_record.assert_not_awaited()
    assert session.sharing is True
    assert len(session.inference.speed_history) == 0
    assert len(session.inference.movement_history) == 0
    await session.disable()


# ── Stream-driven behaviour ─────────────────────────────────

@pytest.mark.asyncio
async def test_stream_fixes_flow_through_pipeline() -> None:
    source = FakePositionSource()
    session = _session(source)
    published = asyncio.Event()

    async def on_publish(*args, **kwargs) -> bool:
        published.set()
        return True

    with patch("tracking.session.publish_motion_sample", side_effect=on_publish):
        await session.enable()
        source.items.put_nowait(
            FixError(kind=FixErrorKind.TIMEOUT, message="deadline exceeded")
        )
        source.items.put_nowait(build_fix(reported_speed_mps=5.0))
        await asyncio.wait_for(published.wait(), timeout=1)

    assert session.sharing is True
    assert session.current_sample.speed_mph == 11
    await session.disable()
    await session.wait_closed()


@pytest.mark.asyncio
async def test_permission_denied_on_stream_disables_sharing() -> None:
    source = FakePositionSource()
    session = _session(source)
    await session.enable()

    source.items.put_nowait(
        FixError(kind=FixErrorKind.PERMISSION_DENIED, message="revoked")
    )

    with pytest.raises(PermissionDenied):
        await asyncio.wait_for(session.wait_closed(), timeout=1)

    assert session.sharing is False
    assert session.tier is AccuracyTier.MEDIUM


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind", [FixErrorKind.UNAVAILABLE, FixErrorKind.TIMEOUT]
)
async def test_transient_fix_errors_keep_session_alive(kind: FixErrorKind) -> None:
    session = _session(FakePositionSource())
    await session.enable()

    stop = await session.handle_fix_error(FixError(kind=kind, message="no signal"))

    assert stop is False
    assert session.sharing is True
    await session.disable()


class _OneShotSource(FakePositionSource):
    """Source whose watch yields a single fix and then ends by itself."""

    async def watch(self, options):
        self.watch_calls.append(options)
        yield build_fix(reported_speed_mps=5.0)


@pytest.mark.asyncio
async def test_watch_ending_on_its_own_disables_sharing() -> None:
    session = _session(_OneShotSource())

    with patch(
        "tracking.session.publish_motion_sample", new_callable=AsyncMock
    ) as mock_publish:
        await session.enable()
        await asyncio.wait_for(session.wait_closed(), timeout=1)

    mock_publish.assert_awaited_once()
    assert session.sharing is False
    assert session.tier is AccuracyTier.MEDIUM
    assert len(session.inference.speed_history) == 0
