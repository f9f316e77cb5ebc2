from datetime import timedelta

import pytest

from support_sla.shared.infrastructure.clock import Clock, FrozenClock, SystemClock

from conftest import T0


def test_clock_is_abstract():
    with pytest.raises(TypeError):
        Clock()


def test_system_clock_is_utc():
    assert SystemClock().now().utcoffset() == timedelta(0)


def test_frozen_clock_moves_only_when_told():
    clock = FrozenClock(T0)
    assert clock.now() == T0
    assert clock.advance(minutes=5) == T0 + timedelta(minutes=5)
    clock.set(T0)
    assert clock.now() == T0
