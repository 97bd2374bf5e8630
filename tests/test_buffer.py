import pytest

from planner.services.routing.buffer import default_buffer, pad, pad_service
from planner.services.routing.models import ArrivalBufferConfig


def test_pad_percent_and_fixed():
    assert pad(60, ArrivalBufferConfig(percent=10.0)) == pytest.approx(66.0)
    assert pad(60, ArrivalBufferConfig(percent=10.0, fixed_minutes=5.0)) == pytest.approx(71.0)
    assert pad(0, ArrivalBufferConfig(percent=50.0, fixed_minutes=3.0)) == pytest.approx(3.0)


def test_pad_is_not_clamped():
    assert pad(10, ArrivalBufferConfig(percent=200.0, fixed_minutes=0.0)) == pytest.approx(30.0)


def test_service_padding_is_opt_in():
    config = ArrivalBufferConfig(percent=20.0)

    assert pad_service(30, config) == 30
    assert pad_service(30, ArrivalBufferConfig(percent=20.0, apply_to_service=True)) == pytest.approx(36.0)


def test_default_buffer_follows_settings(monkeypatch):
    from planner.config import settings

    monkeypatch.setattr(settings, "default_buffer_percent", 25.0)
    monkeypatch.setattr(settings, "default_buffer_fixed_minutes", 2.0)

    config = default_buffer()
    assert config.percent == 25.0
    assert config.fixed_minutes == 2.0
    assert not config.apply_to_service
