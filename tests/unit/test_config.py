"""Unit tests for settings validation."""

import pytest
from pydantic import ValidationError

from playerlink.config import Settings


def test_log_level_is_normalised():
    assert Settings(log_level="debug").log_level == "DEBUG"


def test_invalid_log_level_rejected():
    with pytest.raises(ValidationError):
        Settings(log_level="chatty")


def test_poll_interval_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(tail_poll_interval=0)


def test_defaults():
    settings = Settings()
    assert settings.reward_amount == 1325
    assert settings.recent_ip_window_minutes == 10
    assert settings.sole_candidate_window_minutes == 30
    assert settings.be_log_prefix == "Be"
