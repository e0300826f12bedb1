"""Tests for Settings configuration model."""

from datetime import timedelta
from pathlib import Path

from wayfinder.config import Settings


class TestDefaults:
    def test_memory_retention(self):
        s = Settings()
        assert s.stm_ttl_days == 7
        assert s.stm_max_entries == 100

    def test_context_limits(self):
        s = Settings()
        assert s.context_limit == 5
        assert s.responder_context_limit == 3

    def test_database_path(self):
        assert Settings().database_path == Path("data/wayfinder.db")

    def test_responder_ids(self):
        s = Settings()
        assert s.default_responder_id == "scenic"
        assert s.history_responder_id == "history"

    def test_total_failure_is_not_fatal(self):
        assert Settings().fail_on_total_responder_failure is False

    def test_no_api_key_under_pytest(self):
        assert Settings().anthropic_api_key == ""


class TestGetStmTtl:
    def test_default_is_seven_days(self):
        assert Settings().get_stm_ttl() == timedelta(days=7)

    def test_custom_days(self):
        assert Settings(stm_ttl_days=1).get_stm_ttl() == timedelta(days=1)


class TestGetResponderTimeout:
    def test_zero_means_unbounded(self):
        assert Settings().get_responder_timeout() is None

    def test_negative_means_unbounded(self):
        assert Settings(responder_timeout_seconds=-1).get_responder_timeout() is None

    def test_positive_value(self):
        assert Settings(responder_timeout_seconds=2.5).get_responder_timeout() == 2.5
