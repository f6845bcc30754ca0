"""Tests for the connectivity monitor."""

from __future__ import annotations

import logging
import threading

import pytest

from punchlist.client.connectivity import ConnectivityMonitor


class TestReport:
    """Tests for transition reporting."""

    def test_starts_unknown(self) -> None:
        assert ConnectivityMonitor().is_online is None

    def test_listeners_called_on_transitions_only(self) -> None:
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        monitor.add_listener(seen.append)

        assert monitor.report(False) is True
        assert monitor.report(False) is False
        assert monitor.report(True) is True

        assert seen == [False, True]
        assert monitor.is_online is True

    def test_unsubscribe(self) -> None:
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        unsubscribe = monitor.add_listener(seen.append)

        unsubscribe()
        monitor.report(True)

        assert seen == []

    def test_failing_listener_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """A broken listener must not stop the others."""
        monitor = ConnectivityMonitor()
        seen: list[bool] = []

        def broken(online: bool) -> None:
            raise RuntimeError("boom")

        monitor.add_listener(broken)
        monitor.add_listener(seen.append)

        with caplog.at_level(logging.ERROR, logger="punchlist"):
            monitor.report(True)

        assert seen == [True]
        assert "listener" in caplog.text


class TestProbe:
    """Tests for probing."""

    def test_check_reports_probe_result(self) -> None:
        monitor = ConnectivityMonitor(probe=lambda: False)
        assert monitor.check() is False
        assert monitor.is_online is False

    def test_check_without_probe(self) -> None:
        with pytest.raises(RuntimeError):
            ConnectivityMonitor().check()

    def test_background_polling(self) -> None:
        reached = threading.Event()
        monitor = ConnectivityMonitor(probe=lambda: True, interval=0.01)
        monitor.add_listener(lambda online: reached.set())

        monitor.start()
        try:
            assert reached.wait(timeout=2.0)
        finally:
            monitor.stop()

        assert monitor.is_online is True

    def test_polling_survives_probe_error(self, caplog: pytest.LogCaptureFixture) -> None:
        reached = threading.Event()
        attempts: list[int] = []

        def flaky() -> bool:
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("dns lookup failed")
            return True

        monitor = ConnectivityMonitor(probe=flaky, interval=0.01)
        monitor.add_listener(lambda online: reached.set())

        with caplog.at_level(logging.ERROR, logger="punchlist"):
            monitor.start()
            try:
                assert reached.wait(timeout=2.0)
            finally:
                monitor.stop()

        assert monitor.is_online is True
        assert len(attempts) >= 2
        assert "Connectivity probe failed" in caplog.text
