"""Unit tests for SourceManager."""

from relay_oracle.src.SourceManager import SourceManager, SourceStatus


class FakeClock:
    """Settable clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSourceManagerInit:
    """Test SourceManager initialization."""

    def test_init_with_sources(self) -> None:
        """Sources should be tracked from init."""
        manager = SourceManager(["a", "b", "c"])
        assert manager.sources == ["a", "b", "c"]
        assert len(manager.get_all_status()) == 3

    def test_init_empty_sources(self) -> None:
        """Empty sources list should work."""
        manager = SourceManager([])
        assert manager.sources == []
        assert manager.get_active_sources() == []

    def test_custom_backoff_values(self) -> None:
        """Custom backoff values should be stored."""
        manager = SourceManager(
            ["a"],
            base_backoff_seconds=10.0,
            max_backoff_seconds=60.0,
        )
        assert manager.base_backoff_seconds == 10.0
        assert manager.max_backoff_seconds == 60.0

    def test_initial_status(self) -> None:
        """Initial status should have zero failures."""
        manager = SourceManager(["a"])
        status = manager.get_source_status("a")

        assert status is not None
        assert status.consecutive_failures == 0
        assert status.backoff_until == 0.0
        assert status.total_failures == 0
        assert status.total_successes == 0
        assert status.last_success_at is None


class TestSourceManagerFailures:
    """Test failure recording and backoff."""

    def test_first_failure_backoff(self) -> None:
        """First failure should use base backoff."""
        manager = SourceManager(["a"], base_backoff_seconds=5.0)
        backoff = manager.record_failure("a")

        assert backoff == 5.0
        status = manager.get_source_status("a")
        assert status.consecutive_failures == 1
        assert status.total_failures == 1

    def test_exponential_backoff(self) -> None:
        """Backoff should double with each consecutive failure."""
        manager = SourceManager(["a"], base_backoff_seconds=5.0)

        assert manager.record_failure("a") == 5.0
        assert manager.record_failure("a") == 10.0
        assert manager.record_failure("a") == 20.0
        assert manager.record_failure("a") == 40.0

    def test_max_backoff_cap(self) -> None:
        """Backoff should be capped at max_backoff_seconds."""
        manager = SourceManager(
            ["a"],
            base_backoff_seconds=100.0,
            max_backoff_seconds=150.0,
        )

        assert manager.record_failure("a") == 100.0
        # Would be 200, but capped at 150
        assert manager.record_failure("a") == 150.0
        assert manager.record_failure("a") == 150.0

    def test_failure_unknown_source(self) -> None:
        """Recording failure for unknown source should create it."""
        manager = SourceManager(["a"])
        manager.record_failure("unknown")

        status = manager.get_source_status("unknown")
        assert status is not None
        assert status.consecutive_failures == 1
        assert "unknown" in manager.sources


class TestSourceManagerSuccess:
    """Test success recording."""

    def test_success_resets_consecutive_failures(self) -> None:
        """Success should reset consecutive failures."""
        manager = SourceManager(["a"])

        manager.record_failure("a")
        manager.record_failure("a")
        assert manager.get_source_status("a").consecutive_failures == 2

        manager.record_success("a")
        status = manager.get_source_status("a")

        assert status.consecutive_failures == 0
        assert status.backoff_until == 0.0

    def test_success_tracks_total_and_time(self) -> None:
        """Success should increment total_successes and stamp the time."""
        clock = FakeClock(500.0)
        manager = SourceManager(["a"], clock=clock)

        manager.record_success("a")
        clock.now = 600.0
        manager.record_success("a")

        status = manager.get_source_status("a")
        assert status.total_successes == 2
        assert status.last_success_at == 600.0

    def test_success_preserves_total_failures(self) -> None:
        """Success should not reset total_failures."""
        manager = SourceManager(["a"])

        manager.record_failure("a")
        manager.record_failure("a")
        manager.record_success("a")
        manager.record_failure("a")

        status = manager.get_source_status("a")
        assert status.total_failures == 3
        assert status.consecutive_failures == 1


class TestSourceManagerActiveSources:
    """Test active source filtering."""

    def test_all_active_initially(self) -> None:
        """All sources should be active initially."""
        manager = SourceManager(["a", "b", "c"])
        assert manager.get_active_sources() == ["a", "b", "c"]

    def test_failed_source_inactive(self) -> None:
        """Failed source should be inactive during backoff."""
        manager = SourceManager(["a", "b"], base_backoff_seconds=60.0)

        manager.record_failure("a")
        active = manager.get_active_sources()

        assert "a" not in active
        assert "b" in active

    def test_source_active_after_backoff(self) -> None:
        """Source should be active after backoff period."""
        clock = FakeClock(1000.0)
        manager = SourceManager(["a"], base_backoff_seconds=10.0, clock=clock)

        manager.record_failure("a")
        # backoff_until = 1000 + 10 = 1010

        clock.now = 1005.0
        assert "a" not in manager.get_active_sources()

        clock.now = 1010.0  # Exactly at backoff_until
        assert "a" in manager.get_active_sources()

        clock.now = 1015.0
        assert "a" in manager.get_active_sources()


class TestSourceManagerFailureRate:
    """Test the rolling failure rate."""

    def test_no_outcomes(self) -> None:
        """No outcomes means a zero failure rate."""
        manager = SourceManager(["a"])
        assert manager.failure_rate("a") == 0.0
        assert manager.failure_rate("unknown") == 0.0

    def test_mixed_outcomes(self) -> None:
        """Rate is failures over recent outcomes."""
        manager = SourceManager(["a"])
        manager.record_failure("a")
        manager.record_success("a")
        manager.record_success("a")
        manager.record_failure("a")
        assert manager.failure_rate("a") == 0.5

    def test_window_limits_history(self) -> None:
        """Only the last ``window`` outcomes count."""
        manager = SourceManager(["a"], window=3)
        for _ in range(5):
            manager.record_failure("a")
        for _ in range(3):
            manager.record_success("a")
        assert manager.failure_rate("a") == 0.0
        assert len(manager.get_source_status("a").recent) == 3


class TestSourceManagerHelpers:
    """Test helper methods."""

    def test_get_backoff_remaining(self) -> None:
        """get_backoff_remaining should return correct time."""
        clock = FakeClock(1000.0)
        manager = SourceManager(["a"], base_backoff_seconds=30.0, clock=clock)

        manager.record_failure("a")
        # backoff_until = 1030

        clock.now = 1010.0
        assert manager.get_backoff_remaining("a") == 20.0

        clock.now = 1030.0
        assert manager.get_backoff_remaining("a") == 0.0

        clock.now = 1050.0
        assert manager.get_backoff_remaining("a") == 0.0

    def test_get_backoff_remaining_unknown(self) -> None:
        """get_backoff_remaining for unknown source should return 0."""
        manager = SourceManager(["a"])
        assert manager.get_backoff_remaining("unknown") == 0.0

    def test_get_source_status_unknown(self) -> None:
        """get_source_status for unknown source should return None."""
        manager = SourceManager(["a"])
        assert manager.get_source_status("unknown") is None

    def test_get_all_status(self) -> None:
        """get_all_status should return copy of all statuses."""
        manager = SourceManager(["a", "b"])
        manager.record_failure("a")
        manager.record_success("b")

        all_status = manager.get_all_status()
        assert len(all_status) == 2
        assert all_status["a"].consecutive_failures == 1
        assert all_status["b"].total_successes == 1

        # Should be a copy
        all_status["a"] = SourceStatus()
        assert manager.get_source_status("a").consecutive_failures == 1
