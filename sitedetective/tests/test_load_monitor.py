"""Tests for load grading and throttling."""

from unittest.mock import patch

from sitedetective.daemon.config import ThrottleConfig
from sitedetective.daemon.load_monitor import LoadMonitor
from sitedetective.daemon.models import LoadLevel, LoadSnapshot

MB = 1024 * 1024


def snapshot(fraction=0.0, jobs=0, elapsed=0.0):
    return LoadSnapshot(memory_used=fraction * 100, memory_limit=100,
                        elapsed_time=elapsed, active_jobs=jobs)


class TestLoadLevel:

    def test_idle_is_low(self):
        assert LoadMonitor().load_level(snapshot(0.5)) == LoadLevel.LOW

    def test_memory_alone_is_medium(self):
        assert LoadMonitor().load_level(snapshot(1.0)) == LoadLevel.MEDIUM

    def test_memory_and_jobs_is_high(self):
        assert LoadMonitor().load_level(snapshot(1.0, jobs=5)) == LoadLevel.HIGH

    def test_everything_is_critical(self):
        assert LoadMonitor().load_level(snapshot(1.0, jobs=5, elapsed=30)) == LoadLevel.CRITICAL


class TestThrottle:

    def test_quick_settings(self):
        settings = LoadMonitor().throttle("quick", LoadLevel.CRITICAL)
        assert (settings.batch_size, settings.inter_batch_delay, settings.max_concurrent) == (20, 0, 5)

    def test_deep_delay_grows_with_load(self):
        monitor = LoadMonitor()
        delays = [monitor.throttle("deep", level).inter_batch_delay for level in LoadLevel]
        assert delays == [0, 1, 3, 5]
        assert monitor.throttle("deep", LoadLevel.LOW).batch_size == 10

    def test_should_throttle(self):
        monitor = LoadMonitor()
        assert monitor.should_throttle(snapshot(0.9))
        assert monitor.should_throttle(snapshot(jobs=4))
        assert monitor.should_throttle(snapshot(elapsed=26))
        assert not monitor.should_throttle(snapshot(0.5, jobs=1, elapsed=3))


class TestSnapshot:

    def test_configured_limit(self):
        monitor = LoadMonitor(active_jobs=lambda: 2, memory_limit_mb=100,
                              memory_used=lambda: 50 * MB)
        reading = monitor.snapshot(elapsed_time=1.5)
        assert reading.memory_fraction == 0.5
        assert reading.active_jobs == 2
        assert reading.elapsed_time == 1.5

    def test_system_memory_when_unconfigured(self):
        with patch("sitedetective.daemon.load_monitor.psutil") as psutil:
            psutil.virtual_memory.return_value.total = 1000 * MB
            psutil.Process.return_value.memory_info.return_value.rss = 100 * MB
            monitor = LoadMonitor()
            reading = monitor.snapshot()
        assert reading.memory_fraction == 0.1

    def test_from_config(self):
        config = ThrottleConfig(memory_limit_mb=256, deep_batch_size=4)
        monitor = LoadMonitor.from_config(config, active_jobs=lambda: 0)
        assert monitor.memory_limit_mb == 256
        assert monitor.throttle("deep", LoadLevel.LOW).batch_size == 4
