"""Tests for snail_ibm.perf — per-component timing."""

from snail_ibm.perf import PerfMonitor


class TestPerfMonitor:
    def test_disabled_records_nothing(self):
        perf = PerfMonitor(enabled=False)
        with perf.track("deb"):
            pass
        assert perf.get_stats() == {}

    def test_tracks_calls(self):
        perf = PerfMonitor(enabled=True)
        perf.start()
        for _ in range(3):
            with perf.track("deb"):
                pass
        with perf.track("births"):
            pass
        perf.stop()
        stats = perf.get_stats()
        assert stats["deb"].call_count == 3
        assert stats["births"].call_count == 1
        assert stats["deb"].max_time >= 0.0

    def test_summary_and_report(self):
        perf = PerfMonitor(enabled=True)
        perf.start()
        with perf.track("infection"):
            sum(range(1000))
        perf.stop()
        summary = perf.summary()
        assert summary["infection"]["calls"] == 1
        assert "_total_s" in summary
        report = perf.report()
        assert "infection" in report
        assert "TOTAL" in report

    def test_exception_still_recorded(self):
        perf = PerfMonitor(enabled=True)
        try:
            with perf.track("deb"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert perf.get_stats()["deb"].call_count == 1
