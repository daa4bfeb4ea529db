"""
Tests for the headless profiling harness.
"""

import io

from rotaterm_bench import headless_scheduler, main, run_benchmark, run_raw


class TestRunBenchmark:
    def test_profile_report_is_one_table(self, capsys):
        run_benchmark(5, term_rows=10, term_cols=20, sort_key="tottime", top=7)
        out = capsys.readouterr().out
        assert "5 frames in" in out
        assert out.count("=== Top 7 by tottime ===") == 1
        assert out.count("Ordered by:") == 1

    def test_sort_and_top_flags_reach_the_report(self, capsys):
        main(["-n", "3", "--rows", "8", "--cols", "16", "--sort", "ncalls", "--top", "4"])
        out = capsys.readouterr().out
        assert "=== Top 4 by ncalls ===" in out

    def test_line_timing_prints_stage_table(self, capsys):
        run_benchmark(3, term_rows=8, term_cols=16, line_timing=True)
        out = capsys.readouterr().out
        assert "scene+raster" in out
        assert "encode+paint" in out
        assert "Ordered by:" not in out


class TestHeadless:
    def test_scheduler_paints_every_row(self):
        scheduler = headless_scheduler(6, 12)
        scheduler.tick()
        window = scheduler.display.window
        assert window.refreshes == 1
        assert all((row, 0) in window.written for row in range(6))


def test_raw_mode_writes_one_frame_per_iteration():
    out = io.BytesIO()
    run_raw(4, out, 3, 5)
    assert out.getvalue().count(b"\x1b[H") == 4
