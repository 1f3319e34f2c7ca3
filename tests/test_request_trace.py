"""Tests for request_trace.py - per-lookup pipeline tracing."""

import logging
import threading

import pytest

from property_errors import STAGE_PREFIXES
from request_trace import PIPELINE_STAGES, TraceContext, get_trace, traced_lookup


def _run_stages(ctx, *names):
    for name in names:
        with ctx.stage(name):
            pass


class TestStages:
    def test_pipeline_stages_follow_error_prefixes(self):
        assert PIPELINE_STAGES == ("validation", "geocoding", "details", "schools")
        assert set(PIPELINE_STAGES) == set(STAGE_PREFIXES)

    def test_unknown_stage_rejected(self):
        ctx = TraceContext(trace_id="abc")
        with pytest.raises(ValueError, match="unknown pipeline stage"):
            with ctx.stage("scoring"):
                pass
        assert ctx.outcomes == []

    def test_api_call_attributed_to_current_stage(self):
        ctx = TraceContext(trace_id="abc")
        with ctx.stage("geocoding"):
            ctx.record_api_call("nominatim", "search", elapsed_ms=12, status_code=200)
        ctx.record_api_call("overpass", "nearby_schools", elapsed_ms=30, status_code=200)

        assert ctx.api_calls[0].stage == "geocoding"
        assert ctx.api_calls[1].stage == ""
        assert ctx.calls_in("geocoding") == 1

    def test_stage_error_recorded_and_reraised(self):
        ctx = TraceContext(trace_id="abc")
        with pytest.raises(RuntimeError):
            with ctx.stage("schools"):
                raise RuntimeError("Overpass HTTP 504")

        assert ctx.outcomes[0].stage == "schools"
        assert ctx.outcomes[0].error == "RuntimeError: Overpass HTTP 504"
        assert ctx.current_stage == ""

    def test_stage_log_line(self, caplog):
        ctx = TraceContext(trace_id="abc")
        with caplog.at_level(logging.INFO, logger="request_trace"):
            with ctx.stage("details"):
                ctx.record_api_call("opencage", "geocode", elapsed_ms=5, status_code=200)

        assert "[stage] trace=abc details OK" in caplog.text
        assert "api_calls=1" in caplog.text


class TestSummary:
    def test_empty(self):
        summary = TraceContext(trace_id="e").summary_dict()
        assert summary["outcome"] == "empty"
        assert summary["failed_stage"] is None
        assert summary["stage_ms"] == {}

    def test_incomplete(self):
        ctx = TraceContext(trace_id="i")
        _run_stages(ctx, "validation", "geocoding")
        assert ctx.summary_dict()["outcome"] == "incomplete"

    def test_success(self):
        ctx = TraceContext(trace_id="o")
        _run_stages(ctx, *PIPELINE_STAGES)
        summary = ctx.summary_dict()
        assert summary["outcome"] == "success"
        assert list(summary["stage_ms"]) == list(PIPELINE_STAGES)

    def test_failed_stage_named(self):
        ctx = TraceContext(trace_id="f")
        _run_stages(ctx, "validation", "geocoding")
        with pytest.raises(LookupError):
            with ctx.stage("details"):
                ctx.record_api_call("opencage", "geocode", elapsed_ms=40, status_code=401,
                                    provider_status="http_error")
                raise LookupError("opencage HTTP 401")

        summary = ctx.summary_dict()
        assert summary["outcome"] == "failed"
        assert summary["failed_stage"] == "details"
        assert summary["total_api_calls"] == 1

    def test_log_summary(self, caplog):
        ctx = TraceContext(trace_id="s")
        _run_stages(ctx, "validation")
        with caplog.at_level(logging.INFO, logger="request_trace"):
            ctx.log_summary()
        assert "[trace-summary] trace=s" in caplog.text
        assert "outcome=incomplete failed_stage=-" in caplog.text
        assert "validation=" in caplog.text


class TestTracedLookup:
    def test_active_only_inside_block(self):
        assert get_trace() is None
        with traced_lookup("t") as ctx:
            assert get_trace() is ctx
        assert get_trace() is None

    def test_deactivated_and_summarised_on_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="request_trace"):
            with pytest.raises(KeyError):
                with traced_lookup("boom"):
                    raise KeyError("x")
        assert get_trace() is None
        assert "[trace-summary] trace=boom" in caplog.text

    def test_nested_lookup_restores_outer(self):
        with traced_lookup("outer") as outer:
            with traced_lookup("inner"):
                pass
            assert get_trace() is outer

    def test_not_visible_from_other_thread(self):
        seen = []
        with traced_lookup("main"):
            t = threading.Thread(target=lambda: seen.append(get_trace()))
            t.start()
            t.join()
        assert seen == [None]
