"""
Request-scoped tracing for property info lookups.

A lookup runs the fixed pipeline in PIPELINE_STAGES.  While a trace is
active on the current thread, each stage's duration and error and each
outbound API call are recorded, and one summary line naming the failing
stage (if any) is logged when the lookup finishes.

Usage:
    from request_trace import get_trace, traced_lookup

    # Around a lookup (app.py, the CLI):
    with traced_lookup(request_id) as trace:
        ...

    # In the pipeline:
    with trace.stage("geocoding"):
        ...

    # In API clients:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from property_errors import STAGE_PREFIXES

logger = logging.getLogger(__name__)

# validation -> geocoding -> details -> schools
PIPELINE_STAGES = tuple(STAGE_PREFIXES)


@dataclass
class APICallRecord:
    """One outbound HTTP call, attributed to the stage that made it."""
    service: str          # "nominatim" | "opencage" | "overpass"
    endpoint: str         # "search", "geocode", "nearby_schools"
    elapsed_ms: int
    status_code: int      # 0 when no response arrived
    provider_status: str = ""   # "timeout", "http_error", "parse_error", ...
    stage: str = ""


@dataclass
class StageOutcome:
    stage: str
    elapsed_ms: int = 0
    error: str = ""       # "<ExceptionClass>: <message>", empty on success


@dataclass
class TraceContext:
    """Timing and outcome of one lookup through the pipeline."""
    trace_id: str
    started: float = field(default_factory=time.monotonic)
    outcomes: List[StageOutcome] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    current_stage: str = ""

    @contextmanager
    def stage(self, name: str) -> Iterator[StageOutcome]:
        """Time one pipeline stage; an exception is recorded and re-raised."""
        if name not in PIPELINE_STAGES:
            raise ValueError(f"unknown pipeline stage {name!r}")
        outcome = StageOutcome(stage=name)
        self.current_stage = name
        t0 = time.monotonic()
        try:
            yield outcome
        except Exception as exc:
            outcome.error = f"{type(exc).__name__}: {str(exc)[:200]}"
            raise
        finally:
            outcome.elapsed_ms = int((time.monotonic() - t0) * 1000)
            self.current_stage = ""
            self.outcomes.append(outcome)
            logger.info(
                "  [stage] trace=%s %s %s %dms api_calls=%d%s",
                self.trace_id,
                name,
                "ERR" if outcome.error else "OK",
                outcome.elapsed_ms,
                self.calls_in(name),
                f" err={outcome.error}" if outcome.error else "",
            )

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        self.api_calls.append(APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self.current_stage,
        ))
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            self.current_stage or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def calls_in(self, stage: str) -> int:
        return sum(1 for c in self.api_calls if c.stage == stage)

    @property
    def failed_stage(self) -> Optional[str]:
        """The stage that aborted the lookup, or None."""
        for outcome in self.outcomes:
            if outcome.error:
                return outcome.stage
        return None

    def summary_dict(self) -> Dict[str, Any]:
        """Per-stage timings plus the failing stage, if any.

        outcome is "failed" when a stage raised, "success" when every
        pipeline stage ran, "incomplete" when only some ran and "empty"
        when none did.
        """
        failed = self.failed_stage
        ran = {o.stage for o in self.outcomes}
        if failed:
            outcome = "failed"
        elif ran >= set(PIPELINE_STAGES):
            outcome = "success"
        elif ran:
            outcome = "incomplete"
        else:
            outcome = "empty"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.monotonic() - self.started) * 1000),
            "total_api_calls": len(self.api_calls),
            "stage_ms": {o.stage: o.elapsed_ms for o in self.outcomes},
            "failed_stage": failed,
            "outcome": outcome,
        }

    def log_summary(self):
        s = self.summary_dict()
        timings = " ".join(f"{name}={ms}ms" for name, ms in s["stage_ms"].items())
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d outcome=%s failed_stage=%s %s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["outcome"],
            s["failed_stage"] or "-",
            timings,
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """The trace active on this thread, or None."""
    return getattr(_trace_local, "ctx", None)


@contextmanager
def traced_lookup(trace_id: str) -> Iterator[TraceContext]:
    """Activate a fresh trace on this thread for one lookup.

    The summary is logged and the trace deactivated on exit, whether or
    not the lookup raised.
    """
    ctx = TraceContext(trace_id=trace_id)
    previous = get_trace()
    _trace_local.ctx = ctx
    try:
        yield ctx
    finally:
        ctx.log_summary()
        _trace_local.ctx = previous
