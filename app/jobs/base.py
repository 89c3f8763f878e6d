# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Shared instrumentation for background job ticks."""
import time
from contextlib import contextmanager

from app.core.logging import job_var
from app.metrics.prometheus import JOB_DURATION, JOB_RUNS


@contextmanager
def tracked(job: str):
    """Count the tick, time it, and tag every log line inside it with the job name."""
    token = job_var.set(job)
    start = time.time()
    try:
        yield
    except Exception:
        JOB_RUNS.labels(job=job, status="error").inc()
        raise
    else:
        JOB_RUNS.labels(job=job, status="ok").inc()
    finally:
        JOB_DURATION.labels(job=job).observe(time.time() - start)
        job_var.reset(token)
