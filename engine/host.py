"""Background execution host for backtests.

Each submitted request runs on its own daemon thread. The caller talks to a
job only through messages: progress, then exactly one terminal message
(result, error or cancelled). The only object shared with the running engine
is the job's ``CancellationToken``.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from config.schema import BacktestConfig, MonteCarloConfig
from engine.backtest_engine import BacktestEngine, BacktestResult
from engine.bars import BarArray
from engine.errors import BacktestCancelled, InputValidationError, InvariantViolationError
from strategies.graph import StrategyGraph
from validation.monte_carlo import MonteCarloResult, run_monte_carlo

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag polled by the engine."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BacktestRequest:
    bars: BarArray
    graph: Union[StrategyGraph, Dict[str, Any]]
    config: Union[BacktestConfig, Dict[str, Any], None] = None
    monte_carlo: Optional[MonteCarloConfig] = None


@dataclass(frozen=True)
class ProgressMessage:
    job_id: str
    percent: int
    bars_processed: int
    total_bars: int


@dataclass(frozen=True)
class ResultMessage:
    job_id: str
    result: BacktestResult
    monte_carlo: Optional[MonteCarloResult] = None


@dataclass(frozen=True)
class ErrorMessage:
    """Terminal failure.

    ``kind`` is "validation" for rejected input, "invariant" for a corrupted
    run and "fatal" for anything else.
    """
    job_id: str
    kind: str
    message: str
    issues: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CancelledMessage:
    job_id: str
    bars_processed: int = 0


TERMINAL_MESSAGES = (ResultMessage, ErrorMessage, CancelledMessage)


@dataclass
class _Job:
    id: str
    request: BacktestRequest
    token: CancellationToken
    created_at: float
    channel: queue.Queue = field(default_factory=queue.Queue)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    outcome: Optional[object] = None
    done: threading.Event = field(default_factory=threading.Event)


class BacktestHost:
    """Runs backtest requests off the caller's thread.

    Example:
        host = BacktestHost()
        job_id = host.submit(BacktestRequest(bars, graph))
        for message in host.messages(job_id):
            ...
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, _Job] = {}

    def submit(self, request: BacktestRequest) -> str:
        job = _Job(
            id=str(uuid.uuid4()),
            request=request,
            token=CancellationToken(),
            created_at=time.time(),
        )
        with self._lock:
            self._jobs[job.id] = job
        t = threading.Thread(target=self._run_job, args=(job.id,), daemon=True)
        t.start()
        return job.id

    def _get(self, job_id: str) -> _Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def cancel(self, job_id: str) -> None:
        """Request cancellation; the job ends with a CancelledMessage."""
        self._get(job_id).token.cancel()

    def messages(self, job_id: str, timeout: Optional[float] = None) -> Iterator[object]:
        """
        Yield the job's messages in order, ending with its terminal message.

        Raises:
            queue.Empty: no message arrived within ``timeout`` seconds
        """
        job = self._get(job_id)
        while True:
            message = job.channel.get(timeout=timeout)
            yield message
            if isinstance(message, TERMINAL_MESSAGES):
                return

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[object]:
        """Block until the job ends; return its terminal message (None on timeout)."""
        job = self._get(job_id)
        if not job.done.wait(timeout):
            return None
        return job.outcome

    def forget(self, job_id: str) -> Optional[object]:
        """
        Drop a finished job and its request data from the host.

        Returns:
            The job's terminal message

        Raises:
            KeyError: unknown job id
            ValueError: the job is still running
        """
        job = self._get(job_id)
        if not job.done.is_set():
            raise ValueError(f"Job {job_id} is still running")
        with self._lock:
            self._jobs.pop(job_id, None)
        return job.outcome

    def _finish(self, job: _Job, message: object) -> None:
        job.outcome = message
        job.finished_at = time.time()
        job.channel.put(message)
        job.done.set()

    def _run_job(self, job_id: str) -> None:
        job = self._get(job_id)
        job.started_at = time.time()
        request = job.request

        def on_progress(percent: int, processed: int, total: int) -> None:
            job.channel.put(ProgressMessage(job.id, percent, processed, total))

        try:
            if job.token.is_cancelled():
                raise BacktestCancelled(0)
            result = BacktestEngine().run(
                request.bars,
                request.graph,
                request.config,
                progress_callback=on_progress,
                cancel_token=job.token,
            )
            mc_result = None
            if request.monte_carlo is not None:
                if job.token.is_cancelled():
                    raise BacktestCancelled(result.bars_processed)
                mc_result = run_monte_carlo(result.profits(), result.initial_balance, request.monte_carlo)
            if job.token.is_cancelled():
                raise BacktestCancelled(result.bars_processed)
            self._finish(job, ResultMessage(job.id, result, mc_result))
        except BacktestCancelled as e:
            logger.info(f"Job {job.id} cancelled after {e.bars_processed} bars")
            self._finish(job, CancelledMessage(job.id, e.bars_processed))
        except InputValidationError as e:
            logger.warning(f"Job {job.id} rejected: {e}")
            self._finish(job, ErrorMessage(job.id, "validation", str(e), [str(i) for i in e.issues]))
        except ValidationError as e:
            logger.warning(f"Job {job.id} rejected: {e}")
            issues = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            self._finish(job, ErrorMessage(job.id, "validation", "invalid configuration", issues))
        except InvariantViolationError as e:
            logger.error(f"Job {job.id} aborted: {e}")
            self._finish(job, ErrorMessage(job.id, "invariant", str(e)))
        except Exception as e:
            logger.exception(f"Job {job.id} failed")
            self._finish(job, ErrorMessage(job.id, "fatal", f"{type(e).__name__}: {e}"))
