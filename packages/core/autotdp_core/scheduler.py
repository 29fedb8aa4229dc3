"""Periodic watchdog jobs driven from a shared thread pool."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable

logger = logging.getLogger("autotdp.scheduler")


class PeriodicJob:
    """One watchdog: a callback, its interval and its mutual-exclusion domain.

    ``run_once`` never blocks: if the domain lock is held (the previous tick is
    still running, or another caller owns the domain) the tick is dropped.
    Exceptions stop at the tick boundary so the scheduler keeps running.

    ``request_stop`` only raises ``pending_stop``; the callback decides when
    its hardware has converged and calls :meth:`stop` itself.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], None],
        interval_ms: int,
        lock: threading.Lock | None = None,
    ) -> None:
        self.name = name
        self.callback = callback
        self._interval_ms = max(1, int(interval_ms))
        self.lock = lock or threading.Lock()
        self.running = False
        self.pending_stop = False
        self.next_due: float | None = None
        self.ticks = 0
        self.skipped = 0
        self.errors = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: int) -> None:
        value = max(1, int(value))
        if value != self._interval_ms:
            logger.info(f"{self.name} interval {self._interval_ms} -> {value} ms", extra={"event": "job_interval"})
            self._interval_ms = value

    def start(self) -> None:
        self.pending_stop = False
        if self.running:
            return
        self.running = True
        self.next_due = None
        logger.info(f"{self.name} started", extra={"event": "job_started"})

    def request_stop(self) -> None:
        if self.running:
            self.pending_stop = True
            logger.info(f"{self.name} stop requested", extra={"event": "job_stop_requested"})

    def stop(self) -> None:
        was_running = self.running
        self.running = False
        self.pending_stop = False
        if was_running:
            logger.info(f"{self.name} stopped", extra={"event": "job_stopped"})

    def run_once(self) -> bool:
        """Run one tick if the domain is free. Returns False when skipped."""
        if not self.lock.acquire(blocking=False):
            self.skipped += 1
            logger.debug(f"{self.name} tick skipped, domain busy", extra={"event": "job_skipped"})
            return False
        try:
            self.callback()
        except Exception:
            self.errors += 1
            logger.exception(f"{self.name} tick failed", extra={"event": "job_error"})
        finally:
            self.lock.release()
        self.ticks += 1
        return True

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_ms": self._interval_ms,
            "running": self.running,
            "pending_stop": self.pending_stop,
            "ticks": self.ticks,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class WatchdogScheduler:
    def __init__(self, jobs: Iterable[PeriodicJob], max_workers: int | None = None, resolution_ms: int = 20) -> None:
        self._jobs = {job.name: job for job in jobs}
        self._max_workers = max_workers or max(2, len(self._jobs))
        self._resolution = resolution_ms / 1000.0
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def jobs(self) -> list[PeriodicJob]:
        return list(self._jobs.values())

    def job(self, name: str) -> PeriodicJob:
        return self._jobs[name]

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="autotdp-job")
        self._thread = threading.Thread(target=self._run, name="autotdp-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler started", extra={"event": "scheduler_started"})

    def stop(self, wait: bool = True) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("scheduler stopped", extra={"event": "scheduler_stopped"})

    def dispatch_due(self, now: float, submit: Callable[[Callable[[], bool]], Any] | None = None) -> list[str]:
        """Hand every due job's tick to ``submit`` and book its next due time."""
        if submit is None:
            if self._executor is None:
                raise RuntimeError("scheduler is not started")
            submit = self._executor.submit
        fired: list[str] = []
        for job in self._jobs.values():
            if not job.running:
                continue
            if job.next_due is None or now >= job.next_due:
                job.next_due = now + job.interval_ms / 1000.0
                submit(job.run_once)
                fired.append(job.name)
        return fired

    def _next_wait(self, now: float) -> float:
        wait = self._resolution
        for job in self._jobs.values():
            if job.running and job.next_due is not None:
                wait = min(wait, job.next_due - now)
        return max(wait, 0.001)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            now = time.monotonic()
            try:
                self.dispatch_due(now)
            except RuntimeError:
                # Executor shut down under us during stop().
                break
            if self._stop_event.wait(self._next_wait(now)):
                break
