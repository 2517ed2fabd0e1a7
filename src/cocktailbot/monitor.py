"""
Completion monitor
==================

One MonitorJob per triggered drink:

    ARMED --(drink_ready seen | safety timeout)--> RESETTING --> DONE

While ARMED the job polls the ready flag on a fixed interval. The first
trigger condition wins and starts a single reset sweep that writes False to
every address in ``RegisterMap.reset_addresses``. The robot only exposes
"done" as one shared bit, so the sweep clears everything rather than the
coils of one recipe.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .BartenderBase import BartenderBase
from .errors import BartenderError
from .register_map import RegisterMap
from .scheduler import Scheduler, TaskHandle

log = logging.getLogger("cocktailbot.monitor")


class JobState(Enum):
    ARMED = "armed"
    RESETTING = "resetting"
    DONE = "done"


@dataclass
class MonitorJob:
    job_id: str
    trigger_address: int
    label: str
    started_at: float
    state: JobState = JobState.ARMED
    is_resetting: bool = False
    reset_reason: Optional[str] = None
    polls: int = 0
    reset_failures: List[int] = field(default_factory=list)
    handle: Optional[TaskHandle] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CompletionMonitor:
    """
    Watches triggered jobs and clears the trigger coils once they finish.

    Args:
        transport (BartenderBase): Shared robot transport.
        register_map (RegisterMap): Ready flag, reset set and fallback chains.
        scheduler (Scheduler): Timer source.
        poll_interval (float): Seconds between ready-flag polls (default 2).
        safety_timeout (float): Seconds after which a job is reset even
            without a ready flag (default 120).
        write_delay (float): Pause between reset writes (default 0.1).
        on_done (Optional[Callable[[MonitorJob], None]]): Called after a job
            reaches DONE.
    """

    def __init__(self, transport: BartenderBase, register_map: RegisterMap, scheduler: Scheduler,
                 poll_interval: float = 2.0, safety_timeout: float = 120.0, write_delay: float = 0.1,
                 on_done: Optional[Callable[[MonitorJob], None]] = None) -> None:
        self.transport = transport
        self.register_map = register_map
        self.scheduler = scheduler
        self.poll_interval = poll_interval
        self.safety_timeout = safety_timeout
        self.write_delay = write_delay
        self.on_done = on_done
        self._jobs: Dict[str, MonitorJob] = {}
        self._jobs_lock = threading.Lock()
        self._reset_lock = threading.Lock()

    @property
    def active_jobs(self) -> List[MonitorJob]:
        with self._jobs_lock:
            return list(self._jobs.values())

    def has_active_job(self) -> bool:
        with self._jobs_lock:
            return bool(self._jobs)

    def get(self, job_id: str) -> Optional[MonitorJob]:
        with self._jobs_lock:
            return self._jobs.get(job_id)

    def arm(self, trigger_address: int, label: str) -> MonitorJob:
        """Start watching a freshly triggered job."""
        job = MonitorJob(
            job_id=uuid.uuid4().hex[:12],
            trigger_address=trigger_address,
            label=label,
            started_at=self.scheduler.now(),
        )
        with self._jobs_lock:
            self._jobs[job.job_id] = job
        job.handle = self.scheduler.call_every(self.poll_interval, lambda: self._tick(job),
                                               name=f"monitor-{job.job_id}")
        log.info(f"Monitoring {label} (job {job.job_id}, trigger {trigger_address}, "
                 f"poll {self.poll_interval}s, timeout {self.safety_timeout}s)")
        return job

    def cancel_all(self) -> None:
        """Stop every job without resetting coils (shutdown)."""
        with self._jobs_lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            if job.handle is not None:
                job.handle.cancel()
            job.state = JobState.DONE
            log.info(f"Monitoring of {job.label} (job {job.job_id}) cancelled")

    # ------------------ State machine ------------------
    def _tick(self, job: MonitorJob) -> None:
        # A tick that finds the previous one still running is skipped
        if not job._lock.acquire(blocking=False):
            log.debug(f"Job {job.job_id}: previous poll still running, skipping")
            return
        try:
            if job.is_resetting or job.state is not JobState.ARMED:
                return
            job.polls += 1
            elapsed = self.scheduler.now() - job.started_at
            if elapsed >= self.safety_timeout:
                log.warning(f"{job.label} (job {job.job_id}): no ready flag after {elapsed:.0f}s, resetting anyway")
                reason = "timeout"
            else:
                try:
                    ready = self.transport.read_bits_with_fallback(
                        self.register_map.ready_address, 1, self.register_map.read_order)[0]
                except BartenderError as e:
                    log.warning(f"{job.label} (job {job.job_id}): ready poll failed, retrying next tick: {e}")
                    return
                if not ready:
                    return
                log.info(f"{job.label} (job {job.job_id}): drink ready after {elapsed:.1f}s")
                reason = "ready"
            job.is_resetting = True
            job.reset_reason = reason
            job.state = JobState.RESETTING
        finally:
            job._lock.release()

        self._reset(job)

    def _reset(self, job: MonitorJob) -> None:
        addresses = self.register_map.reset_addresses
        with self._reset_lock:
            log.info(f"Resetting {len(addresses)} trigger/ingredient coils for job {job.job_id} ({job.reset_reason})")
            for i, address in enumerate(addresses):
                if i:
                    self.scheduler.sleep(self.write_delay)
                try:
                    self.transport.write_bit_with_fallback(address, False, self.register_map.write_order)
                except BartenderError as e:
                    log.warning(f"Job {job.job_id}: failed to reset address {address}: {e}")
                    job.reset_failures.append(address)

        if job.handle is not None:
            job.handle.cancel()
        job.state = JobState.DONE
        with self._jobs_lock:
            self._jobs.pop(job.job_id, None)
        if job.reset_failures:
            log.warning(f"Job {job.job_id} done; {len(job.reset_failures)} address(es) not reset: {job.reset_failures}")
        else:
            log.info(f"Job {job.job_id} done; all coils reset")

        if self.on_done is not None:
            self.on_done(job)
