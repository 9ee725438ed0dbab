"""Polling state machine for worker-owned transcode jobs.

States move ``waiting -> active -> completed | failed``. Each tracked job owns
exactly one deferred poll at a time; the next poll is scheduled only after the
previous one resolved. Transport failures while polling are absorbed into a
longer backoff interval and never reach ``on_error``; only a job the worker
reports as failed does. Terminal states are sinks: the job leaves tracking
before its callback runs, and nothing is polled for it afterwards.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from gpu_transcoder.core.config import settings
from gpu_transcoder.core.logging import correlation_scope, log_error, log_info, log_warning
from gpu_transcoder.core.metrics import JOB_OUTCOMES_TOTAL, POLL_ERRORS_TOTAL, TRACKED_JOBS
from gpu_transcoder.modules.transcoding.client import TranscodeClient
from gpu_transcoder.modules.transcoding.exceptions import JobFailure, TransportError
from gpu_transcoder.modules.transcoding.models import JobState
from gpu_transcoder.modules.transcoding.scheduler import (
    AsyncioScheduler,
    Scheduler,
    TimerHandle,
)
from gpu_transcoder.modules.transcoding.schemas import TranscodeJob

logger = logging.getLogger(__name__)

JobCallback = Callable[[TranscodeJob], Union[None, Awaitable[None]]]
FailureCallback = Callable[[JobFailure], Union[None, Awaitable[None]]]


class WatchGroup:
    """A set of jobs watched together.

    Jobs leave the group independently as they reach a terminal state or are
    stopped; the group is done once it is empty.
    """

    def __init__(self, job_ids: Iterable[str]):
        self._pending = set(job_ids)
        self._done = asyncio.Event()
        if not self._pending:
            self._done.set()

    @property
    def active_job_ids(self) -> frozenset[str]:
        return frozenset(self._pending)

    @property
    def is_done(self) -> bool:
        return not self._pending

    def _discard(self, job_id: str) -> None:
        self._pending.discard(job_id)
        if not self._pending:
            self._done.set()

    async def wait(self) -> None:
        """Wait until every job in the group left tracking."""
        await self._done.wait()


@dataclass(eq=False)
class _Watch:
    job_id: str
    on_complete: JobCallback
    on_error: FailureCallback
    on_progress: Optional[JobCallback]
    poll_interval: float
    group: Optional[WatchGroup] = None
    handle: Optional[TimerHandle] = None
    stopped: bool = False
    polls: int = 0
    last_snapshot: Optional[TranscodeJob] = field(default=None, repr=False)


class JobStateTracker:
    """Tracks remote jobs by polling their status.

    Args:
        client: Worker client used for status polls
        scheduler: Timer service; defaults to the running event loop
        poll_interval: Seconds between polls of a healthy job
        backoff_interval: Seconds before retrying after a transport error
    """

    def __init__(
        self,
        client: TranscodeClient,
        scheduler: Optional[Scheduler] = None,
        poll_interval: Optional[float] = None,
        backoff_interval: Optional[float] = None,
    ):
        self.client = client
        self.scheduler = scheduler or AsyncioScheduler()
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.JOB_POLL_INTERVAL_SECONDS
        )
        self.backoff_interval = (
            backoff_interval if backoff_interval is not None else settings.JOB_POLL_BACKOFF_SECONDS
        )
        self._watches: dict[str, _Watch] = {}
        # Status request currently out per job id, across watches of that id
        self._in_flight: dict[str, asyncio.Event] = {}

    # ============================================
    # Public API
    # ============================================

    @property
    def active_jobs(self) -> list[str]:
        return list(self._watches)

    def is_watching(self, job_id: str) -> bool:
        return job_id in self._watches

    def last_snapshot(self, job_id: str) -> Optional[TranscodeJob]:
        """Most recent snapshot observed for a tracked job."""
        watch = self._watches.get(job_id)
        return watch.last_snapshot if watch else None

    def watch_job(
        self,
        job_id: str,
        on_complete: JobCallback,
        on_error: FailureCallback,
        on_progress: Optional[JobCallback] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        """Start polling a job. The first poll runs immediately.

        Exactly one of ``on_complete`` / ``on_error`` fires, once, when a
        terminal state is observed. There is no completion timeout.

        Raises:
            ValueError: If the job is already being watched
        """
        if job_id in self._watches:
            raise ValueError(f"Job {job_id} is already being watched")
        self._start(job_id, on_complete, on_error, on_progress, poll_interval, group=None)

    def watch_multiple_jobs(
        self,
        job_ids: Iterable[str],
        on_complete: JobCallback,
        on_error: FailureCallback,
        on_progress: Optional[JobCallback] = None,
        poll_interval: Optional[float] = None,
    ) -> WatchGroup:
        """Poll several jobs at once.

        Every job gets its own deferred poll, all started together, so each
        cycle queries the outstanding jobs concurrently. A job that finishes is
        dispatched and dropped immediately, regardless of the others.

        Raises:
            ValueError: If any of the jobs is already being watched
        """
        ids = list(dict.fromkeys(job_ids))
        already = [job_id for job_id in ids if job_id in self._watches]
        if already:
            raise ValueError(f"Jobs already being watched: {', '.join(already)}")

        group = WatchGroup(ids)
        for job_id in ids:
            self._start(job_id, on_complete, on_error, on_progress, poll_interval, group=group)
        return group

    def stop_watching(self, job_id: str) -> bool:
        """Stop polling a job on this client. The worker keeps running it.

        Returns:
            True if the job was being watched
        """
        watch = self._watches.pop(job_id, None)
        if watch is None:
            return False
        watch.stopped = True
        if watch.handle is not None:
            watch.handle.cancel()
        if watch.group is not None:
            watch.group._discard(job_id)
        TRACKED_JOBS.set(len(self._watches))
        log_info(logger, "Stopped watching job", job_id=job_id)
        return True

    def stop_all(self) -> None:
        for job_id in list(self._watches):
            self.stop_watching(job_id)

    # ============================================
    # Poll loop
    # ============================================

    def _start(
        self,
        job_id: str,
        on_complete: JobCallback,
        on_error: FailureCallback,
        on_progress: Optional[JobCallback],
        poll_interval: Optional[float],
        group: Optional[WatchGroup],
    ) -> None:
        watch = _Watch(
            job_id=job_id,
            on_complete=on_complete,
            on_error=on_error,
            on_progress=on_progress,
            poll_interval=poll_interval if poll_interval is not None else self.poll_interval,
            group=group,
        )
        self._watches[job_id] = watch
        TRACKED_JOBS.set(len(self._watches))
        self._schedule(watch, 0)

    def _schedule(self, watch: _Watch, delay: float) -> None:
        watch.handle = self.scheduler.call_later(delay, partial(self._poll, watch))

    async def _poll(self, watch: _Watch) -> None:
        if watch.stopped:
            return

        with correlation_scope(watch.job_id):
            # A stopped watch of the same id may still have a request out
            previous = self._in_flight.get(watch.job_id)
            while previous is not None:
                await previous.wait()
                if watch.stopped:
                    return
                previous = self._in_flight.get(watch.job_id)

            in_flight = asyncio.Event()
            self._in_flight[watch.job_id] = in_flight
            watch.polls += 1
            try:
                job = await self.client.get_status(watch.job_id)
            except TransportError as e:
                if not watch.stopped:
                    POLL_ERRORS_TOTAL.inc()
                    log_warning(
                        logger,
                        f"Job polling error, retrying in {self.backoff_interval}s: {e}",
                        job_id=watch.job_id,
                        status_code=e.status_code,
                    )
                    self._schedule(watch, self.backoff_interval)
                return
            except Exception as e:
                if not watch.stopped:
                    POLL_ERRORS_TOTAL.inc()
                    log_error(
                        logger,
                        f"Unexpected job polling error, retrying in {self.backoff_interval}s",
                        e,
                        job_id=watch.job_id,
                    )
                    self._schedule(watch, self.backoff_interval)
                return
            finally:
                del self._in_flight[watch.job_id]
                in_flight.set()

            # Stopped while the request was in flight
            if watch.stopped:
                return

            watch.last_snapshot = job
            if watch.on_progress is not None:
                await self._dispatch(watch.on_progress, job, watch.job_id)
                if watch.stopped:
                    return

            if job.state == JobState.COMPLETED:
                self._finish(watch, job)
                log_info(logger, "Transcode job completed", job_id=watch.job_id, polls=watch.polls)
                await self._dispatch(watch.on_complete, job, watch.job_id)
                return

            if job.state == JobState.FAILED:
                self._finish(watch, job)
                if not job.failed_reason:
                    # The status endpoint does not carry the reason
                    reason = await self.client.get_failure_reason(watch.job_id)
                    if reason:
                        job = job.model_copy(update={"failed_reason": reason})
                failure = JobFailure(job)
                log_warning(logger, str(failure), job_id=watch.job_id, polls=watch.polls)
                await self._dispatch(watch.on_error, failure, watch.job_id)
                return

            self._schedule(watch, watch.poll_interval)

    def _finish(self, watch: _Watch, job: TranscodeJob) -> None:
        watch.stopped = True
        watch.handle = None
        if self._watches.get(watch.job_id) is watch:
            del self._watches[watch.job_id]
        if watch.group is not None:
            watch.group._discard(watch.job_id)
        TRACKED_JOBS.set(len(self._watches))
        JOB_OUTCOMES_TOTAL.labels(state=job.state.value).inc()

    async def _dispatch(self, callback: Callable[[Any], Any], arg: Any, job_id: str) -> None:
        try:
            result = callback(arg)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(logger, "Job callback raised", e, job_id=job_id)
