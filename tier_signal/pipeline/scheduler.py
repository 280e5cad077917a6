"""
TIER SIGNAL — Scheduler
Fixed-cadence ticks. Each tick works out which timeframes crossed a bucket
boundary and starts one independent, deadline-bound pipeline run per due
(timeframe, bucket). The tick loop never waits on a run.
"""
import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from tier_signal.config.settings import SchedulerSettings, get_settings
from tier_signal.data.models import Timeframe
from tier_signal.pipeline.runner import PipelineRunner, RunReport
from tier_signal.store.keys import floor_bucket
from tier_signal.utils.helpers import utc_now
from tier_signal.utils.logger import get_logger

logger = get_logger("scheduler")


def due_timeframes(now: Union[int, datetime], last_buckets: Dict[Timeframe, int],
                   timeframes: Iterable[Timeframe]) -> List[Tuple[Timeframe, int]]:
    """
    (timeframe, bucket) pairs whose current bucket differs from the last one
    triggered. Timeframes never triggered before are always due.
    """
    due = []
    for timeframe in timeframes:
        bucket = floor_bucket(now, timeframe)
        if last_buckets.get(timeframe) != bucket:
            due.append((timeframe, bucket))
    return due


class Scheduler:

    def __init__(self, runner: PipelineRunner, settings: Optional[SchedulerSettings] = None):
        self.runner = runner
        self.settings = settings or get_settings().scheduler
        self.timeframes = [Timeframe.parse(tf) for tf in self.settings.timeframes]
        self.deadline_seconds = self.settings.deadline_seconds
        self._last_buckets: Dict[Timeframe, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self.ticks = 0
        self.runs_started = 0
        self.runs_timed_out = 0
        self.runs_failed = 0

    @property
    def last_buckets(self) -> Dict[Timeframe, int]:
        return dict(self._last_buckets)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _run_with_deadline(self, timeframe: Timeframe, bucket: int) -> Optional[RunReport]:
        # Loop time by which the summary stage must give way to distribution
        summary_deadline = (asyncio.get_running_loop().time() + self.deadline_seconds
                            - self.settings.distribution_reserve_seconds)
        try:
            return await asyncio.wait_for(
                self.runner.run(timeframe, bucket, summary_deadline=summary_deadline),
                timeout=self.deadline_seconds,
            )
        except asyncio.TimeoutError:
            self.runs_timed_out += 1
            logger.error("pipeline_run_deadline_exceeded", timeframe=timeframe.value,
                         bucket=bucket, deadline=self.deadline_seconds)
        except Exception as e:
            self.runs_failed += 1
            logger.error("pipeline_run_failed", timeframe=timeframe.value, bucket=bucket,
                         error=str(e))
        return None

    def tick_once(self, now: Union[int, datetime, None] = None) -> List[asyncio.Task]:
        """Start a run for every due timeframe. Must be called from the event loop."""
        now = now if now is not None else utc_now()
        self.ticks += 1
        started = []
        for timeframe, bucket in due_timeframes(now, self._last_buckets, self.timeframes):
            self._last_buckets[timeframe] = bucket
            task = asyncio.create_task(
                self._run_with_deadline(timeframe, bucket),
                name=f"pipeline-{timeframe.value}-{bucket}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            self.runs_started += 1
            started.append(task)
            logger.info("pipeline_run_started", timeframe=timeframe.value, bucket=bucket)
        return started

    async def run_forever(self) -> None:
        self._stopped.clear()
        logger.info("scheduler_started", interval=self.settings.tick_interval_seconds,
                    timeframes=[tf.value for tf in self.timeframes])
        while not self._stopped.is_set():
            self.tick_once()
            try:
                await asyncio.wait_for(self._stopped.wait(),
                                       timeout=self.settings.tick_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduler_stopped", ticks=self.ticks)

    def stop(self) -> None:
        self._stopped.set()

    async def shutdown(self) -> None:
        """Stop ticking and cancel runs still in flight."""
        self.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
