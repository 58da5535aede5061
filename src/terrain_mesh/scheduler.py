from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from .config import BackoffConfig, SchedulerConfig
from .dem_source import HeightSource
from .mesh_tiler import MeshTile, MeshTiler
from .tile_pyramid import GeoRect, TileID, iter_tile_pyramid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExponentialBackoff:
    base_seconds: float = 1.0
    factor: float = 2.0
    max_seconds: float = 60.0

    def delay_seconds(self, retry_number: int) -> float:
        if retry_number <= 0:
            return 0.0
        delay = self.base_seconds * (self.factor ** (retry_number - 1))
        return float(min(delay, self.max_seconds))

    @classmethod
    def from_config(cls, config: BackoffConfig) -> "ExponentialBackoff":
        return cls(
            base_seconds=config.base_seconds,
            factor=config.factor,
            max_seconds=config.max_seconds,
        )


@dataclass(frozen=True)
class MeshTileJob:
    tile: TileID

    def key(self) -> str:
        return str(self.tile)


@dataclass(frozen=True)
class MeshTileJobResult:
    job: MeshTileJob
    status: str
    attempts: int
    error: Optional[str] = None
    mesh_tile: Optional[MeshTile] = None


def build_jobs(rect: GeoRect, *, min_zoom: int, max_zoom: int) -> list[MeshTileJob]:
    """Jobs for every tile intersecting rect, zoom by zoom, row-major within a zoom."""

    return [
        MeshTileJob(tile=tile)
        for tile in iter_tile_pyramid(rect, min_zoom=min_zoom, max_zoom=max_zoom)
    ]


class MeshTileWorker:
    def __init__(
        self,
        tiler: MeshTiler,
        dataset: HeightSource,
        *,
        max_retries: int = 0,
        backoff: Optional[ExponentialBackoff] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self._tiler = tiler
        self._dataset = dataset
        self._max_retries = max_retries
        self._backoff = backoff or ExponentialBackoff()
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def process(self, job: MeshTileJob) -> MeshTileJobResult:
        attempts = 0
        while True:
            attempts += 1
            try:
                mesh_tile = self._tiler.create_mesh(self._dataset, job.tile)
                return MeshTileJobResult(
                    job=job, status="success", attempts=attempts, mesh_tile=mesh_tile
                )
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc)
                retries_used = attempts - 1
                if retries_used >= self._max_retries:
                    logger.error(
                        "mesh_tile_job_failed",
                        extra={
                            "job_key": job.key(),
                            "attempt": attempts,
                            "max_retries": self._max_retries,
                            "error": last_error,
                        },
                    )
                    return MeshTileJobResult(
                        job=job, status="failed", attempts=attempts, error=last_error
                    )

                retry_number = retries_used + 1
                delay = self._backoff.delay_seconds(retry_number)
                logger.warning(
                    "mesh_tile_job_failed_retrying",
                    extra={
                        "job_key": job.key(),
                        "attempt": attempts,
                        "retry_number": retry_number,
                        "delay_seconds": delay,
                        "error": last_error,
                    },
                )
                if delay > 0:
                    self._sleep(delay)


@dataclass(frozen=True)
class MeshTileSchedulerSummary:
    total_jobs: int
    succeeded: int
    failed: int
    duration_s: float
    results: Sequence[MeshTileJobResult]

    @property
    def total_vertices(self) -> int:
        return sum(r.mesh_tile.vertex_count for r in self.results if r.mesh_tile)

    @property
    def total_triangles(self) -> int:
        return sum(r.mesh_tile.triangle_count for r in self.results if r.mesh_tile)


class MeshTileScheduler:
    def __init__(
        self,
        *,
        worker: MeshTileWorker,
        max_workers: int = 4,
        progress_log_every: int = 1,
        executor: Optional[Executor] = None,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if progress_log_every <= 0:
            raise ValueError("progress_log_every must be > 0")

        self._worker = worker
        self._max_workers = int(max_workers)
        self._progress_log_every = int(progress_log_every)
        self._executor = executor

    @classmethod
    def from_config(
        cls,
        config: SchedulerConfig,
        *,
        tiler: MeshTiler,
        dataset: HeightSource,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "MeshTileScheduler":
        worker = MeshTileWorker(
            tiler,
            dataset,
            max_retries=config.max_retries,
            backoff=ExponentialBackoff.from_config(config.backoff),
            sleep=sleep,
        )
        return cls(
            worker=worker,
            max_workers=config.max_workers,
            progress_log_every=config.progress_log_every,
        )

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def run(self, jobs: Iterable[MeshTileJob]) -> MeshTileSchedulerSummary:
        jobs_list = list(jobs)
        total = len(jobs_list)
        if total == 0:
            return MeshTileSchedulerSummary(
                total_jobs=0, succeeded=0, failed=0, duration_s=0.0, results=[]
            )

        t0 = time.perf_counter()
        logger.info(
            "mesh_tile_scheduler_started",
            extra={
                "total_jobs": total,
                "max_workers": self._max_workers,
                "max_retries": self._worker.max_retries,
            },
        )

        succeeded = 0
        failed = 0
        results: list[MeshTileJobResult] = []

        owns_executor = self._executor is None
        executor = self._executor or ThreadPoolExecutor(max_workers=self._max_workers)
        try:
            futures: dict[Future[MeshTileJobResult], MeshTileJob] = {
                executor.submit(self._worker.process, job): job for job in jobs_list
            }
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                if result.status == "success":
                    succeeded += 1
                else:
                    failed += 1

                completed = len(results)
                if completed == total or completed % self._progress_log_every == 0:
                    logger.info(
                        "mesh_tile_scheduler_progress",
                        extra={
                            "completed": completed,
                            "total_jobs": total,
                            "succeeded": succeeded,
                            "failed": failed,
                        },
                    )
        finally:
            if owns_executor:
                executor.shutdown(wait=True)

        duration_s = time.perf_counter() - t0
        logger.info(
            "mesh_tile_scheduler_finished",
            extra={
                "total_jobs": total,
                "succeeded": succeeded,
                "failed": failed,
                "duration_s": duration_s,
            },
        )

        # Results in submission order.
        order = {job.key(): i for i, job in enumerate(jobs_list)}
        results.sort(key=lambda r: order[r.job.key()])
        return MeshTileSchedulerSummary(
            total_jobs=total,
            succeeded=succeeded,
            failed=failed,
            duration_s=duration_s,
            results=results,
        )
