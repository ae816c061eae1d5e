"""Bulk export/import orchestration.

Both directions share one fixed-size worker pool: jobs go into an
`asyncio.Queue`, W workers drain it, and a per-item failure is recorded in the
`TransferReport` without stopping its siblings. With `fail_fast` the first
failure sets a stop event and workers stop picking up new jobs (jobs already in
flight finish).

Every network call still goes through the shared rate limiter, so raising the
worker count never raises the request rate above the API family limit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable, TypeVar

from adapters.integrations_api import IntegrationsClient
from adapters.json_exporter import export_definition_json, read_definition_json
from core.domain.errors import FlowCtlError
from core.domain.models import ResourceDescriptor, TransferDirection, TransferJob
from core.domain.naming import DEFAULT_SEPARATOR, format_version_filename, parse_version_filename

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TransferOptions:
    """Parameters shared by export and import."""

    folder: Path
    concurrency: int = 4
    separator: str = DEFAULT_SEPARATOR
    download: bool = False
    fail_fast: bool = False
    name: str | None = None


@dataclass
class PipelineHooks:
    """Optional callbacks for UI layers (progress, warnings)."""

    started: Callable[[int], None] | None = None
    item_done: Callable[[TransferJob], None] | None = None
    item_failed: Callable[[TransferJob, Exception], None] | None = None


@dataclass
class TransferFailure:
    job: TransferJob
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass
class TransferReport:
    """Outcome of a bulk operation: every job either succeeded or failed."""

    direction: TransferDirection
    succeeded: list[TransferJob] = field(default_factory=list)
    failures: list[TransferFailure] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failures)


async def run_worker_pool(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[None]],
    *,
    concurrency: int,
    on_error: Callable[[T, Exception], None],
    fail_fast: bool = False,
) -> bool:
    """Process `items` with at most `concurrency` handlers in flight.

    Returns True when dispatch was stopped early by `fail_fast`.
    """

    queue: asyncio.Queue[T] = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)
    stop = asyncio.Event()

    async def worker() -> None:
        while not stop.is_set():
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await handler(item)
            except (FlowCtlError, OSError) as exc:
                on_error(item, exc)
                if fail_fast:
                    stop.set()

    workers = max(1, min(concurrency, queue.qsize() or 1))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return stop.is_set() and not queue.empty()


class TransferPipeline:
    """Export every integration version to a folder, or import a folder back."""

    def __init__(self, client: IntegrationsClient, hooks: PipelineHooks | None = None) -> None:
        # Las respuestas por item nunca se imprimen: solo el resumen final.
        self.client = client.with_context(client.ctx.silenced())
        self.hooks = hooks or PipelineHooks()

    def _record_failure(self, report: TransferReport, job: TransferJob, exc: Exception) -> None:
        logger.error("%s of %s failed: %s", job.direction.value, job.resource_name, exc)
        report.failures.append(TransferFailure(job=job, error=exc))
        if self.hooks.item_failed:
            self.hooks.item_failed(job, exc)

    def _record_success(self, report: TransferReport, job: TransferJob) -> None:
        report.succeeded.append(job)
        if self.hooks.item_done:
            self.hooks.item_done(job)

    # --- export ---------------------------------------------------------------

    async def export_all(self, options: TransferOptions) -> TransferReport:
        report = TransferReport(direction=TransferDirection.EXPORT)
        silent = self.client.ctx.silenced()

        names: list[str] = []
        async for batch in self.client.enumerate_integrations(ctx=silent):
            names.extend(ResourceDescriptor.from_api(item).display_name for item in batch)
        if options.name:
            names = [n for n in names if n == options.name]
        logger.info("exporting %d integrations with %d workers", len(names), options.concurrency)

        jobs = [
            TransferJob(resource_name=name, local_path=str(options.folder), direction=TransferDirection.EXPORT)
            for name in names
        ]
        if self.hooks.started:
            self.hooks.started(len(jobs))

        async def handle(job: TransferJob) -> None:
            written = await self._export_one(job.resource_name, options)
            report.files.extend(written)
            self._record_success(report, job)

        report.cancelled = await run_worker_pool(
            jobs,
            handle,
            concurrency=options.concurrency,
            on_error=lambda job, exc: self._record_failure(report, job, exc),
            fail_fast=options.fail_fast,
        )
        return report

    async def _export_one(self, name: str, options: TransferOptions) -> list[Path]:
        silent = self.client.ctx.silenced()
        written: list[Path] = []
        async for batch in self.client.enumerate_versions(name, ctx=silent):
            for item in batch:
                descriptor = ResourceDescriptor.from_api(item)
                version = descriptor.version or ""
                filename = format_version_filename(
                    name, descriptor.snapshot_number or 0, version, separator=options.separator
                )
                payload = await self.client.download(name, version) if options.download else item
                written.append(export_definition_json(payload=payload, output_path=options.folder / filename))
        logger.debug("exported %d versions of %s", len(written), name)
        return written

    # --- import ---------------------------------------------------------------

    def scan_folder(self, options: TransferOptions) -> list[TransferJob]:
        """Version files in `folder` (optionally only those of `options.name`)."""

        if not options.folder.is_dir():
            raise FlowCtlError(f"folder {options.folder} does not exist")
        jobs: list[TransferJob] = []
        for path in sorted(options.folder.iterdir()):
            if not path.is_file():
                continue
            parsed = parse_version_filename(path.name, separator=options.separator, resource_name=options.name)
            if parsed is None:
                logger.debug("skipping %s: not a version file", path.name)
                continue
            jobs.append(
                TransferJob(
                    resource_name=parsed.resource_name,
                    local_path=str(path),
                    direction=TransferDirection.IMPORT,
                )
            )
        return jobs

    async def import_all(self, options: TransferOptions) -> TransferReport:
        report = TransferReport(direction=TransferDirection.IMPORT)
        jobs = self.scan_folder(options)
        names = {job.resource_name for job in jobs}
        logger.info(
            "importing %d files for %d integrations with %d workers", len(jobs), len(names), options.concurrency
        )
        if self.hooks.started:
            self.hooks.started(len(jobs))

        async def handle(job: TransferJob) -> None:
            content = read_definition_json(Path(job.local_path))
            await self.client.create_version(job.resource_name, content)
            self._record_success(report, job)

        report.cancelled = await run_worker_pool(
            jobs,
            handle,
            concurrency=options.concurrency,
            on_error=lambda job, exc: self._record_failure(report, job, exc),
            fail_fast=options.fail_fast,
        )
        return report

    async def import_flow(self, name: str, options: TransferOptions) -> TransferReport:
        """Import only the versions of one integration."""

        scoped = TransferOptions(
            folder=options.folder,
            concurrency=options.concurrency,
            separator=options.separator,
            fail_fast=options.fail_fast,
            name=name,
        )
        return await self.import_all(scoped)
