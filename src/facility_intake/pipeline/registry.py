"""In-memory registry of extraction runs."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
import uuid

from facility_intake.clarification import LearningSink
from facility_intake.config.types import FrozenConfig
from facility_intake.constants import MAX_FINISHED_RUNS
from facility_intake.core.models import Facility
from facility_intake.exceptions import RunNotFoundError
from facility_intake.pipeline.persistence import DocumentSource, RecordSink
from facility_intake.pipeline.run import ExtractionRun
from facility_intake.router.router import LLMRouter

log = logging.getLogger(__name__)


class RunRegistry:
    """Creates runs, keeps them addressable and owns their tasks.

    When a run extracts a facility, pending clarifications for the same
    facility in earlier runs are superseded. Only the newest
    ``max_finished_runs`` finished runs stay addressable.
    """

    def __init__(
        self,
        config: FrozenConfig,
        router: LLMRouter,
        document_source: DocumentSource,
        record_sink: RecordSink,
        *,
        learning: LearningSink | None = None,
        max_finished_runs: int = MAX_FINISHED_RUNS,
    ) -> None:
        self.config = config
        self.router = router
        self._source = document_source
        self._sink = record_sink
        self._learning = learning
        self._runs: dict[str, ExtractionRun] = {}
        self._tasks: dict[str, asyncio.Task[object]] = {}
        self._max_finished = max_finished_runs

    def create(self, document_ids: Sequence[str]) -> ExtractionRun:
        run = ExtractionRun(
            uuid.uuid4().hex,
            document_ids,
            router=self.router,
            config=self.config,
            document_source=self._source,
            record_sink=self._sink,
            learning=self._learning,
            on_facilities=self._supersede_earlier,
        )
        self._runs[run.run_id] = run
        self._evict_finished()
        return run

    def start(self, document_ids: Sequence[str]) -> ExtractionRun:
        """Create a run and schedule it on the running loop."""
        run = self.create(document_ids)
        task = asyncio.create_task(run.execute(), name=f"run-{run.run_id}")
        self._tasks[run.run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run.run_id, None))
        log.info("Started run %s for %d document(s)", run.run_id, len(run.document_ids))
        return run

    def get(self, run_id: str) -> ExtractionRun:
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFoundError(f"Unknown run {run_id}") from None

    def runs(self) -> list[ExtractionRun]:
        return list(self._runs.values())

    def cancel(self, run_id: str) -> bool:
        return self.get(run_id).cancel()

    async def wait(self, run_id: str) -> None:
        """Wait for a started run to finish."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)

    async def aclose(self) -> None:
        for run in self._runs.values():
            run.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def _supersede_earlier(self, run: ExtractionRun, facilities: Sequence[Facility]) -> None:
        keys = {f.key for f in facilities}
        # Runs are kept in creation order.
        for other in self._runs.values():
            if other is run:
                break
            other.supersede(keys)

    def _evict_finished(self) -> None:
        finished = [r.run_id for r in self._runs.values() if r.status.terminal]
        for run_id in finished[: max(0, len(finished) - self._max_finished)]:
            del self._runs[run_id]
            log.debug("Forgot finished run %s", run_id)
