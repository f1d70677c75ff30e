"""Install, update and remove repository automation workflows.

Each operation is a fixed sequence of steps run against the connector:

    install: download bundle -> read manifest -> write files -> write manifest
    update:  download bundle -> read manifest -> compare versions -> write files -> write manifest
    delete:  read manifest -> delete files -> write manifest

A step that fails stops the sequence; steps already completed are left in
place. Inside the file steps a failing file is recorded and the remaining
files are still processed. These operations take no container lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from mediumroast.connectors.base import BackendConnector, WorkflowAsset, WorkflowBundle
from mediumroast.errors import BackendError, MediumroastError
from mediumroast.logging import get_logger
from mediumroast.result import Err, Ok, Result

log = get_logger(__name__)


@dataclass
class StepResult:
    name: str
    success: bool
    detail: str = ""


@dataclass
class FileOutcome:
    name: str
    operation: str
    success: bool
    message: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class WorkflowReport:
    """Per-step and per-file outcome of one workflow operation."""

    operation: str
    steps: list[StepResult] = field(default_factory=list)
    files: list[FileOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.success for s in self.steps)

    @property
    def failed_step(self) -> str | None:
        for step in self.steps:
            if not step.success:
                return step.name
        return None

    def summary(self) -> str:
        ok = sum(1 for f in self.files if f.success)
        failed = len(self.files) - ok
        return f"{ok} succeeded, {failed} failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "success": self.success,
            "failed_step": self.failed_step,
            "steps": [vars(s) for s in self.steps],
            "files": [vars(f) for f in self.files],
        }


@dataclass
class _State:
    bundle: WorkflowBundle | None = None
    manifest: dict[str, str] = field(default_factory=dict)
    pending: list[WorkflowAsset] = field(default_factory=list)


Step = tuple[str, Callable[[_State], Awaitable[str]]]


class WorkflowRunner:
    """Runs workflow step sequences against one connector."""

    def __init__(self, connector: BackendConnector) -> None:
        self.connector = connector

    async def _run(self, report: WorkflowReport, steps: list[Step]) -> Result[WorkflowReport]:
        state = _State()
        for name, step in steps:
            try:
                detail = await step(state)
            except MediumroastError as e:
                log.warning("workflow_step_failed", operation=report.operation, step=name, error=str(e))
                return self._abort(report, name, e)
            except Exception as e:
                log.exception("workflow_step_failed", operation=report.operation, step=name)
                return self._abort(report, name, BackendError(name, str(e)))
            report.steps.append(StepResult(name, True, detail))
            log.debug("workflow_step_ok", operation=report.operation, step=name, detail=detail)
        return Ok(report, f"Workflow [{report.operation}] completed: {report.summary()}")

    def _abort(self, report: WorkflowReport, step: str, error: MediumroastError) -> Err[WorkflowReport]:
        report.steps.append(StepResult(step, False, str(error)))
        return Err(
            error,
            detail=report,
            reason=f"Workflow [{report.operation}] failed at step [{step}]: {error}",
        )

    async def _download(self, state: _State) -> str:
        state.bundle = await self.connector.fetch_workflow_bundle()
        state.pending = list(state.bundle.workflows)
        return f"Downloaded bundle version [{state.bundle.version}] with {len(state.pending)} workflows"

    async def _read_manifest(self, state: _State) -> str:
        state.manifest = await self.connector.read_workflow_manifest()
        return f"Found {len(state.manifest)} installed workflows"

    async def _compare(self, state: _State) -> str:
        state.pending = [w for w in state.pending if state.manifest.get(w.name) != w.version]
        return f"{len(state.pending)} workflows need updating"

    def _file_step(
        self,
        report: WorkflowReport,
        apply: Callable[[_State, Any], Awaitable[str]],
        items: Callable[[_State], list[Any]],
    ) -> Callable[[_State], Awaitable[str]]:
        async def _step(state: _State) -> str:
            todo = items(state)
            outcomes: list[FileOutcome] = []
            for item in todo:
                name = item.name if isinstance(item, WorkflowAsset) else item
                try:
                    operation = await apply(state, item)
                except MediumroastError as e:
                    log.warning(
                        "workflow_file_failed", operation=report.operation, file=name, error=str(e)
                    )
                    outcomes.append(FileOutcome(name, "failed", False, str(e)))
                else:
                    outcomes.append(FileOutcome(name, operation, True))
            report.files.extend(outcomes)
            if todo and not any(o.success for o in outcomes):
                raise BackendError(report.operation, f"all {len(todo)} workflow files failed")
            ok = sum(1 for o in outcomes if o.success)
            return f"{ok} succeeded, {len(outcomes) - ok} failed"

        return _step

    async def _write_one(self, state: _State, asset: WorkflowAsset) -> str:
        operation = "updated" if asset.name in state.manifest else "created"
        await self.connector.write_workflow(asset.name, asset.content)
        state.manifest[asset.name] = asset.version
        return operation

    async def _delete_one(self, state: _State, name: str) -> str:
        await self.connector.delete_workflow(name)
        state.manifest.pop(name, None)
        return "deleted"

    async def _write_manifest(self, state: _State) -> str:
        await self.connector.write_workflow_manifest(state.manifest)
        return f"Recorded {len(state.manifest)} workflows"

    async def install(self) -> Result[WorkflowReport]:
        report = WorkflowReport("install")
        write = self._file_step(report, self._write_one, lambda s: s.pending)
        return await self._run(
            report,
            [
                ("download_bundle", self._download),
                ("read_manifest", self._read_manifest),
                ("write_files", write),
                ("write_manifest", self._write_manifest),
            ],
        )

    async def update(self) -> Result[WorkflowReport]:
        report = WorkflowReport("update")
        write = self._file_step(report, self._write_one, lambda s: s.pending)
        return await self._run(
            report,
            [
                ("download_bundle", self._download),
                ("read_manifest", self._read_manifest),
                ("compare_manifest", self._compare),
                ("write_files", write),
                ("write_manifest", self._write_manifest),
            ],
        )

    async def delete(self) -> Result[WorkflowReport]:
        report = WorkflowReport("delete")
        remove = self._file_step(report, self._delete_one, lambda s: sorted(s.manifest))
        return await self._run(
            report,
            [
                ("read_manifest", self._read_manifest),
                ("delete_files", remove),
                ("write_manifest", self._write_manifest),
            ],
        )


async def install_workflows(connector: BackendConnector) -> Result[WorkflowReport]:
    return await WorkflowRunner(connector).install()


async def update_workflows(connector: BackendConnector) -> Result[WorkflowReport]:
    return await WorkflowRunner(connector).update()


async def delete_workflows(connector: BackendConnector) -> Result[WorkflowReport]:
    return await WorkflowRunner(connector).delete()
