"""Pipeline orchestrator and the context it owns.

Stages, in data-dependency order:

1. INTENT → classify the request and expand hints
2. DISCOVER → add files hinted by the intent
3. ANSWER → informational requests stop here
4. PLAN → one overview per file to create, delete or modify
5. GENERATE → concrete changes per planned file
6. APPLY → write, delete or rewrite each file

Each stage runs to completion before the next starts. Stage functions never
mutate the context: they receive read views and return a ``StageResult``
carrying their delta, and ``run_pipeline`` decides whether to merge it and
continue or to stop.
"""

import logging
from collections.abc import AsyncGenerator, Awaitable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from spaider import config, workspace
from spaider.answer import generate_answer
from spaider.applicator import FileOutcome, apply_changes
from spaider.completion import CompletionClient
from spaider.discovery import discover
from spaider.errors import SchemaValidationError, SpaiderError
from spaider.formatting import truncate
from spaider.generator import generate_changes, generate_changes_for_file
from spaider.intent import analyze_intent
from spaider.models import Change, ChangeOverview, FileContext, Intent
from spaider.planner import prepare_changes
from spaider.relevance import extract_relevant_code_blocks, filter_relevant_file_paths
from spaider.symbols import SymbolIndex, TreeSitterSymbolIndex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class FileRegistry:
    """Insertion-ordered mapping of path → FileContext.

    Entries are only ever added or enriched; never removed or reordered.
    """

    def __init__(self, files: Iterable[FileContext] = ()):
        self._files: dict[str, FileContext] = {}
        self.add(files)

    def add(self, files: Iterable[FileContext]) -> list[FileContext]:
        """Insert files whose path is not yet known. Returns the inserted delta."""
        added = []
        for fc in files:
            if fc.path in self._files:
                continue
            self._files[fc.path] = fc
            added.append(fc)
        return added

    def update_content(
        self, path: str, content: str, symbols: Iterable[str] | None = None
    ) -> None:
        """Attach loaded content and symbols to an existing entry."""
        fc = self._files[path]
        fc.content = content
        if symbols is not None:
            fc.symbols = sorted(symbols)

    def get(self, path: str) -> FileContext | None:
        return self._files.get(path)

    def paths(self) -> list[str]:
        return list(self._files)

    def values(self) -> list[FileContext]:
        return list(self._files.values())

    def view(self) -> Mapping[str, FileContext]:
        """Read-only view handed to stages."""
        return MappingProxyType(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)


@dataclass
class StageResult:
    """Explicit success/failure value returned by every stage."""

    stage: str
    success: bool
    output: str = ""
    error: str = ""
    raw: str = ""  # offending backend content on schema failures
    data: dict = field(default_factory=dict)


@dataclass
class PipelineContext:
    """State of one pipeline run. Owned by ``run_pipeline`` alone."""

    user_prompt: str
    project_root: str
    files: FileRegistry = field(default_factory=FileRegistry)
    intent: Intent | None = field(default=None, init=False)
    overviews: list[ChangeOverview] = field(default_factory=list)
    changes: dict[str, list[Change]] = field(default_factory=dict)
    outcomes: list[FileOutcome] = field(default_factory=list)
    results: list[StageResult] = field(default_factory=list)

    @classmethod
    def create(
        cls, user_prompt: str, project_root: str, initial_paths: Iterable[str] = ()
    ) -> "PipelineContext":
        files = FileRegistry(
            FileContext(path=workspace.normalize_path(p))
            for p in initial_paths
            if p.strip()
        )
        return cls(user_prompt=user_prompt, project_root=project_root, files=files)

    def set_intent(self, intent: Intent) -> None:
        """Record the intent. It can only be set once per run."""
        if self.intent is not None:
            raise ValueError("Intent has already been set for this run")
        self.intent = intent

    def add_changes(self, path: str, changes: list[Change]) -> None:
        self.changes.setdefault(path, []).extend(changes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _guard(stage: str, work: Awaitable[StageResult]) -> StageResult:
    """Await *work*, turning pipeline errors into a failed StageResult."""
    logger.info("Running %s stage", stage)
    try:
        result = await work
    except SchemaValidationError as e:
        logger.error("%s stage failed: %s", stage, e)
        return StageResult(stage=stage, success=False, error=str(e), raw=e.raw)
    except (SpaiderError, OSError, workspace.WorkspaceViolationError) as e:
        logger.error("%s stage failed: %s", stage, e)
        return StageResult(stage=stage, success=False, error=str(e))
    logger.info("%s stage finished: %s", stage, truncate(result.output, 200))
    return result


def load_files(
    registry: FileRegistry,
    project_root: str,
    symbol_index: SymbolIndex,
    paths: Iterable[str] | None = None,
) -> list[str]:
    """Read content and extract symbols for registry entries not yet loaded.

    Returns the paths that could not be read; they stay without content.
    """
    skipped = []
    for path in registry.paths() if paths is None else paths:
        fc = registry.get(path)
        if fc is None or fc.content is not None:
            continue
        try:
            content = workspace.read_file(project_root, path)
        except (OSError, workspace.WorkspaceViolationError) as e:
            logger.warning("Could not read %s: %s", path, e)
            skipped.append(path)
            continue
        registry.update_content(
            path, content, symbols=symbol_index.extract_symbols(content, path)
        )
    return skipped


def _read_current(ctx: PipelineContext, path: str) -> str | None:
    fc = ctx.files.get(path)
    if fc is not None and fc.content is not None:
        return fc.content
    try:
        return workspace.read_file(ctx.project_root, path)
    except (OSError, workspace.WorkspaceViolationError):
        return None


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


async def intent_stage(ctx: PipelineContext, client: CompletionClient) -> StageResult:
    intent = await analyze_intent(client, ctx.user_prompt, ctx.files.values())
    mode = "edit" if intent.edit_mode else "informational"
    return StageResult(
        stage="intent",
        success=True,
        output=f"Intent ({mode}): {intent.description}",
        data={"intent": intent},
    )


async def discovery_stage(
    ctx: PipelineContext,
    client: CompletionClient,
    symbol_index: SymbolIndex,
    filter_discovered: bool = False,
) -> StageResult:
    known = ctx.files.view()
    new_files = discover(
        ctx.intent,
        known.keys(),
        ctx.project_root,
        symbol_index=symbol_index,
        max_term_results=config.MAX_DISCOVERED_FILES,
    )

    if filter_discovered and new_files:
        kept = await filter_relevant_file_paths(
            client, ctx.intent, [fc.path for fc in new_files]
        )
        new_files = [FileContext(path=p) for p in kept]

    if new_files:
        paths = ", ".join(fc.path for fc in new_files)
        output = f"Discovered {len(new_files)} files: {paths}"
    else:
        output = "No new files discovered"
    return StageResult(
        stage="discovery", success=True, output=output, data={"files": new_files}
    )


async def _excerpt_large_files(
    ctx: PipelineContext, client: CompletionClient
) -> list[FileContext]:
    """Cut files longer than ``PREVIEW_CHARS`` down to their relevant code.

    A file the backend finds nothing relevant in keeps its full content.
    """
    files = []
    for fc in ctx.files.values():
        if fc.content is not None and len(fc.content) > config.PREVIEW_CHARS:
            excerpt = await extract_relevant_code_blocks(client, ctx.intent, fc)
            if excerpt is not None:
                logger.info("Using excerpt of %s (%d chars)", fc.path, len(excerpt))
                fc = FileContext(path=fc.path, content=excerpt, symbols=list(fc.symbols))
        files.append(fc)
    return files


async def answer_stage(ctx: PipelineContext, client: CompletionClient) -> StageResult:
    files = await _excerpt_large_files(ctx, client)
    answer = await generate_answer(client, ctx.intent, files)
    return StageResult(stage="answer", success=True, output=answer)



async def planning_stage(ctx: PipelineContext, client: CompletionClient) -> StageResult:
    overviews = await prepare_changes(client, ctx.intent, ctx.files.values())
    summary = ", ".join(f"{o.operation} {o.file_path}" for o in overviews)
    return StageResult(
        stage="planning",
        success=True,
        output=f"Plan: {summary}" if overviews else "Plan: no changes",
        data={"overviews": overviews},
    )


def _delete_change(overview: ChangeOverview) -> Change:
    return Change(
        operation="delete_file",
        file_path=overview.file_path,
        modification_type="none",
        modification_description=overview.overview,
    )


async def generation_stage(
    ctx: PipelineContext, client: CompletionClient, batch: bool = False
) -> StageResult:
    """Generate changes for every planned file.

    Deletions are synthesized from the plan without a backend call. Planned
    paths outside the project root are rejected before generation, and files
    the backend returns no changes for are left out of the result.
    """
    generated: dict[str, list[Change]] = {}
    rejected: list[FileOutcome] = []
    to_generate: list[tuple[ChangeOverview, FileContext]] = []

    for overview in ctx.overviews:
        try:
            workspace.resolve_path(ctx.project_root, overview.file_path)
        except workspace.WorkspaceViolationError as e:
            logger.error("Rejecting planned %s: %s", overview.file_path, e)
            rejected.append(
                FileOutcome(
                    path=overview.file_path,
                    status="rejected",
                    operation=overview.operation,
                    message=str(e),
                )
            )
            continue
        if overview.operation == "delete_file":
            generated[overview.file_path] = [_delete_change(overview)]
            continue
        known = ctx.files.get(overview.file_path)
        file = FileContext(
            path=overview.file_path,
            content=known.content if known else None,
            symbols=list(known.symbols) if known else [],
        )
        if file.content is None and overview.operation == "modify_file":
            file.content = _read_current(ctx, file.path)
        to_generate.append((overview, file))

    if batch and to_generate:
        planned = {o.file_path: o for o, _ in to_generate}
        changes = await generate_changes(client, ctx.intent, [f for _, f in to_generate])
        for change in changes:
            overview = planned.get(change.file_path)
            if overview is None or change.operation != overview.operation:
                logger.warning(
                    "Discarding unplanned %s change for %s",
                    change.operation,
                    change.file_path,
                )
                continue
            generated.setdefault(change.file_path, []).append(change)
    else:
        for overview, file in to_generate:
            changes = await generate_changes_for_file(client, ctx.intent, file, overview)
            if changes:
                generated[file.path] = changes

    empty = [o.file_path for o, _ in to_generate if o.file_path not in generated]
    for path in empty:
        logger.info("No changes generated for %s", path)

    # Keep plan order
    ordered = {
        o.file_path: generated[o.file_path]
        for o in ctx.overviews
        if o.file_path in generated
    }
    total = sum(len(c) for c in ordered.values())
    return StageResult(
        stage="generation",
        success=True,
        output=f"Generated {total} changes for {len(ordered)} files",
        data={"changes": ordered, "empty": empty, "rejected": rejected},
    )


async def apply_stage(
    ctx: PipelineContext, client: CompletionClient, dry_run: bool = False
) -> StageResult:
    outcomes: list[FileOutcome] = []
    for path, changes in ctx.changes.items():
        current = None
        if changes and changes[0].operation == "modify_file":
            current = _read_current(ctx, path)
        outcomes.append(
            await apply_changes(
                client, ctx.project_root, path, changes, current, dry_run=dry_run
            )
        )
    applied = sum(1 for o in outcomes if o.applied)
    return StageResult(
        stage="apply",
        success=True,
        output=f"Applied {applied} of {len(outcomes)} files",
        data={"outcomes": outcomes},
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


def _failure_events(result: StageResult) -> list[tuple[str, str]]:
    message = f"{result.stage.capitalize()} failed: {result.error}"
    if result.raw:
        message += f"\n\nOffending response:\n{result.raw}"
    return [("error", message)]


def _build_final_summary(ctx: PipelineContext) -> str:
    parts = ["## Changes complete", "", f"**Task:** {ctx.intent.description}"]

    applied = [o for o in ctx.outcomes if o.applied]
    rejected = [o for o in ctx.outcomes if not o.applied]
    if applied:
        parts.append("")
        parts.append("**Files changed:**")
        for o in applied:
            parts.append(f"  - {o.message}: {o.path}")
    if rejected:
        parts.append("")
        parts.append("**Files rejected:**")
        for o in rejected:
            parts.append(f"  - {o.path}: {truncate(o.message, 200)}")
    return "\n".join(parts)


async def run_pipeline(
    client: CompletionClient,
    ctx: PipelineContext,
    symbol_index: SymbolIndex | None = None,
    dry_run: bool = False,
    batch: bool = False,
    filter_discovered: bool | None = None,
) -> AsyncGenerator[tuple[str, str], None]:
    """Run every stage over *ctx*, yielding progress events.

    Yields:
        Tuples of (event_type, message) where event_type is one of:
        - "status": Progress update
        - "output": Per-file outcome
        - "result": Final result summary or answer
        - "error": A stage failed and the run stopped
    """
    index = symbol_index or TreeSitterSymbolIndex()
    if filter_discovered is None:
        filter_discovered = config.FILTER_DISCOVERED

    # Initial files
    for path in load_files(ctx.files, ctx.project_root, index):
        yield ("status", f"Could not read {path}; continuing without its content")

    # Stage 1: Intent
    yield ("status", "Analyzing intent...")
    result = await _guard("intent", intent_stage(ctx, client))
    ctx.results.append(result)
    if not result.success:
        for event in _failure_events(result):
            yield event
        return
    ctx.set_intent(result.data["intent"])
    yield ("status", result.output)
    if ctx.intent.needs_more_context:
        yield ("status", "More context requested; discovering related files")

    # Stage 2: Discovery
    yield ("status", "Discovering files...")
    result = await _guard(
        "discovery", discovery_stage(ctx, client, index, filter_discovered)
    )
    ctx.results.append(result)
    if not result.success:
        for event in _failure_events(result):
            yield event
        return
    added = ctx.files.add(result.data["files"])
    for path in load_files(ctx.files, ctx.project_root, index, [fc.path for fc in added]):
        yield ("status", f"Could not read {path}; continuing without its content")
    yield ("status", result.output)

    # Stage 3: Informational requests are answered, never edited
    if not ctx.intent.edit_mode:
        yield ("status", "Generating answer...")
        result = await _guard("answer", answer_stage(ctx, client))
        ctx.results.append(result)
        if not result.success:
            for event in _failure_events(result):
                yield event
            return
        yield ("result", result.output)
        return

    # Stage 4: Plan
    yield ("status", "Planning changes...")
    result = await _guard("planning", planning_stage(ctx, client))
    ctx.results.append(result)
    if not result.success:
        for event in _failure_events(result):
            yield event
        return
    ctx.overviews = result.data["overviews"]
    yield ("status", result.output)
    if not ctx.overviews:
        yield ("result", "No changes needed")
        return

    # Stage 5: Generate
    yield ("status", "Generating changes...")
    result = await _guard("generation", generation_stage(ctx, client, batch))
    ctx.results.append(result)
    if not result.success:
        for event in _failure_events(result):
            yield event
        return
    for path, changes in result.data["changes"].items():
        ctx.add_changes(path, changes)
    ctx.outcomes.extend(result.data["rejected"])
    yield ("status", result.output)
    for path in result.data["empty"]:
        yield ("status", f"No changes generated for {path}; skipping")

    # Stage 6: Apply
    if dry_run:
        yield ("status", "Computing changes (dry run)...")
    else:
        yield ("status", "Applying changes...")
    result = await _guard("apply", apply_stage(ctx, client, dry_run))
    ctx.results.append(result)
    if not result.success:
        for event in _failure_events(result):
            yield event
        return
    ctx.outcomes.extend(result.data["outcomes"])
    for outcome in ctx.outcomes:
        if outcome.applied:
            yield ("output", f"{outcome.message}: {outcome.path}")
        else:
            yield ("error", f"Rejected {outcome.path}: {outcome.message}")

    yield ("result", _build_final_summary(ctx))
