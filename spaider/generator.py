"""Change generator: concrete edit instructions for planned files."""

import logging

from spaider import prompt
from spaider.completion import CompletionClient
from spaider.formatting import format_file_previews
from spaider.models import Change, ChangeOverview, Changes, FileContext, Intent
from spaider.workspace import normalize_path

logger = logging.getLogger(__name__)

_file_prompt = prompt.load_prompt("pipeline", "generator_file")
_batch_prompt = prompt.load_prompt("pipeline", "generator_batch")


def _normalized(changes: list[Change]) -> list[Change]:
    result = []
    for change in changes:
        change = change.model_copy(update={"file_path": normalize_path(change.file_path)})
        if not change.is_consistent():
            logger.warning(
                "Change for %s does not follow the %s rules",
                change.file_path,
                change.operation,
            )
        result.append(change)
    return result


async def generate_changes_for_file(
    client: CompletionClient,
    intent: Intent,
    file: FileContext,
    overview: ChangeOverview,
) -> list[Change]:
    """Generate the changes for one planned file.

    Changes that target another file or use an operation other than the
    planned one are discarded.
    """
    user = _file_prompt.render(
        description=intent.description,
        overview=overview.overview,
        operation=overview.operation,
        path=file.path,
        file_previews=format_file_previews([file], full=True),
    )
    logger.debug("Generator prompt for %s:\n%s", file.path, user)

    result = await client.complete_structured(
        user=user,
        schema=Changes,
        name="changes",
        role=_file_prompt.system,
        model_type=_file_prompt.model,
    )

    changes: list[Change] = []
    for change in _normalized(result.changes):
        if change.file_path != file.path:
            logger.warning(
                "Discarding change for %s while generating %s", change.file_path, file.path
            )
            continue
        if change.operation != overview.operation:
            logger.warning(
                "Discarding %s change for %s, planned %s",
                change.operation,
                file.path,
                overview.operation,
            )
            continue
        changes.append(change)
    return changes


async def generate_changes(
    client: CompletionClient,
    intent: Intent,
    files: list[FileContext],
) -> list[Change]:
    """Generate changes for the whole file set in a single call."""
    user = _batch_prompt.render(
        description=intent.description,
        file_previews=format_file_previews(files, full=True),
    )
    logger.debug("Batch generator prompt:\n%s", user)

    result = await client.complete_structured(
        user=user,
        schema=Changes,
        name="changes",
        role=_batch_prompt.system,
        model_type=_batch_prompt.model,
    )
    return _normalized(result.changes)
