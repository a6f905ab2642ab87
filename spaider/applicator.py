"""Change applicator: turns a file's change list into new file content.

Per file the outcome is either ``applied`` or ``rejected``:

- ``new_file``: the new code block is written verbatim, no backend call.
- ``delete_file``: the file is removed, no backend call.
- ``modify_file``: the backend rewrites the whole file with the
  modifications applied. Its answer becomes the new content as-is; nothing
  checks that untouched regions were preserved.
"""

import logging
from dataclasses import dataclass
from typing import Literal

from langchain_core.messages import HumanMessage, SystemMessage

from spaider import prompt, workspace
from spaider.completion import CompletionClient, strip_fences
from spaider.errors import SpaiderError, UnsupportedOperationError
from spaider.formatting import format_changes
from spaider.models import Change

logger = logging.getLogger(__name__)

_applicator_prompt = prompt.load_prompt("pipeline", "applicator")


@dataclass
class FileOutcome:
    """Terminal state of one file's change list."""

    path: str
    status: Literal["applied", "rejected"]
    operation: str = ""
    message: str = ""
    content: str | None = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"


async def apply_file_changes(
    client: CompletionClient,
    changes: list[Change],
    current_content: str,
) -> str:
    """Ask the backend to rewrite a file with *changes* applied.

    Returns the complete rewritten content, fence-stripped and trimmed.

    Raises:
        UnsupportedOperationError: If the first change is a deletion. Raised
            before any backend call.
        ValueError: If *changes* is empty.
    """
    if not changes:
        raise ValueError("No changes to apply")
    if changes[0].operation == "delete_file":
        raise UnsupportedOperationError(
            f"Deletion of {changes[0].file_path} cannot go through the modification path"
        )

    user = _applicator_prompt.render(
        content=current_content,
        modifications=format_changes(changes),
    )
    messages = [
        SystemMessage(content=_applicator_prompt.system),
        HumanMessage(content=user),
    ]
    logger.debug("Applicator prompt for %s:\n%s", changes[0].file_path, user)

    rewritten = await client.complete(messages, model_type=_applicator_prompt.model)
    return strip_fences(rewritten)


def _new_file_content(changes: list[Change]) -> str:
    blocks = [c.new_code_block for c in changes if c.new_code_block]
    return "\n".join(blocks)


async def apply_changes(
    client: CompletionClient,
    project_root: str,
    path: str,
    changes: list[Change],
    current_content: str | None,
    dry_run: bool = False,
) -> FileOutcome:
    """Apply one file's change list and report its terminal state.

    The first change decides the path taken. Failures reject this file only;
    they are logged and returned, never raised.
    """
    if not changes:
        return FileOutcome(path=path, status="rejected", message="No changes generated")

    operation = changes[0].operation
    for change in changes:
        if not change.is_consistent():
            logger.warning("Applying inconsistent %s change to %s", change.operation, path)

    try:
        if operation == "new_file":
            content = _new_file_content(changes)
            if not dry_run:
                workspace.write_file(project_root, path, content)
            return FileOutcome(
                path=path,
                status="applied",
                operation=operation,
                message="Created",
                content=content,
            )

        if operation == "delete_file":
            if not dry_run:
                workspace.delete_file(project_root, path)
            return FileOutcome(
                path=path, status="applied", operation=operation, message="Deleted"
            )

        content = await apply_file_changes(client, changes, current_content or "")
        if not dry_run:
            workspace.write_file(project_root, path, content)
        return FileOutcome(
            path=path,
            status="applied",
            operation=operation,
            message=f"Updated ({len(changes)} modifications)",
            content=content,
        )

    except (SpaiderError, OSError, workspace.WorkspaceViolationError) as e:
        logger.error("Rejected changes for %s: %s", path, e)
        return FileOutcome(
            path=path, status="rejected", operation=operation, message=str(e)
        )
