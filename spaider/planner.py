"""Change planner: one overview per file before any code is generated.

The plan fixes each file's operation up front, so deletions and creations
can be handled without a generation call.
"""

import logging

from spaider import prompt
from spaider.completion import CompletionClient
from spaider.formatting import format_file_previews
from spaider.models import ChangeOverview, ChangeOverviews, FileContext, Intent
from spaider.workspace import normalize_path

logger = logging.getLogger(__name__)

_planner_prompt = prompt.load_prompt("pipeline", "planner")


async def prepare_changes(
    client: CompletionClient,
    intent: Intent,
    files: list[FileContext],
) -> list[ChangeOverview]:
    """Plan which files to create, delete or modify.

    Returns the overviews in the order the backend listed them, with at most
    one overview per file path.
    """
    user = _planner_prompt.render(
        description=intent.description,
        file_previews=format_file_previews(files, full=True),
    )
    logger.debug("Planner prompt:\n%s", user)

    response = await client.complete_structured(
        user=user,
        schema=ChangeOverviews,
        name="change-overviews",
        role=_planner_prompt.system,
        model_type=_planner_prompt.model,
    )

    overviews: list[ChangeOverview] = []
    seen: set[str] = set()
    for overview in response.overviews:
        path = normalize_path(overview.file_path)
        if not path or path in seen:
            logger.warning("Ignoring duplicate plan entry for %s", overview.file_path)
            continue
        seen.add(path)
        overviews.append(overview.model_copy(update={"file_path": path}))

    for overview in overviews:
        logger.info("Planned %s: %s", overview.operation, overview.file_path)
    return overviews
