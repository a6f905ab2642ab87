"""Model-assisted narrowing of discovered context.

``filter_relevant_file_paths`` ranks discovered paths and drops the ones
unlikely to help. ``extract_relevant_code_blocks`` cuts a file down to the
parts that matter for the request.
"""

import logging

from langchain_core.messages import HumanMessage, SystemMessage

from spaider import prompt
from spaider.completion import CompletionClient, strip_fences
from spaider.models import FileContext, Intent, RelevantFilePaths
from spaider.workspace import normalize_path

logger = logging.getLogger(__name__)

_paths_prompt = prompt.load_prompt("pipeline", "relevant_paths")
_extract_prompt = prompt.load_prompt("pipeline", "extract_blocks")

_NOTHING_RELEVANT = {"null", "none"}


async def filter_relevant_file_paths(
    client: CompletionClient, intent: Intent, paths: list[str]
) -> list[str]:
    """Return the subset of *paths* relevant to *intent*, most relevant first.

    Paths the backend invents are dropped. An empty input makes no call.
    """
    if not paths:
        return []

    user = _paths_prompt.render(
        description=intent.description,
        paths="\n".join(f"- {p}" for p in paths),
    )
    response = await client.complete_structured(
        user=user,
        schema=RelevantFilePaths,
        name="relevant-file-paths",
        role=_paths_prompt.system,
        model_type=_paths_prompt.model,
    )

    allowed = set(paths)
    ranked: list[str] = []
    for path in response.file_paths:
        path = normalize_path(path)
        if path in allowed and path not in ranked:
            ranked.append(path)

    logger.info("Kept %d of %d discovered files", len(ranked), len(paths))
    return ranked


async def extract_relevant_code_blocks(
    client: CompletionClient, intent: Intent, file: FileContext
) -> str | None:
    """Return only the code of *file* that is relevant to *intent*.

    Returns None when the file has no content or nothing in it is relevant.
    """
    if not file.content:
        return None

    user = _extract_prompt.render(
        description=intent.description,
        search_terms=", ".join(intent.search_terms),
        path=file.path,
        content=file.content,
    )
    messages = [
        SystemMessage(content=_extract_prompt.system),
        HumanMessage(content=user),
    ]
    response = await client.complete(messages, model_type=_extract_prompt.model)
    content = strip_fences(response)

    lowered = content.lower().rstrip(".")
    if not content or lowered in _NOTHING_RELEVANT or lowered.startswith("no relevant"):
        return None
    return content
