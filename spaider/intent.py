"""Intent analyzer: the first model call of every pipeline run.

Classifies the request as an edit or an informational question, restates it
as the canonical task description used by every later stage, and expands
file-path and search-term hints for discovery.
"""

import logging

from spaider import prompt
from spaider.completion import CompletionClient
from spaider.formatting import format_file_previews, format_file_semantics
from spaider.models import FileContext, Intent

logger = logging.getLogger(__name__)

_intent_prompt = prompt.load_prompt("pipeline", "intent")


def restrict_search_terms(terms: list[str], files: list[FileContext]) -> list[str]:
    """Keep only terms that occur in the extracted symbols, preserving order."""
    haystack = "\n".join(s for fc in files for s in fc.symbols).lower()
    kept: list[str] = []
    for term in terms:
        cleaned = term.strip()
        if cleaned and cleaned.lower() in haystack and cleaned not in kept:
            kept.append(cleaned)
    return kept


async def analyze_intent(
    client: CompletionClient,
    user_prompt: str,
    files: list[FileContext],
) -> Intent:
    """Analyze the user request against the currently known files.

    Args:
        client: The completion client for this run.
        user_prompt: The raw user request.
        files: Every known file, with content where it has been loaded.

    Returns:
        The validated Intent. Search terms that do not occur in the symbol
        summary are dropped.

    Raises:
        SchemaValidationError: If the response does not match the schema.
        TransportError: If the backend could not be reached.
    """
    user = _intent_prompt.render(
        user_prompt=user_prompt,
        file_previews=format_file_previews(files),
        symbol_summary=format_file_semantics(files),
    )
    logger.debug("Intent prompt:\n%s", user)

    intent = await client.complete_structured(
        user=user,
        schema=Intent,
        name="intent",
        role=_intent_prompt.system,
        model_type=_intent_prompt.model,
    )

    search_terms = restrict_search_terms(intent.search_terms, files)
    if search_terms != intent.search_terms:
        dropped = [t for t in intent.search_terms if t not in search_terms]
        logger.info("Dropped search terms not found in symbols: %s", ", ".join(dropped))
        intent = intent.model_copy(update={"search_terms": search_terms})

    logger.info("searchTerms: %s", ", ".join(intent.search_terms))
    return intent
