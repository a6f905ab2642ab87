"""Answer informational requests without touching any file."""

import logging

from langchain_core.messages import HumanMessage, SystemMessage

from spaider import prompt
from spaider.completion import CompletionClient
from spaider.formatting import format_file_previews
from spaider.models import FileContext, Intent

logger = logging.getLogger(__name__)

_answer_prompt = prompt.load_prompt("pipeline", "answer")


async def generate_answer(
    client: CompletionClient, intent: Intent, files: list[FileContext]
) -> str:
    """Answer the request described by *intent* from the analyzed files."""
    user = _answer_prompt.render(
        description=intent.description,
        file_previews=format_file_previews(files, full=True),
    )
    logger.debug("Answer prompt:\n%s", user)

    messages = [
        SystemMessage(content=_answer_prompt.system),
        HumanMessage(content=user),
    ]
    response = await client.complete(messages, model_type=_answer_prompt.model)
    return response.strip()
