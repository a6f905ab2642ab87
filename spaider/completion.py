"""Single chokepoint for every language-model call.

``CompletionClient`` is built once at process start and handed to each
stage. It offers two operations:

- ``complete``: messages in, raw text out.
- ``complete_structured``: a JSON-only call whose response is fence-stripped,
  parsed and validated against a pydantic schema. Any parse or validation
  failure raises ``SchemaValidationError``; there is no automatic re-prompt.

Network failures and timeouts are retried by the OpenAI transport
(``max_retries``) and surface as ``TransportError`` once retries run out.
"""

import json
import logging
import re
from typing import Any, TypeVar

import openai
from langchain.chat_models import init_chat_model
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from spaider import config
from spaider.errors import SchemaValidationError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_ROLE = (
    "You are an AI assistant specialized in software development and code generation."
)

JSON_ONLY_INSTRUCTION = """\
You must respond with valid JSON that matches the provided schema.
Do not include any text outside the JSON response.
Do not wrap the JSON in markdown code blocks or use ``` formatting."""

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_LEADING_FENCE_RE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?```$")

_TRANSPORT_ERRORS = (openai.APIConnectionError, openai.APIStatusError)
_UNFINISHED_ERRORS = (openai.LengthFinishReasonError, openai.ContentFilterFinishReasonError)


def coerce_response_text(content) -> str:
    """Convert LLM response content to a string."""
    if content is None:
        return ""
    if isinstance(content, list):
        # Content blocks: keep the text parts only
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


def strip_fences(text: str) -> str:
    """Remove one leading and one trailing markdown code fence.

    Handles fences with or without a language tag and surrounding
    whitespace. Inner fences are left alone.
    """
    cleaned = text.strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def response_format_for(schema: type[BaseModel], name: str) -> dict[str, Any]:
    """Build an OpenAI ``json_schema`` response format for *schema*."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": schema.model_json_schema(by_alias=True),
        },
    }


def _partial_content(error: openai.OpenAIError) -> str:
    """Return whatever the backend produced before it stopped, if known."""
    completion = getattr(error, "completion", None)
    if completion is None or not completion.choices:
        return ""
    return coerce_response_text(completion.choices[0].message.content)


def _log_parse_failure(content: str, error: Exception) -> None:
    logger.error("=== JSON PARSING ERROR ===")
    logger.error("Full response content:\n%s", content)
    logger.error("Error: %s", error)
    if isinstance(error, json.JSONDecodeError):
        if "`" in content:
            logger.error("- Contains backticks (`) which are not valid in JSON")
        if "\n" in content and "\\n" not in content:
            logger.error("- Contains unescaped newlines")


class CompletionClient:
    """Backend client shared by every stage of one pipeline run."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model_provider: str = "openai",
        models: dict[str, str] | None = None,
        temperature: float = 0.0,
        max_tokens: int = 8000,
        timeout: float = 30.0,
        max_retries: int = 2,
        structured_output: bool = True,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.model_provider = model_provider
        self.models = dict(models or {})
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.structured_output = structured_output
        self._llms: dict[str, Any] = {}

    @classmethod
    def from_config(cls) -> "CompletionClient":
        """Build a client from the process-wide configuration."""
        return cls(
            base_url=config.LLM_BASE_URL,
            api_key=config.LLM_API_KEY,
            model_provider=config.LLM_MODEL_PROVIDER,
            models={
                "instruction": config.get_model_name("instruction"),
                "reasoning": config.get_model_name("reasoning"),
            },
            temperature=config.LLM_TEMPERATURE,
            max_tokens=config.LLM_MAX_TOKENS,
            timeout=config.LLM_REQUEST_TIMEOUT,
            max_retries=config.LLM_MAX_RETRIES,
            structured_output=config.LLM_STRUCTURED_OUTPUT,
        )

    def get_llm(self, model_type: str = "instruction"):
        """Return the chat model for *model_type*, building it on first use."""
        if model_type not in self._llms:
            model_name = self.models.get(model_type) or self.models.get("instruction")
            self._llms[model_type] = init_chat_model(
                model=model_name or "default",
                model_provider=self.model_provider,
                base_url=self.base_url,
                api_key=self.api_key,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._llms[model_type]

    async def _invoke(
        self, messages: list[BaseMessage], model_type: str, **kwargs: Any
    ) -> str:
        llm = self.get_llm(model_type)
        try:
            response = await llm.ainvoke(messages, **kwargs)
        except _TRANSPORT_ERRORS as e:
            logger.error("Backend request failed: %s", e)
            raise TransportError(f"Backend request failed: {e}") from e
        except _UNFINISHED_ERRORS as e:
            # Structured parsing refuses a reply cut short by length or filter
            logger.error("Backend response incomplete: %s", e)
            raise SchemaValidationError(
                f"Backend response incomplete: {e}", raw=_partial_content(e)
            ) from e
        return coerce_response_text(response.content)

    async def complete(
        self, messages: list[BaseMessage], model_type: str = "instruction"
    ) -> str:
        """Send *messages* and return the raw text of the response."""
        if not messages:
            raise ValueError("No messages for complete request")
        return await self._invoke(messages, model_type)

    async def complete_structured(
        self,
        user: str,
        schema: type[SchemaT],
        name: str,
        role: str | None = None,
        model_type: str = "instruction",
    ) -> SchemaT:
        """Issue one JSON-only request and validate the response against *schema*.

        Raises:
            SchemaValidationError: If the cleaned response is not valid JSON
                or does not satisfy the schema, or the backend stopped before
                finishing it.
            TransportError: If the backend could not be reached.
        """
        messages = [
            SystemMessage(content=f"{role or DEFAULT_SYSTEM_ROLE}\n{JSON_ONLY_INSTRUCTION}"),
            HumanMessage(content=user),
        ]

        kwargs: dict[str, Any] = {}
        if self.structured_output:
            kwargs["response_format"] = response_format_for(schema, name)

        raw = await self._invoke(messages, model_type, **kwargs)
        content = strip_fences(raw)

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            _log_parse_failure(content, e)
            raise SchemaValidationError(
                f"{name}: response is not valid JSON: {e}", raw=content
            ) from e

        try:
            return schema.model_validate(parsed)
        except ValidationError as e:
            _log_parse_failure(content, e)
            raise SchemaValidationError(
                f"{name}: response does not match schema: {e}", raw=content
            ) from e
