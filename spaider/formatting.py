"""Render files, symbols and changes into prompt text."""

from spaider import config
from spaider.models import Change, FileContext


def truncate(text: str, max_len: int = 500) -> str:
    """Truncate text for display."""
    text = text.strip()
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def format_file_previews(
    files: list[FileContext], full: bool = False, max_chars: int | None = None
) -> str:
    """Render each file as a fenced block headed by its path.

    Files without content are listed by path only. Unless *full* is set,
    content is cut to *max_chars* (default ``config.PREVIEW_CHARS``).
    """
    if not files:
        return "(none)"

    limit = config.PREVIEW_CHARS if max_chars is None else max_chars
    blocks = []
    for fc in files:
        if fc.content is None:
            blocks.append(f"### {fc.path}\n(content not loaded)")
            continue
        content = fc.content if full else truncate(fc.content, limit)
        blocks.append(f"### {fc.path}\n```\n{content}\n```")
    return "\n\n".join(blocks)


def format_file_semantics(files: list[FileContext]) -> str:
    """List the extracted symbols of every file that has any."""
    lines = [
        f"- {fc.path}: {', '.join(sorted(fc.symbols))}" for fc in files if fc.symbols
    ]
    return "\n".join(lines) if lines else "(no symbols extracted)"


def format_changes(changes: list[Change]) -> str:
    """Render modification instructions for the applicator prompt."""
    blocks = []
    for i, change in enumerate(changes, start=1):
        parts = [f"{i}. {change.modification_type or change.operation}"]
        if change.modification_description:
            parts.append(f"Description: {change.modification_description}")
        if change.old_code_block:
            parts.append(f"Old code block:\n```\n{change.old_code_block}\n```")
        if change.new_code_block:
            parts.append(f"New code block:\n```\n{change.new_code_block}\n```")
        blocks.append("\n".join(parts))
    return "\n\n".join(blocks)
