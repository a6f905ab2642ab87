"""Discovery engine: expands the known-file set from intent hints.

Two independent strategies feed one result set:

1. Path hints are resolved against the real project files
   (case-insensitive, fragments allowed).
2. Search terms are matched against the symbols extracted from every
   candidate file.

Path-based results always come before term-based results. Nothing already
known to the pipeline is ever returned, and no path is returned twice.
"""

import logging
from collections.abc import Collection, Iterable

from spaider import workspace
from spaider.models import FileContext, Intent
from spaider.symbols import SymbolIndex, TreeSitterSymbolIndex, expand_terms

logger = logging.getLogger(__name__)


def _match_hint(hint: str, project_paths: list[str]) -> list[str]:
    """Return the project paths a single hint refers to.

    Exact or trailing-segment matches win; a plain substring match is only
    used when the hint names no file exactly.
    """
    needle = workspace.normalize_path(hint).lower()
    if not needle:
        return []

    exact = [
        p for p in project_paths if p.lower() == needle or p.lower().endswith("/" + needle)
    ]
    if exact:
        return exact
    return [p for p in project_paths if needle in p.lower()]


def discover_from_paths(
    hints: Iterable[str],
    known_paths: Collection[str],
    project_root: str,
    project_paths: list[str] | None = None,
) -> list[str]:
    """Resolve hinted paths to real project files that are not yet known."""
    if project_paths is None:
        project_paths = workspace.list_project_paths(project_root)

    found: list[str] = []
    seen = set(known_paths)
    for hint in hints:
        for path in _match_hint(hint, project_paths):
            if path not in seen:
                seen.add(path)
                found.append(path)
    return found


def discover_from_search_terms(
    terms: Iterable[str],
    known_paths: Collection[str],
    project_root: str,
    symbol_index: SymbolIndex | None = None,
    project_paths: list[str] | None = None,
    max_results: int | None = None,
) -> list[str]:
    """Find unknown project files whose symbols match any search term.

    Files are ranked by the number of matching symbols, descending; ties keep
    the project listing order.
    """
    expanded = expand_terms(terms)
    if not expanded:
        return []

    index = symbol_index or TreeSitterSymbolIndex()
    if project_paths is None:
        project_paths = workspace.list_project_paths(project_root)

    known = set(known_paths)
    scored: list[tuple[int, int, str]] = []
    for position, path in enumerate(project_paths):
        if path in known:
            continue
        try:
            text = workspace.read_file(project_root, path)
        except OSError as e:
            logger.warning("Skipping unreadable file %s: %s", path, e)
            continue

        symbols = index.extract_symbols(text, path)
        hits = sum(
            1 for symbol in symbols if any(index.matches(t, symbol) for t in expanded)
        )
        if hits:
            scored.append((-hits, position, path))

    scored.sort()
    ranked = [path for _, _, path in scored]
    if max_results is not None:
        ranked = ranked[: max(max_results, 0)]
    return ranked


def discover(
    intent: Intent,
    known_paths: Collection[str],
    project_root: str,
    symbol_index: SymbolIndex | None = None,
    max_term_results: int | None = None,
) -> list[FileContext]:
    """Return new FileContexts for files hinted by *intent*.

    The returned files have no content; loading is left to whichever stage
    needs it. An empty list is a valid result.
    """
    project_paths = workspace.list_project_paths(project_root)
    discovered: list[str] = []

    if intent.file_paths:
        logger.debug("Discovering files based on paths:\n%s", "\n".join(intent.file_paths))
        discovered.extend(
            discover_from_paths(
                intent.file_paths, known_paths, project_root, project_paths=project_paths
            )
        )

    search_terms = [*intent.search_terms]
    if intent.description:
        search_terms.append(intent.description)

    if search_terms:
        logger.debug("Discovering files based on hints:\n%s", "\n".join(search_terms))
        discovered.extend(
            discover_from_search_terms(
                search_terms,
                known_paths,
                project_root,
                symbol_index=symbol_index,
                project_paths=project_paths,
                max_results=max_term_results,
            )
        )

    # Remove duplicates and paths that are already known, keeping order
    known = set(known_paths)
    unique = [p for p in dict.fromkeys(discovered) if p not in known]

    if unique:
        logger.info("Discovered new files:\n%s", "\n".join(unique))
    else:
        logger.info("Discovery found no new files")
    return [FileContext(path=p) for p in unique]
