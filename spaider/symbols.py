"""Symbol index: extracts named code identifiers and matches search terms.

Symbols (functions, classes, methods, exported names) are extracted with
tree-sitter for the languages we ship grammars for, and with a declaration
regex for other source files. Discovery only depends on the ``SymbolIndex``
protocol, so the matching algorithm is replaceable.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import tree_sitter_go
import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_rust
import tree_sitter_typescript
from tree_sitter import Language, Parser

if TYPE_CHECKING:
    import tree_sitter


class SymbolIndex(Protocol):
    """Pluggable capability used by discovery to rank files."""

    def extract_symbols(self, text: str, path: str | None = None) -> set[str]:
        """Extract candidate identifiers from *text*."""
        ...

    def matches(self, term: str, symbol: str) -> bool:
        """Return True if *term* plausibly refers to *symbol*."""
        ...


# ── Language detection ───────────────────────────────────────────────────

_EXTENSION_TO_LANGUAGE = {
    ".py": "python",
    ".pyw": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",  # TSX needs its own grammar
    ".go": "go",
    ".rs": "rust",
}

# Source files without a bundled grammar fall back to the declaration regex
_REGEX_EXTENSIONS = {
    ".java",
    ".kt",
    ".kts",
    ".scala",
    ".cs",
    ".c",
    ".h",
    ".cpp",
    ".hpp",
    ".cc",
    ".rb",
    ".php",
    ".swift",
    ".lua",
    ".dart",
    ".sh",
}

# Node types whose ``name`` field is a declared symbol
_DEFINITION_NODES = {
    "python": {"function_definition", "class_definition"},
    "javascript": {
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "method_definition",
        "variable_declarator",
    },
    "typescript": {
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "abstract_class_declaration",
        "method_definition",
        "variable_declarator",
        "interface_declaration",
        "type_alias_declaration",
        "enum_declaration",
    },
    "go": {"function_declaration", "method_declaration", "type_spec"},
    "rust": {
        "function_item",
        "struct_item",
        "enum_item",
        "trait_item",
        "type_item",
        "const_item",
        "static_item",
        "mod_item",
    },
}
_DEFINITION_NODES["tsx"] = _DEFINITION_NODES["typescript"]

_DECLARATION_RE = re.compile(
    r"\b(?:def|class|function|func|fn|interface|type|struct|enum|trait|"
    r"module|const|let|var|val)\s+([A-Za-z_$][\w$]*)"
)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_STOP_WORDS = {
    "the",
    "and",
    "for",
    "with",
    "this",
    "that",
    "from",
    "into",
    "onto",
    "are",
    "was",
    "were",
    "will",
    "should",
    "would",
    "could",
    "can",
    "has",
    "have",
    "when",
    "where",
    "which",
    "what",
    "all",
    "any",
    "each",
    "its",
    "not",
    "but",
    "use",
    "using",
    "make",
    "need",
    "needs",
    "file",
    "files",
    "code",
    "user",
    "request",
}

# Cached parsers keyed by language name
_parsers: dict[str, Parser] = {}


def _detect_language(path: str | None) -> str | None:
    """Detect language from file extension."""
    if not path:
        return None
    return _EXTENSION_TO_LANGUAGE.get(Path(path).suffix.lower())


def _get_parser(language: str) -> Parser:
    """Get or create a tree-sitter parser for the language."""
    if language in _parsers:
        return _parsers[language]

    if language == "python":
        lang_obj = Language(tree_sitter_python.language())
    elif language == "javascript":
        lang_obj = Language(tree_sitter_javascript.language())
    elif language == "typescript":
        lang_obj = Language(tree_sitter_typescript.language_typescript())
    elif language == "tsx":
        lang_obj = Language(tree_sitter_typescript.language_tsx())
    elif language == "go":
        lang_obj = Language(tree_sitter_go.language())
    elif language == "rust":
        lang_obj = Language(tree_sitter_rust.language())
    else:
        raise ValueError(f"No grammar for language: {language}")

    parser = Parser(lang_obj)
    _parsers[language] = parser
    return parser


def _iter_tree(node: tree_sitter.Node):
    """Iterate over all nodes in tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _get_node_text(node: tree_sitter.Node, source: bytes) -> str:
    """Extract text from a tree-sitter node."""
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def _python_module_assignments(root: tree_sitter.Node, source: bytes) -> set[str]:
    """Module-level ``NAME = ...`` assignments."""
    names: set[str] = set()
    for statement in root.children:
        if statement.type != "expression_statement":
            continue
        for child in statement.children:
            if child.type != "assignment":
                continue
            left = child.child_by_field_name("left")
            if left is not None and left.type == "identifier":
                names.add(_get_node_text(left, source))
    return names


def extract_with_tree_sitter(text: str, language: str) -> set[str]:
    """Extract declared symbol names from *text* parsed as *language*."""
    source = text.encode("utf-8")
    tree = _get_parser(language).parse(source)
    definitions = _DEFINITION_NODES[language]

    symbols: set[str] = set()
    for node in _iter_tree(tree.root_node):
        if node.type not in definitions:
            continue
        name_node = node.child_by_field_name("name")
        # Destructuring patterns and computed names are not symbols
        if name_node is None or not name_node.type.endswith("identifier"):
            continue
        symbols.add(_get_node_text(name_node, source))

    if language == "python":
        symbols |= _python_module_assignments(tree.root_node, source)
    return symbols


def extract_with_regex(text: str) -> set[str]:
    """Extract names that follow a declaration keyword."""
    return set(_DECLARATION_RE.findall(text))


def _squash(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def expand_terms(terms: Iterable[str]) -> list[str]:
    """Expand phrase terms into word tokens, keeping identifiers as-is.

    A term containing whitespace (e.g. an intent description) contributes its
    words of at least 3 characters that are not stop words. Order is kept and
    duplicates (case-insensitive) are dropped.
    """
    expanded: list[str] = []
    seen: set[str] = set()
    for term in terms:
        term = term.strip()
        if not term:
            continue
        if any(ch.isspace() for ch in term):
            candidates = [
                word
                for word in _IDENTIFIER_RE.findall(term)
                if len(word) >= 3 and word.lower() not in _STOP_WORDS
            ]
        else:
            candidates = [term]
        for candidate in candidates:
            key = candidate.lower()
            if key not in seen:
                seen.add(key)
                expanded.append(candidate)
    return expanded


class TreeSitterSymbolIndex:
    """Default symbol index backed by tree-sitter grammars."""

    def extract_symbols(self, text: str, path: str | None = None) -> set[str]:
        if not text:
            return set()
        language = _detect_language(path)
        if language is not None:
            return extract_with_tree_sitter(text, language)
        if path is None or Path(path).suffix.lower() in _REGEX_EXTENSIONS:
            return extract_with_regex(text)
        return set()

    def matches(self, term: str, symbol: str) -> bool:
        """A term matches when it occurs inside the symbol, ignoring case and
        word separators (``user service`` matches ``UserService``)."""
        needle = _squash(term)
        if not needle:
            return False
        return needle in _squash(symbol)
