"""Lightweight structural parsing of source files into index elements."""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from .models import EntryType

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CAMEL_PARTS = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")
_MIN_KEYWORD_LENGTH = 3

_BRACE_LANGUAGES = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".go", ".rs", ".java", ".kt", ".c", ".cc", ".cpp", ".h", ".hpp", ".cs", ".swift"}

_DECLARATIONS: list[tuple[EntryType, re.Pattern[str]]] = [
    (
        "function",
        re.compile(r"^[ \t]*(?:export[ \t]+)?(?:default[ \t]+)?(?:async[ \t]+)?function(?:[ \t]*\*[ \t]*|[ \t]+)(\w+)", re.M),
    ),
    (
        "function",
        re.compile(
            r"^[ \t]*(?:export[ \t]+)?(?:const|let|var)[ \t]+(\w+)[ \t]*(?::[^=\n]+)?=[ \t]*(?:async[ \t]+)?(?:\([^)\n]*\)|\w+)[ \t]*(?::[^=\n]+)?=>",
            re.M,
        ),
    ),
    ("function", re.compile(r"^func[ \t]+(?:\([^)]*\)[ \t]*)?(\w+)", re.M)),
    ("function", re.compile(r"^[ \t]*(?:pub(?:\([^)]*\))?[ \t]+)?(?:async[ \t]+)?fn[ \t]+(\w+)", re.M)),
    (
        "class",
        re.compile(
            r"^[ \t]*(?:(?:export|default|abstract|public|private|protected|final|static|sealed)[ \t]+)*class[ \t]+(\w+)",
            re.M,
        ),
    ),
    ("class", re.compile(r"^[ \t]*(?:pub[ \t]+)?struct[ \t]+(\w+)", re.M)),
    ("class", re.compile(r"^type[ \t]+(\w+)[ \t]+struct\b", re.M)),
    ("interface", re.compile(r"^[ \t]*(?:(?:export|public|default)[ \t]+)*interface[ \t]+(\w+)", re.M)),
    ("interface", re.compile(r"^type[ \t]+(\w+)[ \t]+interface\b", re.M)),
    ("interface", re.compile(r"^[ \t]*(?:pub[ \t]+)?trait[ \t]+(\w+)", re.M)),
]


@dataclass(slots=True, frozen=True)
class ParsedElement:
    type: EntryType
    name: str
    line_start: int
    line_end: int
    text: str


def extract_keywords(text: str, *, extra: tuple[str, ...] = ()) -> frozenset[str]:
    """Lowercased identifiers of ``text`` plus their camelCase and snake_case parts."""

    keywords: set[str] = set()
    for token in list(_IDENTIFIER.findall(text)) + list(extra):
        if len(token) >= _MIN_KEYWORD_LENGTH:
            keywords.add(token.lower())
        for chunk in token.split("_"):
            for part in _CAMEL_PARTS.findall(chunk):
                if len(part) >= _MIN_KEYWORD_LENGTH:
                    keywords.add(part.lower())
    return frozenset(keywords)


def extract_elements(file_path: str, content: str) -> list[ParsedElement]:
    """Return a module element for the file followed by its symbol elements."""

    lines = content.splitlines()
    module = ParsedElement(
        type="module",
        name=file_path,
        line_start=1,
        line_end=max(len(lines), 1),
        text=content,
    )
    suffix = PurePosixPath(file_path).suffix.lower()
    if suffix == ".py":
        symbols = _python_elements(file_path, content, lines)
    elif suffix in _BRACE_LANGUAGES:
        symbols = _brace_elements(content)
    else:
        symbols = []
    symbols.sort(key=lambda element: (element.line_start, element.type, element.name))
    return [module, *symbols]


def _python_elements(file_path: str, content: str, lines: list[str]) -> list[ParsedElement]:
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError) as exc:
        logger.debug("Skipping symbol extraction", extra={"file_path": file_path, "error": str(exc)})
        return []

    elements: list[ParsedElement] = []
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            kind: EntryType = "function"
        elif isinstance(node, ast.ClassDef):
            kind = "class"
        else:
            continue
        start = min([node.lineno, *(decorator.lineno for decorator in node.decorator_list)])
        end = node.end_lineno or node.lineno
        elements.append(
            ParsedElement(
                type=kind,
                name=node.name,
                line_start=start,
                line_end=end,
                text="\n".join(lines[start - 1 : end]),
            )
        )
    return elements


def _brace_elements(content: str) -> list[ParsedElement]:
    elements: list[ParsedElement] = []
    seen: set[tuple[int, str]] = set()
    for kind, pattern in _DECLARATIONS:
        for match in pattern.finditer(content):
            start_index = match.start(1)
            line_start = content.count("\n", 0, start_index) + 1
            if (line_start, match.group(1)) in seen:
                continue
            seen.add((line_start, match.group(1)))
            end_index = _declaration_end(content, match.end())
            text = content[match.start() : end_index].strip("\n")
            elements.append(
                ParsedElement(
                    type=kind,
                    name=match.group(1),
                    line_start=line_start,
                    line_end=line_start + text.count("\n"),
                    text=text,
                )
            )
    return elements


def _declaration_end(content: str, index: int) -> int:
    """Index just past the body that starts on the declaration's line.

    Declarations whose line has no opening brace (expression-bodied arrow
    functions, forward declarations) end at the end of that line.
    """

    line_end = content.find("\n", index)
    if line_end == -1:
        line_end = len(content)
    brace = content.find("{", index, line_end)
    if brace == -1:
        return line_end

    depth = 0
    for position in range(brace, len(content)):
        char = content[position]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return position + 1
    return len(content)


__all__ = ["ParsedElement", "extract_elements", "extract_keywords"]
