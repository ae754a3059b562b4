"""Lightweight Go source inspection for prompt construction.

The server stage shows the oracle the struct and interface types that protoc
generated, and on retry looks up docs for third-party imports. Neither needs a
full Go parser: top-level ``type`` declarations and import blocks are regular
enough to scan with a brace matcher that skips strings and comments.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

_TYPE_DECL_RE = re.compile(r'^type\s+(\w+)\s+(struct|interface)\s*\{', re.MULTILINE)
_IMPORT_SINGLE_RE = re.compile(r'^import\s+(?:[\w.]+\s+)?"([^"]+)"', re.MULTILINE)
_IMPORT_BLOCK_RE = re.compile(r'^import\s*\((.*?)\)', re.MULTILINE | re.DOTALL)
_IMPORT_LINE_RE = re.compile(r'^\s*(?:[\w.]+\s+)?"([^"]+)"', re.MULTILINE)


def _match_brace(source: str, open_index: int) -> Optional[int]:
    """Return the index of the brace closing the one at ``open_index``."""
    depth = 0
    i = open_index
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == '/' and source.startswith('//', i):
            nl = source.find('\n', i)
            i = n if nl == -1 else nl
            continue
        if ch == '/' and source.startswith('/*', i):
            end = source.find('*/', i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch == '`':
            end = source.find('`', i + 1)
            i = n if end == -1 else end + 1
            continue
        if ch in ('"', "'"):
            j = i + 1
            while j < n and source[j] != ch:
                j += 2 if source[j] == '\\' else 1
            i = j + 1
            continue
        if ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def extract_type_definitions(source: str) -> List[str]:
    """Collect top-level struct and interface declarations from Go source.

    Args:
        source: Go source text.

    Returns:
        Each declaration as written, e.g. ``type EchoRequest struct {...}``,
        in file order.
    """
    definitions = []
    for match in _TYPE_DECL_RE.finditer(source):
        open_index = match.end() - 1
        close_index = _match_brace(source, open_index)
        if close_index is None:
            logger.debug(f"Unbalanced braces in type {match.group(1)}, skipping")
            continue
        definitions.append(source[match.start():close_index + 1])
    return definitions


def extract_type_definitions_from_file(path: Path) -> List[str]:
    """Read a Go file and collect its struct and interface declarations.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    return extract_type_definitions(path.read_text(encoding='utf-8'))


def parse_imports(source: str) -> List[str]:
    """Return every import path declared in Go source, in order."""
    paths = [m.group(1) for m in _IMPORT_SINGLE_RE.finditer(source)]
    for block in _IMPORT_BLOCK_RE.finditer(source):
        paths.extend(m.group(1) for m in _IMPORT_LINE_RE.finditer(block.group(1)))
    return paths


def non_std_imports(source: str) -> List[str]:
    """Return imports that are not from the Go standard library.

    Standard library paths have no dot in them; relative imports start
    with one. Everything else is assumed to be a fetched module.
    """
    return [
        path for path in parse_imports(source)
        if '.' in path and not path.startswith('.')
    ]
