"""
Extractor - Advisory symbol extraction from Go sources and manifests.

Symbols are found with lightweight declaration patterns (keyword followed by
an identifier). They are informational only; queries never consult them.
"""

import re
from typing import List


# Package-level functions: func Name(
_FUNC_RE = re.compile(r"\bfunc\s+(\w+)\s*[\[(]")
# Methods: func (r *Receiver) Name(
_METHOD_RE = re.compile(r"\bfunc\s*\([^)]*\)\s*(\w+)\s*[\[(]")
_TYPE_RE = re.compile(r"\btype\s+(\w+)\s+")
_DECL_RE = re.compile(r"\b(?:const|var)\s+(\w+)\s*[=:\w]")

# go.mod: `module example.com/app`
_MODULE_RE = re.compile(r"^\s*module\s+(\S+)", re.MULTILINE)
# go.mod require lines (single or block form) and go.sum lines.
# Module paths always contain a dot in their first element.
_REQUIRE_RE = re.compile(
    r"^\s*(?:require\s+)?([A-Za-z0-9][\w\-~]*\.[\w.\-~/]+)\s+v\d",
    re.MULTILINE,
)


def extract_symbols(content: str) -> List[str]:
    """Extract declared identifiers from Go source, in file order."""
    matches = [
        match
        for pattern in (_FUNC_RE, _METHOD_RE, _TYPE_RE, _DECL_RE)
        for match in pattern.finditer(content)
    ]
    matches.sort(key=lambda match: match.start(1))
    return [match.group(1) for match in matches]


def extract_manifest_symbols(content: str) -> List[str]:
    """
    Extract module paths from go.mod or go.sum.

    Narrower than source extraction: only the module directive and
    required module paths, de-duplicated in first-seen order.
    """
    found: List[str] = []
    found.extend(match.group(1) for match in _MODULE_RE.finditer(content))
    found.extend(match.group(1) for match in _REQUIRE_RE.finditer(content))
    return list(dict.fromkeys(found))
