"""Scrippet header parsing and identity derivation.

A scrippet may declare metadata in two header forms at the top of the file:

    # ---
    # id: focus-leaf
    # name: Focus Active Leaf
    # ---
    \"\"\"@desc: Focus the most recent leaf @owner: me\"\"\"

1. Front-matter: a YAML mapping inside a comment block delimited by "# ---"
2. Docstring: the module docstring, holding "@key: value" directives

Front-matter keys win over docstring directives. The docstring is only
looked for after the front-matter block ends.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import html
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from scrippets.storage import normalize_path

# Keys normalized case-insensitively; anything else passes through as written
RECOGNIZED_KEYS = ("id", "name", "description", "desc")

FRONT_MATTER_DELIMITER = re.compile(r"^#[ \t]*---[ \t]*$")
DOCSTRING = re.compile(r"(?P<quote>\"\"\"|''')(?P<body>.*?)(?P=quote)", re.DOTALL)
DIRECTIVE = re.compile(r"@([\w-]+)[ \t]*:[ \t]*([^@\r\n]*)")
DIRECTIVE_LABEL = re.compile(r"(@[\w-]+)(\s*:\s*)")
SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")
NAME_SEPARATORS = re.compile(r"[-_]+")


@dataclass(frozen=True)
class HeaderSpan:
    """Character offsets of a header block within the source."""
    start: int
    end: int


@dataclass
class ParsedHeader:
    """Result of parsing a scrippet header.

    metadata holds the merged record. The spans let update_scrippet_id()
    rewrite a header in place without touching the rest of the file.
    """
    metadata: Dict[str, Any] = field(default_factory=dict)
    front_matter: Optional[HeaderSpan] = None
    front_matter_data: Dict[str, Any] = field(default_factory=dict)
    docstring: Optional[HeaderSpan] = None


def _normalize_key(key: Any) -> Any:
    if isinstance(key, str) and key.strip().lower() in RECOGNIZED_KEYS:
        return key.strip().lower()
    return key


def _line_end(source: str, pos: int) -> int:
    """Offset just past the line starting at pos, newline included."""
    newline = source.find("\n", pos)
    return len(source) if newline == -1 else newline + 1


def _shebang_end(source: str) -> int:
    if source.startswith("#!"):
        return _line_end(source, 0)
    return 0


def _skip_blank_lines(source: str, pos: int) -> int:
    while pos < len(source):
        end = _line_end(source, pos)
        if source[pos:end].strip():
            break
        pos = end
    return pos


def _find_front_matter(source: str, pos: int) -> Optional[Tuple[HeaderSpan, str]]:
    """Locate a "# ---" delimited comment block starting at pos.

    Returns the block span and the YAML text with comment markers removed.
    """
    end = _line_end(source, pos)
    if not FRONT_MATTER_DELIMITER.match(source[pos:end].rstrip("\r\n")):
        return None

    lines: List[str] = []
    cursor = end
    while cursor < len(source):
        line_end = _line_end(source, cursor)
        line = source[cursor:line_end].rstrip("\r\n")
        if FRONT_MATTER_DELIMITER.match(line):
            return HeaderSpan(pos, line_end), "\n".join(lines)
        if not line.startswith("#"):
            return None
        content = line[1:]
        if content.startswith(" "):
            content = content[1:]
        lines.append(content)
        cursor = line_end
    return None


def _load_front_matter(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        return None
    return data


def parse_directives(block: str) -> Dict[str, str]:
    """Parse "@key: value" directives from a docstring body.

    Several directives may share a line; a value runs until the next
    directive or the end of the line. Empty values are skipped and the
    first occurrence of a key wins.
    """
    directives: Dict[str, str] = {}
    for match in DIRECTIVE.finditer(block):
        key = match.group(1).strip().lower()
        value = match.group(2).strip()
        if not key or not value:
            continue
        directives.setdefault(key, value)
    return directives


def parse_metadata(source: str) -> ParsedHeader:
    """Parse the header of a scrippet source.

    Args:
        source: Full scrippet source text.

    Returns:
        ParsedHeader with the merged metadata and header spans.
    """
    parsed = ParsedHeader()
    pos = _skip_blank_lines(source, _shebang_end(source))

    front_matter = _find_front_matter(source, pos)
    if front_matter is not None:
        span, text = front_matter
        data = _load_front_matter(text)
        if data is not None:
            parsed.front_matter = span
            parsed.front_matter_data = data
        # Directives are read after the block even if its YAML is unusable
        pos = _skip_blank_lines(source, span.end)

    docstring = DOCSTRING.match(source, pos)
    if docstring:
        parsed.docstring = HeaderSpan(docstring.start("body"), docstring.end("body"))
        parsed.metadata.update(parse_directives(docstring.group("body")))

    for key, value in parsed.front_matter_data.items():
        parsed.metadata[_normalize_key(key)] = value

    return parsed


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to "-", trim hyphens."""
    return SLUG_SEPARATORS.sub("-", str(value).lower().strip()).strip("-")


def get_basename(path: str) -> str:
    return posixpath.basename(normalize_path(path))


def get_stem(path: str) -> str:
    return posixpath.splitext(get_basename(path))[0]


def _explicit(metadata: Dict[str, Any], key: str) -> Optional[str]:
    value = metadata.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def to_identifier(path: str, metadata: Dict[str, Any]) -> str:
    """Derive the stable ID for a scrippet.

    Returns:
        The slug of the explicit id, else of the filename stem. An empty
        string means no usable identifier could be derived.
    """
    explicit = _explicit(metadata, "id")
    if explicit:
        return slugify(explicit)
    return slugify(get_stem(path))


def to_display_name(path: str, metadata: Dict[str, Any]) -> str:
    """Derive the display name: explicit name, else a prettified stem."""
    explicit = _explicit(metadata, "name")
    if explicit:
        return explicit
    base = NAME_SEPARATORS.sub(" ", get_stem(path))
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), base)


def get_description(metadata: Dict[str, Any]) -> Optional[str]:
    return _explicit(metadata, "description") or _explicit(metadata, "desc")


def build_header_snippet(source: str, max_lines: int = 10) -> str:
    """Render the first lines of a source as an HTML preview."""
    lines = source.splitlines()[:max_lines]
    if not lines:
        return ""
    rendered = [
        DIRECTIVE_LABEL.sub(r"<mark>\1</mark>\2", html.escape(line, quote=True))
        for line in lines
    ]
    return "<br>".join(rendered)


def _render_front_matter(data: Dict[str, Any]) -> str:
    dumped = yaml.safe_dump(
        data, sort_keys=False, default_flow_style=False, allow_unicode=True
    )
    lines = ["# ---"]
    for line in dumped.rstrip("\n").splitlines():
        lines.append(f"# {line}" if line else "#")
    lines.append("# ---")
    return "\n".join(lines) + "\n"


def _merge_id(data: Dict[str, Any], new_id: str) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    placed = False
    for key, value in data.items():
        if _normalize_key(key) == "id":
            if not placed:
                merged["id"] = new_id
                placed = True
            continue
        merged[key] = value
    if not placed:
        merged = {"id": new_id, **merged}
    return merged


def _rewrite_directive(body: str, new_id: str) -> str:
    for match in DIRECTIVE.finditer(body):
        if match.group(1).lower() != "id":
            continue
        value = match.group(2)
        trailing = value[len(value.rstrip()):]
        return f"{body[:match.start()]}@id: {new_id}{trailing}{body[match.end():]}"

    if not body.strip():
        return f"@id: {new_id}"
    if body.startswith(("\n", "\r\n")):
        return f"\n@id: {new_id}{body}"
    return f"@id: {new_id}\n{body}"


def update_scrippet_id(source: str, new_id: str) -> str:
    """Rewrite the ID declared in a scrippet header.

    Pure text transform:
    - front-matter present: merge the ID and re-serialize the block
    - docstring only: replace or insert the "@id:" directive
    - no header: prepend a minimal docstring header

    Args:
        source: Full scrippet source text.
        new_id: ID to write.

    Returns:
        The updated source text.
    """
    parsed = parse_metadata(source)

    if parsed.front_matter is not None:
        span = parsed.front_matter
        block = _render_front_matter(_merge_id(parsed.front_matter_data, new_id))
        return source[:span.start] + block + source[span.end:]

    if parsed.docstring is not None:
        span = parsed.docstring
        body = _rewrite_directive(source[span.start:span.end], new_id)
        return source[:span.start] + body + source[span.end:]

    insert_at = _shebang_end(source)
    header = f'"""\n@id: {new_id}\n"""\n'
    return source[:insert_at] + header + source[insert_at:]
