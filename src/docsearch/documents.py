"""Helpers that turn raw markdown into SourceDocument objects.

Directory scanning itself happens elsewhere; these functions only derive the
metadata (title, overview) the indexer and the text-search fallback rely on.
"""

from pathlib import PurePosixPath

from docsearch.models import SourceDocument

OVERVIEW_HEADING = "## Overview"


def extract_title(content: str, fallback: str) -> str:
    """Return the text of the first level-1 heading, or ``fallback``.

    Example:
        >>> extract_title("intro\\n# Setup Guide\\n", "README.md")
        'Setup Guide'
    """
    for line in content.split("\n"):
        if line.startswith("# "):
            return line.removeprefix("# ").strip()
    return fallback


def extract_overview(content: str) -> str:
    """Extract the first paragraph after an ``## Overview`` heading.

    Blank lines directly after the heading are skipped; collection stops at the
    next heading or blank line. Lines are joined with single spaces.

    Args:
        content: Markdown content

    Returns:
        The overview paragraph, or "" when the document has none
    """
    found = False
    lines: list[str] = []

    for line in content.split("\n"):
        stripped = line.strip()

        if not found:
            found = stripped.startswith(OVERVIEW_HEADING)
            continue

        if not stripped and not lines:
            continue
        if (stripped.startswith("#") or not stripped) and lines:
            break
        if stripped:
            lines.append(stripped)

    return " ".join(lines)


def source_document_from_markdown(
    relative_path: str, content: str, source_name: str = ""
) -> SourceDocument:
    """Build a SourceDocument from a file's relative path and content.

    The title falls back to ``<dir>/<file name>`` (or just the file name at the
    source root) when the document has no level-1 heading.

    Args:
        relative_path: Path relative to the source root
        content: Raw markdown content
        source_name: Name of the configured source directory

    Returns:
        Validated SourceDocument
    """
    path = PurePosixPath(relative_path)
    parent = str(path.parent)
    fallback = path.name if parent == "." else f"{parent}/{path.name}"

    return SourceDocument(
        relative_path=relative_path,
        title=extract_title(content, fallback),
        content=content,
        overview=extract_overview(content),
        source_name=source_name,
    )
