"""
YAML frontmatter handling for markdown documents.

A document has frontmatter when its first line is exactly ``---`` and a
later line closes the block with ``---``.
"""

import logging
from typing import Any, Optional

import yaml


logger = logging.getLogger(__name__)

DELIMITER = "---"


def split_frontmatter(content: str) -> tuple[Optional[str], str]:
    """Split content into (raw frontmatter block, body).

    Returns (None, content) when the document does not open with a
    complete frontmatter block.
    """
    lines = content.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != DELIMITER:
        return None, content
    for i in range(1, len(lines)):
        if lines[i].rstrip("\r\n") == DELIMITER:
            return "".join(lines[1:i]), "".join(lines[i + 1:])
    return None, content


def parse_frontmatter(content: str) -> Optional[dict[str, Any]]:
    """
    Parse the frontmatter block of a document into a mapping.

    A block that is not valid YAML, or does not hold a mapping, counts as
    no frontmatter at all.
    """
    raw, _ = split_frontmatter(content)
    if raw is None:
        return None
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.debug("Ignoring unparseable frontmatter: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    return {str(k): v for k, v in data.items()}


def strip_frontmatter(content: str) -> str:
    """Return the document body without its frontmatter block."""
    _, body = split_frontmatter(content)
    return body
