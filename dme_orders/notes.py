"""
Reading physician notes from disk.

Notes arrive either as plain text or as a small JSON document wrapping the
text under one of a few known keys. The extraction core only ever sees the
unwrapped text.
"""
import json
import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

NOTE_KEYS = ("note", "physician_note", "text", "content")


def decode_note(content: str, filename: str = "") -> str:
    """
    Unwrap a JSON note; anything else is returned unchanged.

    JSON is only attempted for `.json` files or content that looks like an
    object. Invalid JSON, or JSON without a known string key, yields the
    content as given.
    """
    stripped = content.strip()
    if not (filename.lower().endswith(".json") or stripped.startswith("{")):
        return content

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("Note %s is not valid JSON, treating as plain text", filename or "<inline>")
        return content

    if isinstance(data, dict):
        for key in NOTE_KEYS:
            value = data.get(key)
            if isinstance(value, str):
                return value
    return content


def read_note(path: Union[str, Path]) -> str:
    """
    Read a note file as UTF-8 and unwrap it.

    Raises:
        FileNotFoundError: If the path does not exist
    """
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    logger.info("Read note %s (%d characters)", path.name, len(content))
    return decode_note(content, path.name)
