"""
Prompt loader — reads system prompts from the prompts/ directory.

Prompts live as plain text files named ``<name>.prompt.txt``. The loaded
text is wrapped in ``<system-rules>`` tags so the model can tell operator
instructions apart from the ``<user-query>`` block produced by moderation.

Lives in ingestion/ because it performs file I/O.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path("prompts")
PROMPT_SUFFIX = ".prompt.txt"


class PromptNotFoundError(LookupError):
    """Raised when a named prompt file does not exist or cannot be read."""


def prompt_path(name: str, prompts_dir: Path = DEFAULT_PROMPTS_DIR) -> Path:
    """Resolve the file for prompt ``name``, refusing names that escape the directory."""
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise PromptNotFoundError(f"Invalid prompt name {name!r}")
    return Path(prompts_dir) / f"{name}{PROMPT_SUFFIX}"


def load_prompt(name: str, prompts_dir: Path = DEFAULT_PROMPTS_DIR) -> str:
    """
    Load the system prompt ``name``.

    Args:
        name: Prompt name without suffix (e.g. ``"customer-support"``).
        prompts_dir: Directory holding the prompt files.

    Returns:
        ``<system-rules>{content}</system-rules>``

    Raises:
        PromptNotFoundError: If the file is missing or unreadable.
    """
    path = prompt_path(name, prompts_dir)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PromptNotFoundError(f"Failed to load prompt {name}: {exc}") from exc
    logger.debug("Loaded prompt %s (%d chars)", name, len(content))
    return f"<system-rules>{content}</system-rules>"
