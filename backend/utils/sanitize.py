"""
Chat and prompt text sanitisation.

Everything a player types, and everything an AI player produces, is reduced to
letters, digits, whitespace and a small punctuation allow-list before it is
shown to other players or spliced into a prompt.
"""
import re
from typing import Optional

# Punctuation allowed in chat lines ('/' keeps commands intact)
CHAT_CHARS = ".,!?'\"-:;()/@#&+=*%$"
# Punctuation allowed in prompt templates ({guess} placeholder included)
PROMPT_CHARS = CHAT_CHARS + "{}[]_\n"

MAX_USERNAME_LENGTH = 24
MAX_AI_NAME_LENGTH = 20


def sanitize_message(
    message: str,
    allowed_punctuation: str = "",
    max_length: Optional[int] = None,
) -> str:
    """Trim, cut to max_length, then drop every character outside the allow-list."""
    message = (message or "").strip()
    if max_length is not None:
        message = message[:max_length]
    pattern = re.compile(r"[^a-zA-Z0-9\s" + re.escape(allowed_punctuation) + r"]")
    return pattern.sub("", message)


def parse_command(message: str) -> Optional[tuple]:
    """
    Split "/name value" at the first space.

    Returns (name, value) where value may be "" (usage error), or None when the
    line is not a well-formed command at all.
    """
    if not message.startswith("/"):
        return None
    space = message.find(" ")
    if space == -1:
        name = message[1:]
        return (name, "") if name else None
    name = message[1:space]
    if not name:
        return None
    return name, message[space + 1:].strip()
