"""Text sanitizers — clean terminal output before it reaches callers."""

from __future__ import annotations

import re

# OSC must be tried before the two-byte escapes: "]" falls in their range.
_ANSI_RE = re.compile(
    r"""
    \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)    # OSC ... BEL / ST (incl. shell integration)
    | (?:\x1b\[|\x9b)[0-?]*[ -/]*[@-~]     # CSI
    | \x1b[@-Z\\^_]                        # two-byte escapes
    """,
    re.VERBOSE,
)
_LINE_ENDINGS_RE = re.compile(r"\r\n")
_STANDALONE_CR_RE = re.compile(r"\r")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x09\x0b-\x1f\x7f-\x9f]")
_PROMPT_CHARS_RE = re.compile(r"[%$#>]\s*$")


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def sanitize_output(text: str) -> str:
    """Normalize line endings and drop control characters.

    Printable Unicode is preserved. Newlines survive; tabs and every other
    C0/C1 control character do not.
    """
    text = _LINE_ENDINGS_RE.sub("\n", text)
    text = _STANDALONE_CR_RE.sub("", text)
    text = _CONTROL_CHARS_RE.sub("", text)
    return text.strip()


def sanitize_lines(lines: list[str]) -> list[str]:
    """Clean each line and drop the ones left empty.

    Trailing shell-prompt characters (``%``, ``$``, ``#``, ``>``) are
    removed along with any whitespace after them.
    """
    cleaned = []
    for line in lines:
        line = _PROMPT_CHARS_RE.sub("", line)
        line = _CONTROL_CHARS_RE.sub("", line).strip()
        if line:
            cleaned.append(line)
    return cleaned


def sanitize_user_input(text: str) -> str:
    """Normalize line endings and strip control chars except newline."""
    text = _LINE_ENDINGS_RE.sub("\n", text)
    text = _CONTROL_CHARS_RE.sub("", text)
    return text.strip()


def sanitize_terminal_output(text: str) -> str:
    """Strip ANSI sequences and turn every line ending into ``\\n``."""
    text = strip_ansi(text)
    text = _LINE_ENDINGS_RE.sub("\n", text)
    text = _STANDALONE_CR_RE.sub("\n", text)
    return text.strip()


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        # Keep: printable, tab, newline, carriage return
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            # Skip C0 controls (except above), C1 controls, and format chars
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)
