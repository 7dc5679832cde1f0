"""Resolve environment-variable placeholders in quoted config strings."""

import os
import re
from typing import List, Mapping, Optional

from ..errors import ConfigurationError

_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Lexical states while scanning
_OUTSIDE = "outside"
_COMMENT = "comment"
_BASIC = '"'
_ML_BASIC = '"""'
_LITERAL = "'"
_ML_LITERAL = "'''"


def _escape_basic(value: str) -> str:
    """Escape a value for a double-quoted (TOML basic / YAML) string."""
    out = []
    for ch in value:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


class SecretResolver:
    """
    Substitute ``$NAME`` and ``${NAME}`` placeholders inside quoted strings.

    The scan follows TOML/YAML lexical rules closely enough to know
    whether a ``$`` sits inside a string literal: comments and unquoted
    text are copied untouched, backslash escapes in double-quoted strings
    are copied verbatim (so ``\\"`` never ends the string), and
    substituted values are escaped for the literal they land in so the
    decoder yields the exact environment value.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize secret resolver.

        Args:
            environ: Variable source (process environment if omitted)
        """
        self.environ = os.environ if environ is None else environ

    def resolve(self, text: str) -> str:
        """
        Return ``text`` with every placeholder replaced.

        Raises:
            ConfigurationError: If a variable is unset, or its value cannot
                be represented in a single-quoted literal
        """
        out: List[str] = []
        missing: List[str] = []
        state = _OUTSIDE
        i = 0
        n = len(text)

        while i < n:
            ch = text[i]

            if state == _OUTSIDE:
                if ch == "#":
                    state = _COMMENT
                elif text.startswith('"""', i) or text.startswith("'''", i):
                    state = _ML_BASIC if ch == '"' else _ML_LITERAL
                    out.append(text[i:i + 3])
                    i += 3
                    continue
                elif ch in ('"', "'"):
                    state = _BASIC if ch == '"' else _LITERAL
                out.append(ch)
                i += 1

            elif state == _COMMENT:
                if ch == "\n":
                    state = _OUTSIDE
                out.append(ch)
                i += 1

            elif ch == "\\" and state in (_BASIC, _ML_BASIC):
                out.append(text[i:i + 2])
                i += 2

            elif text.startswith(state, i):
                out.append(state)
                i += len(state)
                state = _OUTSIDE

            elif ch == "\n" and state in (_BASIC, _LITERAL):
                # Unterminated single-line string; let the decoder report it
                state = _OUTSIDE
                out.append(ch)
                i += 1

            elif ch == "$":
                consumed, name = self._match_placeholder(text, i)
                if name is None:
                    out.append(ch)
                    i += 1
                    continue
                value = self.environ.get(name)
                if value is None:
                    missing.append(name)
                else:
                    out.append(self._escape(name, value, state))
                i += consumed

            else:
                out.append(ch)
                i += 1

        if missing:
            names = ", ".join(dict.fromkeys(missing))
            raise ConfigurationError(f"environment variable(s) not set: {names}")

        return "".join(out)

    @staticmethod
    def _match_placeholder(text: str, i: int):
        """Return (length, name) of the placeholder at ``text[i]``, or (1, None)."""
        if text.startswith("${", i):
            end = text.find("}", i + 2)
            if end != -1 and _NAME.fullmatch(text, i + 2, end):
                return end + 1 - i, text[i + 2:end]
            return 1, None

        match = _NAME.match(text, i + 1)
        if match is None:
            return 1, None
        return match.end() - i, match.group(0)

    @staticmethod
    def _escape(name: str, value: str, state: str) -> str:
        if state in (_BASIC, _ML_BASIC):
            return _escape_basic(value)

        if "'" in value or (state == _LITERAL and ("\n" in value or "\r" in value)):
            raise ConfigurationError(
                f"environment variable {name} cannot be substituted into a "
                "single-quoted string; use double quotes"
            )
        return value


def resolve_secrets(text: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Resolve placeholders in ``text`` against ``environ`` (or os.environ)."""
    return SecretResolver(environ).resolve(text)
