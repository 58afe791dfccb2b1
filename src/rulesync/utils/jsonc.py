"""Helpers for reading JSON with comments (``.jsonc``)."""

import re

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments and trailing commas from JSONC text.

    String literals are left untouched, so ``"https://..."`` survives.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False

    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1

    return _remove_trailing_commas("".join(out))


def _remove_trailing_commas(text: str) -> str:
    # Only commas outside strings; split on string literals to protect them.
    parts = re.split(r'("(?:\\.|[^"\\])*")', text)
    for idx in range(0, len(parts), 2):
        parts[idx] = _TRAILING_COMMA.sub(r"\1", parts[idx])
    return "".join(parts)
