"""Profile element matchers.

A matcher selects manifest elements from a user-supplied token:
- "3" selects the element at position 3
- "/nix/store/...-hello-2.10" selects elements containing that store path
- anything else is a case-insensitive pattern that must match the whole
  attribute path of an element's provenance

A list of matchers selects the union of what each matcher selects; an empty
list selects nothing.
"""

import re
import string
from dataclasses import dataclass
from typing import Callable, Union

from common import ProfileError
from manifest import ManifestElement

_INDEX_RE = re.compile(r'[0-9]+')

# POSIX bracket classes and their bracket-body equivalents in `re`
POSIX_CLASSES = {
    'alpha': 'a-zA-Z',
    'digit': '0-9',
    'alnum': 'a-zA-Z0-9',
    'upper': 'A-Z',
    'lower': 'a-z',
    'space': r' \t\n\r\f\v',
    'blank': r' \t',
    'punct': re.escape(string.punctuation),
    'xdigit': '0-9A-Fa-f',
    'cntrl': r'\x00-\x1f\x7f',
    'print': r'\x20-\x7e',
    'graph': r'\x21-\x7e',
}


class InvalidPatternError(ProfileError):
    """Matcher token is neither an index, a store path nor a valid pattern."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__("E110", f"invalid element pattern '{pattern}': {reason}")


@dataclass(frozen=True)
class ByIndex:
    index: int

    def matches(self, element: ManifestElement, position: int) -> bool:
        return self.index == position


@dataclass(frozen=True)
class ByPath:
    path: str

    def matches(self, element: ManifestElement, position: int) -> bool:
        return self.path in element.store_paths


@dataclass(frozen=True)
class ByPattern:
    pattern: str
    regex: re.Pattern

    def matches(self, element: ManifestElement, position: int) -> bool:
        if element.source is None:
            return False
        return self.regex.fullmatch(element.source.attr_path) is not None


Matcher = Union[ByIndex, ByPath, ByPattern]


def translate_posix_classes(pattern: str) -> str:
    """Rewrite POSIX bracket classes ([[:alpha:]], [^[:digit:]_]) for `re`.

    Only `[:name:]` inside a bracket expression is rewritten; the rest of
    the pattern passes through unchanged.

    Raises:
        InvalidPatternError: On an unknown class name
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    in_bracket = False
    while i < n:
        c = pattern[i]
        if c == '\\' and i + 1 < n:
            out.append(pattern[i:i + 2])
            i += 2
            continue

        if not in_bracket:
            out.append(c)
            i += 1
            if c == '[':
                in_bracket = True
                if i < n and pattern[i] == '^':
                    out.append('^')
                    i += 1
                # A leading ']' is a literal member
                if i < n and pattern[i] == ']':
                    out.append('\\]')
                    i += 1
            continue

        if pattern.startswith('[:', i):
            end = pattern.find(':]', i + 2)
            if end != -1:
                name = pattern[i + 2:end]
                if name not in POSIX_CLASSES:
                    raise InvalidPatternError(pattern, f"unknown character class '{name}'")
                out.append(POSIX_CLASSES[name])
                i = end + 2
                continue

        if c == ']':
            in_bracket = False
        out.append(c)
        i += 1
    return ''.join(out)


def parse_matcher(token: str, is_store_path: Callable[[str], bool]) -> Matcher:
    """Classify a token as an index, a store path or a pattern.

    Args:
        token: Raw command line token
        is_store_path: Store path syntax check of the active store

    Raises:
        InvalidPatternError: If the token falls through to a pattern that does not compile
    """
    if _INDEX_RE.fullmatch(token):
        return ByIndex(int(token))
    if is_store_path(token):
        return ByPath(token)
    try:
        regex = re.compile(translate_posix_classes(token), re.IGNORECASE)
    except re.error as e:
        raise InvalidPatternError(token, str(e))
    return ByPattern(token, regex)


def parse_matchers(tokens: list[str], is_store_path: Callable[[str], bool]) -> list[Matcher]:
    """Parse every token up front, so a bad pattern fails before any work starts."""
    return [parse_matcher(t, is_store_path) for t in tokens]


def matches(element: ManifestElement, position: int, matchers: list[Matcher]) -> bool:
    """True if any matcher selects the element at `position`."""
    return any(m.matches(element, position) for m in matchers)
