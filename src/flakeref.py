"""Flake references and installable parsing.

Supported flake reference forms:
- flake:<id>[/<ref>][/<rev>] or <id>[/<ref>][/<rev>]  (indirect, via registry)
- github:<owner>/<repo>[/<ref-or-rev>]
- path:<path>, /abs/path, ./rel/path
- git+<url>
- http(s)://<url>  (tarball)

Any form may carry query parameters (?ref=...&rev=...&narHash=...). A
reference is immutable (locked) when it pins a rev or a narHash.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Union
from urllib.parse import parse_qsl, urlencode

from common import ProfileError

_ID_RE = r'[a-zA-Z][a-zA-Z0-9_-]*'
_REF_RE = r'[a-zA-Z0-9@][a-zA-Z0-9_.@-]*'
_REV_RE = r'[0-9a-fA-F]{40}'

_INDIRECT_RE = re.compile(rf'(?:flake:)?({_ID_RE})(?:/({_REF_RE}))?(?:/({_REV_RE}))?')
_GITHUB_RE = re.compile(rf'github:([a-zA-Z0-9_.-]+)/([a-zA-Z0-9_.-]+)(?:/({_REF_RE}))?')
_REV_ONLY_RE = re.compile(_REV_RE)

_SCHEMES = ('flake:', 'github:', 'path:', 'git+', 'http://', 'https://')

DEFAULT_ATTR = 'defaultPackage'


class FlakeRefError(ProfileError):
    """Flake reference could not be parsed."""

    def __init__(self, ref: str, reason: str = 'unrecognised flake reference'):
        self.ref = ref
        super().__init__("E203", f"{reason}: '{ref}'")


@dataclass
class FlakeRef:
    """A parsed flake reference.

    Attributes:
        type: indirect, github, path, git or tarball
        attrs: Type-specific attributes plus query parameters
    """
    type: str
    attrs: dict[str, str] = field(default_factory=dict)

    @property
    def is_indirect(self) -> bool:
        return self.type == 'indirect'

    def is_immutable(self) -> bool:
        """True if the reference pins an exact revision or content hash."""
        return 'rev' in self.attrs or 'narHash' in self.attrs

    def to_string(self) -> str:
        """Canonical string form; parse(to_string()) round-trips."""
        attrs = dict(self.attrs)

        if self.type == 'indirect':
            url = 'flake:' + attrs.pop('id')
            if 'ref' in attrs:
                url += '/' + attrs.pop('ref')
            if 'rev' in attrs:
                url += '/' + attrs.pop('rev')
        elif self.type == 'github':
            url = f"github:{attrs.pop('owner')}/{attrs.pop('repo')}"
            if 'rev' in attrs:
                url += '/' + attrs.pop('rev')
            elif 'ref' in attrs:
                url += '/' + attrs.pop('ref')
        elif self.type == 'path':
            url = 'path:' + attrs.pop('path')
        elif self.type == 'git':
            url = 'git+' + attrs.pop('url')
        elif self.type == 'tarball':
            url = attrs.pop('url')
        else:
            raise FlakeRefError(self.type, 'unknown flake reference type')

        if attrs:
            url += '?' + urlencode(sorted(attrs.items()), safe='/:')
        return url

    def __str__(self) -> str:
        return self.to_string()

    @classmethod
    def parse(cls, text: str, base_dir: Optional[str] = None) -> 'FlakeRef':
        """Parse a flake reference string.

        Args:
            text: Reference text
            base_dir: Directory relative paths are resolved against (default: cwd)

        Raises:
            FlakeRefError: If the text is not a recognised reference
        """
        url, _, query = text.partition('?')
        params = dict(parse_qsl(query, keep_blank_values=True)) if query else {}

        if url.startswith('github:'):
            m = _GITHUB_RE.fullmatch(url)
            if not m:
                raise FlakeRefError(text)
            attrs = {'owner': m.group(1), 'repo': m.group(2)}
            if m.group(3):
                key = 'rev' if _REV_ONLY_RE.fullmatch(m.group(3)) else 'ref'
                attrs[key] = m.group(3)
            return cls('github', {**params, **attrs})

        if url.startswith('path:') or url.startswith('/') or url.startswith('.'):
            path = url[len('path:'):] if url.startswith('path:') else url
            if not path:
                raise FlakeRefError(text)
            if not os.path.isabs(path):
                path = os.path.normpath(os.path.join(base_dir or os.getcwd(), path))
            return cls('path', {**params, 'path': path})

        if url.startswith('git+'):
            if len(url) <= len('git+'):
                raise FlakeRefError(text)
            return cls('git', {**params, 'url': url[len('git+'):]})

        if url.startswith(('http://', 'https://')):
            return cls('tarball', {**params, 'url': url})

        m = _INDIRECT_RE.fullmatch(url)
        if m:
            attrs = {'id': m.group(1)}
            ref, rev = m.group(2), m.group(3)
            if ref and not rev and _REV_ONLY_RE.fullmatch(ref):
                ref, rev = None, ref
            if ref:
                attrs['ref'] = ref
            if rev:
                attrs['rev'] = rev
            return cls('indirect', {**params, **attrs})

        raise FlakeRefError(text)


@dataclass
class InstallableFlake:
    """A flake plus candidate attribute paths to evaluate in it."""
    text: str
    flake_ref: FlakeRef
    attr_paths: list[str]


@dataclass
class InstallableStorePath:
    """A store path given directly on the command line."""
    text: str


@dataclass
class InstallableAttrPath:
    """An attribute path with no flake (e.g. 'hello')."""
    text: str


Installable = Union[InstallableFlake, InstallableStorePath, InstallableAttrPath]


def candidate_attr_paths(fragment: str, system: str) -> list[str]:
    """Attribute paths tried, in order, for a fragment like 'hello'."""
    if fragment == DEFAULT_ATTR:
        return [f"{DEFAULT_ATTR}.{system}"]
    return [
        f"packages.{system}.{fragment}",
        f"legacyPackages.{system}.{fragment}",
        fragment,
    ]


def parse_installable(
    text: str,
    is_store_path: Callable[[str], bool],
    system: str,
) -> Installable:
    """Classify a command line token.

    - A store path is an InstallableStorePath
    - `<flakeref>#<attr>` or a bare flake URL is an InstallableFlake
    - Anything else is an InstallableAttrPath

    Raises:
        FlakeRefError: If the part before '#' is not a valid flake reference
    """
    if is_store_path(text):
        return InstallableStorePath(text)

    if '#' in text:
        ref_text, _, fragment = text.partition('#')
        if not ref_text:
            raise FlakeRefError(text, 'missing flake reference')
        return InstallableFlake(
            text,
            FlakeRef.parse(ref_text),
            candidate_attr_paths(fragment or DEFAULT_ATTR, system),
        )

    if text.startswith(_SCHEMES):
        return InstallableFlake(text, FlakeRef.parse(text), candidate_attr_paths(DEFAULT_ATTR, system))

    return InstallableAttrPath(text)
