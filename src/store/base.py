"""Store contract and shared store types.

A store holds immutable, content-addressed paths that are direct children of
its store directory. The profile engine needs only a narrow slice of it:
path syntax checks, batched builds, fixed-output path derivation and atomic
registration of a finished tree.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common import ProfileError
from store.hashing import (
    BASE32_CHARS,
    STORE_PATH_HASH_CHARS,
    make_store_path,
    make_type,
    to_base32,
)

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r'[A-Za-z0-9+\-._?=]+')


class StoreError(ProfileError):
    """Store operation failed."""

    def __init__(self, message: str, code: str = "E300"):
        super().__init__(code, message)


class BuildFailureError(StoreError):
    """A build batch did not complete."""

    def __init__(self, paths: list[str], detail: str = ''):
        self.paths = paths
        message = f"build of {', '.join(repr(p) for p in paths)} failed"
        if detail:
            message += f": {detail.strip()}"
        super().__init__(message, code="E301")


@dataclass(frozen=True, order=True)
class DerivedPath:
    """A derivation plus the outputs to build from it."""
    drv_path: str
    outputs: tuple[str, ...] = ('out',)

    def to_string(self) -> str:
        return f"{self.drv_path}!{','.join(self.outputs)}"


@dataclass
class ValidPathInfo:
    """Metadata registered alongside a store path.

    Attributes:
        path: Store path
        nar_hash: SHA-256 digest of the NAR serialisation
        nar_size: Size in bytes of the NAR serialisation
        references: Store paths this path refers to
        ca: Content-address descriptor (fixed:r:sha256:<base32>)
    """
    path: str
    nar_hash: bytes
    nar_size: int
    references: frozenset[str] = field(default_factory=frozenset)
    ca: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            'path': self.path,
            'narHash': 'sha256:' + to_base32(self.nar_hash),
            'narSize': self.nar_size,
            'references': sorted(self.references),
        }
        if self.ca is not None:
            d['ca'] = self.ca
        return d


def make_fixed_output_ca(recursive: bool, digest: bytes) -> str:
    method = 'r:' if recursive else ''
    return f"fixed:{method}sha256:{to_base32(digest)}"


class Store(ABC):
    """Base class for stores consumed by the profile engine."""

    def __init__(self, store_dir: Path):
        self.store_dir = str(store_dir).rstrip('/') or '/'

    def is_store_path(self, path: str) -> bool:
        """True if `path` is syntactically a top-level store path.

        The path must be a direct child of the store directory, named
        `<32 nix-base32 chars>-<name>`.
        """
        prefix = self.store_dir + '/'
        if not path.startswith(prefix):
            return False
        base = path[len(prefix):]
        if '/' in base or len(base) < STORE_PATH_HASH_CHARS + 2:
            return False
        digest, dash, name = base[:STORE_PATH_HASH_CHARS], base[STORE_PATH_HASH_CHARS], base[STORE_PATH_HASH_CHARS + 1:]
        if dash != '-' or any(c not in BASE32_CHARS for c in digest):
            return False
        return bool(_NAME_RE.fullmatch(name)) and not name.startswith('.')

    def make_fixed_output_path(
        self,
        recursive: bool,
        nar_hash: bytes,
        name: str,
        references: frozenset[str] = frozenset(),
    ) -> str:
        """Derive the path of a recursive SHA-256 content-addressed object."""
        if not recursive:
            raise StoreError("only recursive SHA-256 fixed-output paths are supported")
        if not _NAME_RE.fullmatch(name) or name.startswith('.'):
            raise StoreError(f"store path name '{name}' is invalid")
        return make_store_path(self.store_dir, make_type('source', references), nar_hash, name)

    @abstractmethod
    def is_valid_path(self, path: str) -> bool:
        """True if `path` is present in the store."""

    @abstractmethod
    def build_paths(self, paths: set[DerivedPath]) -> None:
        """Build every requested output in one batch.

        Raises:
            BuildFailureError: If any output fails to build
        """

    @abstractmethod
    def add_to_store(self, info: ValidPathInfo, source: Path) -> str:
        """Register the tree at `source` as the immutable object `info.path`."""
