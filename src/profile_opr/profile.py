"""Profile handle: the mutable pointer to a profile's current generation.

A profile is a symlink, e.g. ~/.nix-profile -> profile-3-link, and each
generation link points at an immutable profile tree in the store:

    profile -> profile-3-link -> <store>/<hash>-profile

Switching generations creates the next generation link and atomically
replaces the profile symlink. The store trees are never modified.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from common import ProfileError
from manifest import MANIFEST_FILE, ProfileManifest, load_manifest

logger = logging.getLogger(__name__)


class ProfileLinkError(ProfileError):
    """Profile pointer cannot be updated."""

    def __init__(self, message: str):
        super().__init__("E400", message)


class ProfileHandle:
    """A profile location, passed explicitly to every operation."""

    def __init__(self, path: Path):
        """Initialize handle.

        Args:
            path: Profile symlink (need not exist yet)
        """
        self.path = Path(os.path.abspath(os.path.expanduser(str(path))))
        self.name = self.path.name
        self.directory = self.path.parent
        self._generation_re = re.compile(rf'{re.escape(self.name)}-(\d+)-link')

    def __repr__(self) -> str:
        return f"ProfileHandle({str(self.path)!r})"

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILE

    def load_manifest(self) -> ProfileManifest:
        """Load the current manifest (empty for a fresh profile)."""
        return load_manifest(self.manifest_path)

    def current_target(self) -> Optional[str]:
        """Store path the profile currently points at, or None.

        Follows the profile link and generation links that live in the
        profile directory; stops at the first target outside it.
        """
        target = self.path
        if not target.is_symlink():
            return None
        for _ in range(16):
            if not (target.is_symlink() and target.parent == self.directory):
                break
            link = Path(os.readlink(target))
            target = link if link.is_absolute() else target.parent / link
        return str(target)

    def generations(self) -> list[tuple[int, str]]:
        """List (number, target) for every generation link, oldest first."""
        if not self.directory.is_dir():
            return []
        gens = []
        for entry in self.directory.iterdir():
            m = self._generation_re.fullmatch(entry.name)
            if m and entry.is_symlink():
                gens.append((int(m.group(1)), os.readlink(entry)))
        return sorted(gens)

    def update(self, store_path: str) -> Optional[int]:
        """Point the profile at `store_path` through a new generation.

        Returns:
            New generation number, or None if the profile already points there

        Raises:
            ProfileLinkError: If the profile path exists and is not a symlink,
                or the next generation link name is taken by something else
        """
        if self.current_target() == store_path:
            logger.info(f"Profile {self.path} already at {store_path}")
            return None

        if os.path.lexists(self.path) and not self.path.is_symlink():
            raise ProfileLinkError(f"profile '{self.path}' exists and is not a symlink")

        self.directory.mkdir(parents=True, exist_ok=True)
        gens = self.generations()
        number = gens[-1][0] + 1 if gens else 1
        gen_link = self.directory / f"{self.name}-{number}-link"
        if os.path.lexists(gen_link):
            raise ProfileLinkError(f"generation link '{gen_link}' already exists and is not a generation link")
        os.symlink(store_path, gen_link)

        tmp = self.directory / f".{self.name}-{os.getpid()}.tmp"
        if os.path.lexists(tmp):
            tmp.unlink()
        os.symlink(gen_link.name, tmp)
        os.replace(tmp, self.path)

        logger.info(f"Switched {self.path} to generation {number} ({store_path})")
        return number
