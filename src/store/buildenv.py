"""Symlink-farm builder for profile trees.

Merges a list of store paths into a single directory of symlinks:
- A directory contributed by one package is linked as a whole
- When a second package contributes to the same directory, the link is
  replaced by a real directory and both packages are linked inside it
- File collisions are resolved by priority (lower number wins); equal
  priorities are an error unless both links point at the same file
- Packages listed in nix-support/propagated-user-env-packages are linked
  after the explicit ones, one priority step lower
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from common import ProfileError

logger = logging.getLogger(__name__)

# Package root entries that never appear in the merged tree
IGNORED_ROOT_ENTRIES = {
    'manifest.json',
    'manifest.nix',
    'nix-support',
    'propagated-build-inputs',
    'perllocal.pod',
    'log',
}
IGNORED_PATHS = {'share/info/dir'}

PROPAGATED_FILE = 'nix-support/propagated-user-env-packages'


class BuildEnvError(ProfileError):
    """Two packages provide the same file at the same priority."""

    def __init__(self, message: str):
        super().__init__("E302", message)


@dataclass(frozen=True)
class Package:
    """One tree builder input."""
    path: str
    active: bool = True
    priority: int = 5


class _TreeLinker:
    def __init__(self, out: Path):
        self.out = out
        self.priorities: dict[Path, int] = {}

    def link(self, src: Path, dst: Path, priority: int, rel: str = '') -> None:
        for entry in sorted(os.listdir(src)):
            entry_rel = f"{rel}/{entry}" if rel else entry
            if not rel and entry in IGNORED_ROOT_ENTRIES:
                continue
            if entry_rel in IGNORED_PATHS:
                continue

            src_file = src / entry
            dst_file = dst / entry

            if src_file.is_dir():
                if not os.path.lexists(dst_file):
                    os.symlink(src_file, dst_file)
                    self.priorities[dst_file] = priority
                    continue
                if dst_file.is_symlink():
                    previous = Path(os.readlink(dst_file))
                    if not previous.is_dir():
                        raise BuildEnvError(
                            f"collision between '{src_file}' and non-directory '{previous}'"
                        )
                    dst_file.unlink()
                    dst_file.mkdir()
                    self.link(previous, dst_file, self.priorities.pop(dst_file, priority), entry_rel)
                if not dst_file.is_dir():
                    raise BuildEnvError(f"collision between '{src_file}' and non-directory '{dst_file}'")
                self.link(src_file, dst_file, priority, entry_rel)
                continue

            if os.path.lexists(dst_file):
                if not dst_file.is_symlink():
                    raise BuildEnvError(f"collision between '{src_file}' and '{dst_file}'")
                target = Path(os.readlink(dst_file))
                if target == src_file:
                    continue
                previous_priority = self.priorities.get(dst_file, priority)
                if previous_priority == priority:
                    raise BuildEnvError(
                        f"packages '{src_file}' and '{target}' have the same priority {priority}; "
                        "remove one of them or give them different priorities"
                    )
                if previous_priority < priority:
                    continue
                dst_file.unlink()

            os.symlink(src_file, dst_file)
            self.priorities[dst_file] = priority


def _read_propagated(path: Path) -> list[str]:
    propagated = path / PROPAGATED_FILE
    if not propagated.is_file():
        return []
    return propagated.read_text(encoding='utf-8').split()


def build_profile(out: Path, packages: list[Package]) -> int:
    """Link every active package into `out`.

    Args:
        out: Existing, empty output directory
        packages: Tree inputs; processed in (priority, path) order

    Returns:
        Number of store paths linked (including propagated ones)

    Raises:
        BuildEnvError: On an unresolvable file collision
    """
    out = Path(out)
    linker = _TreeLinker(out)
    done: set[str] = set()
    postponed: set[str] = set()

    def add_pkg(path: str, priority: int) -> None:
        if path in done:
            return
        done.add(path)
        pkg_dir = Path(path)
        if not pkg_dir.is_dir():
            logger.warning(f"Skipping '{path}': not a directory")
            return
        linker.link(pkg_dir, out, priority)
        postponed.update(_read_propagated(pkg_dir))

    ordered = sorted((p for p in packages if p.active), key=lambda p: (p.priority, p.path))
    for pkg in ordered:
        add_pkg(pkg.path, pkg.priority)

    # Propagated packages get one priority step lower than the default
    priority = max((p.priority for p in ordered), default=5) + 1
    while postponed:
        batch = sorted(postponed - done)
        postponed.clear()
        for path in batch:
            add_pkg(path, priority)
        priority += 1

    logger.debug(f"Linked {len(done)} store path(s) into {out}")
    return len(done)
