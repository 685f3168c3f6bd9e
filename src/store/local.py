"""Directory-backed store.

Store paths live directly under `store_dir`; registered path info is kept as
JSON under `<state_dir>/info/<basename>.json`. Builds are delegated to an
external build command that accepts `drv!out` arguments.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common import run_command
from store.base import (
    BuildFailureError,
    DerivedPath,
    Store,
    StoreError,
    ValidPathInfo,
)
from store.nar import hash_path

logger = logging.getLogger(__name__)


class LocalStore(Store):
    """Store rooted at a local directory."""

    def __init__(
        self,
        store_dir: Path,
        state_dir: Path,
        build_command: Optional[list[str]] = None,
        timeout: int = 600,
    ):
        """Initialize store.

        Args:
            store_dir: Directory holding store paths
            state_dir: Directory holding registered path info
            build_command: Command prefix used to realise derivations
            timeout: Seconds allowed for one build batch
        """
        super().__init__(store_dir)
        self.state_dir = Path(state_dir)
        self.build_command = build_command or ['nix-store', '--realise']
        self.timeout = timeout

    def _info_path(self, path: str) -> Path:
        return self.state_dir / 'info' / f"{Path(path).name}.json"

    def is_valid_path(self, path: str) -> bool:
        return os.path.lexists(path)

    def query_path_info(self, path: str) -> Optional[dict]:
        """Return registered info for `path`, or None if not registered here."""
        info_path = self._info_path(path)
        if not info_path.exists():
            return None
        with open(info_path, encoding='utf-8') as f:
            data: dict = json.load(f)
        return data

    def build_paths(self, paths: set[DerivedPath]) -> None:
        if not paths:
            logger.debug("Nothing to build")
            return

        args = [p.to_string() for p in sorted(paths)]
        logger.info(f"Building {len(args)} path(s)")
        rc, _, err = run_command(self.build_command + args, timeout=self.timeout)
        if rc != 0:
            raise BuildFailureError(args, err)

    def add_to_store(self, info: ValidPathInfo, source: Path) -> str:
        """Copy `source` into the store as `info.path`.

        The NAR hash of `source` must match `info.nar_hash`. The copy is staged
        in a temporary directory inside the store and renamed into place, so
        readers never see a partially written path.

        Raises:
            StoreError: On a hash mismatch or a path outside this store
        """
        if not self.is_store_path(info.path):
            raise StoreError(f"path '{info.path}' is not in the store '{self.store_dir}'")

        if self.is_valid_path(info.path):
            logger.debug(f"{info.path} already valid")
            self._write_info(info)
            return info.path

        digest, size = hash_path(source)
        if digest != info.nar_hash or size != info.nar_size:
            raise StoreError(
                f"hash mismatch importing '{info.path}': "
                f"expected sha256:{info.nar_hash.hex()}, got sha256:{digest.hex()}"
            )

        os.makedirs(self.store_dir, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix='.tmp-', dir=self.store_dir))
        try:
            shutil.copytree(source, staging / 'tree', symlinks=True)
            try:
                os.rename(staging / 'tree', info.path)
            except OSError:
                # Lost a race against another registration of the same path
                if not self.is_valid_path(info.path):
                    raise
                logger.debug(f"{info.path} registered concurrently")
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        self._write_info(info)
        logger.debug(f"Registered {info.path} ({info.nar_size} bytes)")
        return info.path

    def _write_info(self, info: ValidPathInfo) -> None:
        info_path = self._info_path(info.path)
        info_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = info_path.with_suffix('.json.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(info.to_dict(), f, indent=2)
        os.replace(tmp, info_path)
