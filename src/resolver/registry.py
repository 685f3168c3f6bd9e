"""Flake registry: maps indirect flake ids (e.g. 'nixpkgs') to direct references.

Lookup order:
1. User entries from the driver config ('registry' mapping)
2. The global registry JSON (version 2), fetched once from registry_url

A ref/rev given on the indirect reference is carried over to the target.
"""

import logging
from typing import Optional

import requests

from flakeref import FlakeRef, FlakeRefError
from resolver.base import ResolutionError

logger = logging.getLogger(__name__)

SUPPORTED_REGISTRY_VERSION = 2


def _ref_from_attrs(attrs: dict) -> FlakeRef:
    """Build a FlakeRef from a registry 'to' attribute set."""
    attrs = {k: str(v) for k, v in attrs.items()}
    ref_type = attrs.pop('type', None)
    if ref_type is None:
        raise ResolutionError(f"registry entry has no type: {attrs}")
    if ref_type == 'git' and 'url' in attrs and attrs['url'].startswith('git+'):
        attrs['url'] = attrs['url'][len('git+'):]
    if ref_type == 'file':
        ref_type = 'tarball'
    return FlakeRef(ref_type, attrs)


class FlakeRegistry:
    """Indirect flake id lookup with user overrides and a fetched global registry."""

    def __init__(
        self,
        entries: Optional[dict[str, str]] = None,
        registry_url: Optional[str] = None,
        timeout: int = 30,
    ):
        """Initialize registry.

        Args:
            entries: User entries (flake id -> flake reference string)
            registry_url: Global registry location; None disables fetching
            timeout: HTTP timeout in seconds
        """
        self.entries = dict(entries or {})
        self.registry_url = registry_url
        self.timeout = timeout
        self._global: Optional[dict[str, FlakeRef]] = None

    def _load_global(self) -> dict[str, FlakeRef]:
        """Fetch the global registry (cached).

        Raises:
            ResolutionError: If the registry cannot be fetched or parsed
        """
        if self._global is not None:
            return self._global
        if not self.registry_url:
            self._global = {}
            return self._global

        logger.debug(f"Fetching flake registry {self.registry_url}")
        try:
            resp = requests.get(self.registry_url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            raise ResolutionError(f"cannot fetch flake registry '{self.registry_url}': {e}")
        except ValueError as e:
            raise ResolutionError(f"flake registry '{self.registry_url}' is not valid JSON: {e}")

        version = data.get('version') if isinstance(data, dict) else None
        if version != SUPPORTED_REGISTRY_VERSION:
            raise ResolutionError(
                f"flake registry '{self.registry_url}' has unsupported version {version}"
            )

        flakes: dict[str, FlakeRef] = {}
        for entry in data.get('flakes', []):
            source = entry.get('from', {})
            if source.get('type') != 'indirect' or 'id' not in source:
                continue
            flakes[source['id']] = _ref_from_attrs(entry.get('to', {}))
        logger.debug(f"Loaded {len(flakes)} registry entries")
        self._global = flakes
        return self._global

    def lookup(self, flake_id: str) -> FlakeRef:
        """Return the direct reference an id maps to.

        Raises:
            ResolutionError: If the id is in neither registry
        """
        if flake_id in self.entries:
            try:
                return FlakeRef.parse(self.entries[flake_id])
            except FlakeRefError as e:
                raise ResolutionError(f"registry entry for '{flake_id}' is invalid: {e.message}")

        flakes = self._load_global()
        if flake_id in flakes:
            return flakes[flake_id]
        raise ResolutionError(f"cannot find flake '{flake_id}' in the flake registries")

    def resolve(self, flake_ref: FlakeRef) -> FlakeRef:
        """Turn an indirect reference into a direct one; direct ones pass through."""
        if not flake_ref.is_indirect:
            return flake_ref

        target = self.lookup(flake_ref.attrs['id'])
        # Indirect ref/rev override whatever the registry entry pins
        attrs = dict(target.attrs)
        for key in ('ref', 'rev'):
            if key in flake_ref.attrs:
                attrs[key] = flake_ref.attrs[key]
                if key == 'ref':
                    attrs.pop('rev', None)
        resolved = FlakeRef(target.type, attrs)
        logger.debug(f"Registry: {flake_ref} -> {resolved}")
        return resolved
