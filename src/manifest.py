"""Profile manifest loading, serialisation and tree construction.

A profile manifest is the ordered record of what a profile contains. It is
stored as manifest.json inside the profile tree it describes, and the tree
is rebuilt from it deterministically:

    {"elements": [{"active": true, "attrPath": "...", "originalUri": "...",
                   "storePaths": ["..."], "uri": "..."}], "version": 1}

Element positions are not stored; an element's position is its index at the
time the manifest is evaluated.
"""

import json
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from common import ProfileError
from store import (
    Package,
    Store,
    ValidPathInfo,
    build_profile,
    make_fixed_output_ca,
)
from store.nar import hash_path

logger = logging.getLogger(__name__)

MANIFEST_FILE = 'manifest.json'

# Supported manifest versions
MANIFEST_VERSION = 1

# Tree builder priority given to every active element
DEFAULT_PRIORITY = 5

# Name of the store object holding a built profile
PROFILE_NAME = 'profile'


class ManifestError(ProfileError):
    """Malformed profile manifest."""

    def __init__(self, message: str, code: str = "E100"):
        super().__init__(code, message)


class UnsupportedManifestVersionError(ManifestError):
    """Manifest version is not one this engine understands."""

    def __init__(self, path: str, version: Any):
        self.path = path
        self.version = version
        super().__init__(
            f"profile manifest '{path}' has unsupported version {version}",
            code="E101",
        )


@dataclass(frozen=True)
class ElementSource:
    """Provenance of a manifest element.

    Attributes:
        original_ref: Flake reference as the user gave it (may be mutable)
        resolved_ref: Locked flake reference the element was built from
        attr_path: Attribute path selected within the flake
    """
    original_ref: str
    resolved_ref: str
    attr_path: str


@dataclass(frozen=True)
class ManifestElement:
    """One installed unit of a profile.

    Attributes:
        store_paths: Store paths the element contributes
        active: Inactive elements stay in the manifest but are not linked
        source: Provenance; None for elements added by raw store path
    """
    store_paths: frozenset[str]
    active: bool = True
    source: Optional[ElementSource] = None

    @classmethod
    def from_dict(cls, data: dict, manifest_path: str = '') -> 'ManifestElement':
        """Create ManifestElement from a manifest.json element."""
        if not isinstance(data, dict) or 'storePaths' not in data:
            raise ManifestError(f"profile manifest '{manifest_path}' has an element without storePaths")

        store_paths = data['storePaths']
        if not isinstance(store_paths, list) or not all(isinstance(p, str) for p in store_paths):
            raise ManifestError(f"profile manifest '{manifest_path}' element field 'storePaths' must be a list of strings")
        if not isinstance(data.get('active', True), bool):
            raise ManifestError(f"profile manifest '{manifest_path}' element field 'active' must be a boolean")
        for key in ('uri', 'originalUri', 'attrPath'):
            if key in data and not isinstance(data[key], str):
                raise ManifestError(f"profile manifest '{manifest_path}' element field '{key}' must be a string")

        source = None
        # Provenance is all or nothing; an empty uri means no provenance
        if data.get('uri'):
            missing = [k for k in ('originalUri', 'attrPath') if k not in data]
            if missing:
                raise ManifestError(
                    f"profile manifest '{manifest_path}' element with uri '{data['uri']}' "
                    f"is missing {', '.join(missing)}"
                )
            source = ElementSource(
                original_ref=data['originalUri'],
                resolved_ref=data['uri'],
                attr_path=data['attrPath'],
            )

        return cls(
            store_paths=frozenset(store_paths),
            active=data.get('active', True),
            source=source,
        )

    def to_dict(self) -> dict:
        """Convert to manifest.json element."""
        d: dict[str, Any] = {
            'storePaths': sorted(self.store_paths),
            'active': self.active,
        }
        if self.source is not None:
            d['originalUri'] = self.source.original_ref
            d['uri'] = self.source.resolved_ref
            d['attrPath'] = self.source.attr_path
        return d

    def describe(self) -> tuple[str, str]:
        """(original, resolved) descriptions; '-' without provenance."""
        if self.source is None:
            return '-', '-'
        return (
            f"{self.source.original_ref}#{self.source.attr_path}",
            f"{self.source.resolved_ref}#{self.source.attr_path}",
        )


@dataclass
class ProfileManifest:
    """Ordered, versioned list of profile elements.

    Attributes:
        elements: Elements in listing (and positional matching) order
        source_path: manifest.json the manifest was loaded from (for errors)
    """
    elements: list[ManifestElement] = field(default_factory=list)
    source_path: Optional[Path] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProfileManifest):
            return NotImplemented
        return self.elements == other.elements

    def to_dict(self) -> dict:
        return {
            'version': MANIFEST_VERSION,
            'elements': [e.to_dict() for e in self.elements],
        }

    def to_json(self) -> str:
        """Serialise canonically (sorted keys, compact separators)."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'ProfileManifest':
        """Create ProfileManifest from dictionary.

        Raises:
            UnsupportedManifestVersionError: If version is not 1
            ManifestError: If the manifest is otherwise malformed
        """
        where = str(source_path) if source_path else '<memory>'
        if not isinstance(data, dict):
            raise ManifestError(f"profile manifest '{where}' must be a JSON object")

        version = data.get('version', 0)
        if version != MANIFEST_VERSION or isinstance(version, bool):
            raise UnsupportedManifestVersionError(where, version)

        elements_data = data.get('elements', [])
        if not isinstance(elements_data, list):
            raise ManifestError(f"profile manifest '{where}' field 'elements' must be a list")

        elements = [ManifestElement.from_dict(e, where) for e in elements_data]
        return cls(elements=elements, source_path=source_path)

    @classmethod
    def from_json(cls, json_str: str | bytes, source_path: Optional[Path] = None) -> 'ProfileManifest':
        """Create ProfileManifest from JSON text."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            where = source_path or '<memory>'
            raise ManifestError(f"invalid JSON in profile manifest '{where}': {e}")
        return cls.from_dict(data, source_path=source_path)

    def packages(self) -> list[Package]:
        """Tree builder inputs in manifest order; inactive elements contribute none."""
        return [
            Package(path=path, active=True, priority=DEFAULT_PRIORITY)
            for element in self.elements if element.active
            for path in sorted(element.store_paths)
        ]

    def references(self) -> frozenset[str]:
        """Every store path referenced by any element, active or not."""
        refs: set[str] = set()
        for element in self.elements:
            refs.update(element.store_paths)
        return frozenset(refs)

    def build_tree(self, out: Path) -> None:
        """Materialise the profile tree (symlink farm + manifest.json) into `out`."""
        build_profile(out, self.packages())
        (out / MANIFEST_FILE).write_text(self.to_json(), encoding='utf-8')

    def build(self, store: Store) -> str:
        """Build the profile tree and register it with the store.

        The tree is built in a temporary directory, hashed over its NAR
        serialisation and added to the store as a fixed-output path named
        'profile' that references every element's store paths.

        Returns:
            Store path of the new profile tree
        """
        references = self.references()
        with tempfile.TemporaryDirectory(prefix='profile-') as tmp:
            tree = Path(tmp)
            self.build_tree(tree)

            nar_hash, nar_size = hash_path(tree)
            path = store.make_fixed_output_path(True, nar_hash, PROFILE_NAME, references)
            info = ValidPathInfo(
                path=path,
                nar_hash=nar_hash,
                nar_size=nar_size,
                references=references,
                ca=make_fixed_output_ca(True, nar_hash),
            )
            logger.debug(f"Profile tree hashes to {path} ({nar_size} bytes)")
            return store.add_to_store(info, tree)


def load_manifest(path: Path) -> ProfileManifest:
    """Load manifest.json from a file path.

    A missing file yields an empty manifest (fresh profile).

    Raises:
        UnsupportedManifestVersionError: If the version is not supported
        ManifestError: If the file is not a valid manifest
    """
    if not path.exists():
        logger.debug(f"No manifest at {path}, starting empty")
        return ProfileManifest(source_path=path)
    return ProfileManifest.from_json(path.read_bytes(), source_path=path)
