"""Store package: content-addressed path storage and profile tree building."""

from store.base import (
    BuildFailureError,
    DerivedPath,
    Store,
    StoreError,
    ValidPathInfo,
    make_fixed_output_ca,
)
from store.buildenv import BuildEnvError, Package, build_profile
from store.local import LocalStore

__all__ = [
    "BuildFailureError",
    "DerivedPath",
    "Store",
    "StoreError",
    "ValidPathInfo",
    "make_fixed_output_ca",
    "BuildEnvError",
    "Package",
    "build_profile",
    "LocalStore",
]
