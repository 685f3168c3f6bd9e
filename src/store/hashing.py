"""Hash primitives shared by the store: nix-base32, hash folding, store path naming."""

import hashlib

# Nix omits e, o, u and t from its base-32 alphabet
BASE32_CHARS = '0123456789abcdfghijklmnpqrsvwxyz'

STORE_PATH_HASH_BYTES = 20
STORE_PATH_HASH_CHARS = 32


def to_base32(data: bytes) -> str:
    """Encode bytes in nix-base32 (least significant bits first)."""
    length = (len(data) * 8 - 1) // 5 + 1
    chars = []
    for n in range(length - 1, -1, -1):
        b = n * 5
        i, j = divmod(b, 8)
        c = data[i] >> j
        if i + 1 < len(data):
            c |= data[i + 1] << (8 - j)
        chars.append(BASE32_CHARS[c & 0x1f])
    return ''.join(chars)


def compress_hash(digest: bytes, size: int) -> bytes:
    """XOR-fold a digest down to `size` bytes."""
    out = bytearray(size)
    for i, byte in enumerate(digest):
        out[i % size] ^= byte
    return bytes(out)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def make_store_path(store_dir: str, path_type: str, digest: bytes, name: str) -> str:
    """Derive a store path from a type tag, an inner SHA-256 digest and a name.

    The fingerprint is `<type>:sha256:<hex>:<store_dir>:<name>`; its SHA-256 is
    folded to 20 bytes and printed in nix-base32.
    """
    fingerprint = f"{path_type}:sha256:{digest.hex()}:{store_dir}:{name}"
    folded = compress_hash(sha256(fingerprint.encode()), STORE_PATH_HASH_BYTES)
    return f"{store_dir}/{to_base32(folded)}-{name}"


def make_type(path_type: str, references: set[str] | frozenset[str]) -> str:
    """Append sorted references to a store path type tag."""
    return ''.join([path_type] + [f":{ref}" for ref in sorted(references)])
