"""NAR (Nix ARchive) serialisation of filesystem trees.

The encoding is canonical: directory entries are written in sorted order and
only the file type, executable bit, contents and symlink targets are
recorded, so the same tree always yields the same bytes regardless of
creation order, timestamps or ownership.

Every string is written as a little-endian 64-bit length followed by the
bytes, zero-padded to a multiple of eight.
"""

import hashlib
import os
import stat
from pathlib import Path
from typing import Callable

NAR_MAGIC = b'nix-archive-1'

Sink = Callable[[bytes], None]


def _write_str(sink: Sink, data: bytes) -> None:
    sink(len(data).to_bytes(8, 'little'))
    sink(data)
    padding = (8 - len(data) % 8) % 8
    if padding:
        sink(b'\0' * padding)


def _dump_entry(path: Path, sink: Sink) -> None:
    st = path.lstat()
    _write_str(sink, b'(')

    if stat.S_ISLNK(st.st_mode):
        _write_str(sink, b'type')
        _write_str(sink, b'symlink')
        _write_str(sink, b'target')
        _write_str(sink, os.fsencode(os.readlink(path)))

    elif stat.S_ISREG(st.st_mode):
        _write_str(sink, b'type')
        _write_str(sink, b'regular')
        if st.st_mode & stat.S_IXUSR:
            _write_str(sink, b'executable')
            _write_str(sink, b'')
        _write_str(sink, b'contents')
        _write_str(sink, path.read_bytes())

    elif stat.S_ISDIR(st.st_mode):
        _write_str(sink, b'type')
        _write_str(sink, b'directory')
        for name in sorted(os.listdir(path), key=os.fsencode):
            _write_str(sink, b'entry')
            _write_str(sink, b'(')
            _write_str(sink, b'name')
            _write_str(sink, os.fsencode(name))
            _write_str(sink, b'node')
            _dump_entry(path / name, sink)
            _write_str(sink, b')')

    else:
        raise ValueError(f"file '{path}' has an unsupported type")

    _write_str(sink, b')')


def dump_path(path: Path, sink: Sink) -> None:
    """Write the NAR serialisation of `path` to `sink`."""
    _write_str(sink, NAR_MAGIC)
    _dump_entry(Path(path), sink)


def dump_bytes(path: Path) -> bytes:
    """Return the NAR serialisation of `path` as bytes."""
    chunks: list[bytes] = []
    dump_path(path, chunks.append)
    return b''.join(chunks)


def hash_path(path: Path) -> tuple[bytes, int]:
    """Return (sha256 digest, size) of the NAR serialisation of `path`."""
    h = hashlib.sha256()
    size = 0

    def sink(data: bytes) -> None:
        nonlocal size
        h.update(data)
        size += len(data)

    dump_path(path, sink)
    return h.digest(), size
