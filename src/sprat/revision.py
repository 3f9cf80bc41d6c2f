"""
Cache busting: rename built assets after a hash of their content and record
the renames in a manifest.
"""
from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

from .core import BatchStep


log = logging.getLogger(__name__)

DEFAULT_MANIFEST = 'rev.json'


def checksum(path: Path, hashname: str = 'md5', _bufsize=2**18):
    """
    Calculate a hex checksum for a `Path`.
    """
    digest = hashlib.new(hashname)

    buf = bytearray(_bufsize)
    view = memoryview(buf)
    with path.open('rb') as file:
        while True:
            size = file.readinto(buf)
            if size == 0:
                break  # EOF
            digest.update(view[:size])

    return digest.hexdigest()


def revisioned_name(path: Path, digest: str):
    """
    `main.min.css` -> `main.min-<digest>.css`; only the last suffix is kept
    after the hash.
    """
    return f'{path.stem}-{digest}{path.suffix}'


def load_manifest(path: Path, encoding: str = 'utf-8') -> dict[str, str]:
    """
    Read a manifest mapping output-relative POSIX paths to their revisioned
    counterparts.
    """
    data = json.loads(path.read_text(encoding))
    if not isinstance(data, dict):
        raise ValueError(f'{path} is not a revision manifest')
    return data


class RevisionStep(BatchStep):
    """
    Rename every input to a content-derived name next to the original, delete
    the original, and write a fresh manifest to the rule's output path. The
    manifest keys and values are relative to the output directory. With
    nothing to rename, an empty manifest is still written.
    """
    run_when_empty = True
    encoding = 'utf-8'
    newline = '\n'

    def __init__(self, hash_length: int = 10, hashname: str = 'md5', delete_original: bool = True):
        self.hash_length = hash_length
        self.hashname = hashname
        self.delete_original = delete_original

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        output_dir = self.context['output_dir']
        manifest: dict[str, str] = {}
        renamed: list[Path] = []

        for path in paths:
            digest = checksum(path, self.hashname)[:self.hash_length]
            new_path = path.with_name(revisioned_name(path, digest))
            if self.delete_original:
                path.replace(new_path)
            else:
                new_path.write_bytes(path.read_bytes())
            renamed.append(new_path)
            manifest[path.relative_to(output_dir).as_posix()] = new_path.relative_to(output_dir).as_posix()

        data = json.dumps(dict(sorted(manifest.items())), indent=2) + '\n'
        for manifest_path in output_paths:
            manifest_path.parent.mkdir(parents=True, exist_ok=True)
            manifest_path.write_text(data, self.encoding, newline=self.newline)
        log.info('Revisioned %d assets', len(manifest))

        return paths, [*renamed, *output_paths]
