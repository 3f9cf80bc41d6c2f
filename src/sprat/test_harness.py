"""
Helpers for testing Sprat configs: build throwaway source trees, run tasks
against them and compare the resulting output trees.
"""
import pathlib
import typing as t

from sprat.core import BuildSettings, Context


FileContents = t.Union[str, bytes]


def write_tree(root: pathlib.Path, files: t.Mapping[str, FileContents]):
    """
    Create @files (relative POSIX path -> text or bytes) under @root.
    """
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding='utf-8')
    return root


def snapshot_tree(root: pathlib.Path) -> dict[str, bytes]:
    """
    Map every file under @root to its bytes, keyed by relative POSIX path.
    """
    if not root.exists():
        return {}
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob('*'))
        if path.is_file()
    }


def make_context(tmp_path: pathlib.Path, files: t.Mapping[str, FileContents] | None = None):
    """
    Build a Context using `src`, `app` and `working` directories inside
    @tmp_path, optionally populating the source tree with @files.
    """
    settings = BuildSettings(
        source_dir=tmp_path / 'src',
        output_dir=tmp_path / 'app',
        working_dir=tmp_path / 'working',
    )
    for key in ('source_dir', 'output_dir', 'working_dir'):
        settings[key].mkdir(parents=True, exist_ok=True)
    if files:
        write_tree(settings['source_dir'], files)
    return Context(settings)
