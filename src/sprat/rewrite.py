"""
Steps for rewriting references to built assets in HTML to their revisioned
names.
"""
from __future__ import annotations

import posixpath
import re
import typing as t
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from .dependencies import Dependency, PipDependency
from .revision import DEFAULT_MANIFEST, load_manifest
from .simple import BaseStandardStep


_DOCTYPE = re.compile(r'\s*(<!DOCTYPE[^>]*>)', re.IGNORECASE)


class BaseRewriteStep(BaseStandardStep):
    """
    A Step which rewrites the links of an HTML file through
    `translate_reference()`, keeping the document type declaration.
    """
    @classmethod
    def get_dependencies(cls) -> set[Dependency]:
        return {
            PipDependency('lxml'),
        }

    def translate_reference(self, reference: str, document: Path) -> str:
        raise NotImplementedError

    def rewrite(self, data: str, document: Path):
        import lxml.html
        transformed = t.cast(str, lxml.html.rewrite_links(
            data,
            lambda ref: self.translate_reference(ref, document),
            False,  # resolve_base_href; a keyword would be passed to fromstring()
        ))
        # lxml serializes the root element only.
        if doctype := _DOCTYPE.match(data):
            transformed = f'{doctype[1]}\n{transformed}'
        return transformed

    def __call__(self, path: Path, output_paths: list[Path]):
        data = path.read_text(encoding=self.encoding)
        transformed = self.rewrite(data, path)
        with self.ensure_outputs(output_paths):
            output_paths[0].write_text(transformed, self.encoding, newline=self.newline)


class ManifestRewriteStep(BaseRewriteStep):
    """
    Rewrite links in output HTML to point at the names recorded in a revision
    manifest (see `RevisionStep`). Links may be relative to the document or to
    the site root; their own form, query and fragment are kept.
    """
    def __init__(self, manifest: str | Path = DEFAULT_MANIFEST):
        self.manifest_name = Path(manifest)
        self._manifest: dict[str, str] | None = None

    @property
    def manifest_path(self):
        return self.context['output_dir'] / self.manifest_name

    @property
    def manifest(self):
        if self._manifest is None:
            self._manifest = load_manifest(self.manifest_path, self.encoding)
        return self._manifest

    def translate_reference(self, reference: str, document: Path) -> str:
        parts = urlsplit(reference)
        if parts.scheme or parts.netloc or not parts.path:
            return reference

        if parts.path.startswith('/'):
            key = posixpath.normpath(parts.path.lstrip('/'))
        else:
            doc_dir = document.parent.relative_to(self.context['output_dir']).as_posix()
            key = posixpath.normpath(posixpath.join(doc_dir, parts.path))

        if (target := self.manifest.get(key)) is None:
            return reference
        head, _sep, _name = parts.path.rpartition('/')
        new_path = f'{head}/{posixpath.basename(target)}' if _sep else posixpath.basename(target)
        return urlunsplit(parts._replace(path=new_path))

    def bind(self, context):
        super().bind(context)
        # The manifest belongs to a single run.
        self._manifest = None
