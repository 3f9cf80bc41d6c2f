"""
Steps for reducing the load cost of stylesheets: vendor prefixing and
minification.
"""
from __future__ import annotations

import json
import re
from collections.abc import Sequence
from pathlib import Path

from .dependencies import PipDependency
from .simple import BaseStandardStep


_SOURCE_MAP_COMMENT = re.compile(r'/\*#\s*sourceMappingURL=[^*]*\*/\s*$')


class CSSMinifierStep(BaseStandardStep):
    """
    A powerful CSS processing Step, using lightningcss to add the vendor
    prefixes needed by the browsers in @browsers_list and to minify.

    With @source_map set, a map written next to the input (`main.css.map`, as
    `SassStep` does) is carried over to `<output>.map` and referenced from the
    output.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lightningcss')
        }

    def __init__(self,
                 error_recovery: bool = False,
                 parser_flags: dict[str, bool] | None = None,
                 unused_symbols: set[str] | None = None,
                 browsers_list: Sequence[str] | None = ('defaults',),
                 minify: bool = True,
                 source_map: bool = False):

        self.error_recovery = error_recovery
        self.parser_flags = parser_flags or {}
        self.unused_symbols = unused_symbols
        self.browsers_list = list(browsers_list) if browsers_list else None
        self.minify = minify
        self.source_map = source_map

    def carry_source_map(self, path: Path, output_path: Path):
        """
        Copy the map for @path next to @output_path, pointing its `file` field
        at the new name. Returns the new map path, or None if @path has no map.
        """
        in_map = path.with_name(path.name + '.map')
        if not in_map.exists():
            return None
        data = json.loads(in_map.read_text(self.encoding))
        data['file'] = output_path.name
        out_map = output_path.with_name(output_path.name + '.map')
        out_map.write_text(json.dumps(data), self.encoding, newline=self.newline)
        return out_map

    def __call__(self, path: Path, output_paths: list[Path]):
        import lightningcss
        source = _SOURCE_MAP_COMMENT.sub('', path.read_text(self.encoding))
        data = lightningcss.process_stylesheet(
            source,
            filename=str(path),
            error_recovery=self.error_recovery,
            parser_flags=lightningcss.calc_parser_flags(**self.parser_flags),
            unused_symbols=self.unused_symbols,
            browsers_list=self.browsers_list,
            minify=self.minify
        )

        out_map = None
        with self.ensure_outputs(output_paths):
            if self.source_map:
                out_map = self.carry_source_map(path, output_paths[0])
            if out_map:
                data = f'{data}\n/*# sourceMappingURL={out_map.name} */\n'
            output_paths[0].write_text(data, self.encoding, newline=self.newline)

        if out_map:
            return [path], [*output_paths, out_map]
        return None
