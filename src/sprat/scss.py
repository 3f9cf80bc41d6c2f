"""
Steps for compiling Sass stylesheets to CSS.
"""
from __future__ import annotations

from pathlib import Path

from .dependencies import PipDependency
from .simple import BaseStandardStep


class SassStep(BaseStandardStep):
    """
    Compile a `.scss`/`.sass` file with libsass. The first output path gets
    the CSS; when @source_map is set, a `.map` file is written beside it. The
    file's own directory and any @include_paths (relative ones taken from the
    source directory) are searched for imports.
    Compile errors are raised as `sass.CompileError`.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('libsass', check_name='sass'),
        }

    def __init__(self,
                 output_style: str = 'expanded',
                 source_map: bool = False,
                 include_paths: list[Path] | None = None,
                 precision: int = 5):
        self.output_style = output_style
        self.source_map = source_map
        self.include_paths = include_paths or []
        self.precision = precision

    def __call__(self, path: Path, output_paths: list[Path]):
        import sass

        source_dir = self.context['source_dir']
        include_paths = [str(path.parent), *(str(source_dir / p) for p in self.include_paths)]
        if self.source_map:
            map_path = output_paths[0].with_name(output_paths[0].name + '.map')
            css, source_map = sass.compile(
                filename=str(path),
                output_style=self.output_style,
                include_paths=include_paths,
                precision=self.precision,
                source_map_filename=str(map_path),
                output_filename_hint=str(output_paths[0]),
                source_map_contents=True,
            )
        else:
            map_path = None
            source_map = None
            css = sass.compile(
                filename=str(path),
                output_style=self.output_style,
                include_paths=include_paths,
                precision=self.precision,
            )

        with self.ensure_outputs(output_paths):
            output_paths[0].write_text(css, self.encoding, newline=self.newline)
        if map_path and source_map is not None:
            map_path.write_text(source_map, self.encoding, newline=self.newline)
            return [path], [*output_paths, map_path]
        return None
