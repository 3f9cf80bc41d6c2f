"""
Steps for bundling JavaScript.
"""
from __future__ import annotations

import shutil
import typing as t
from pathlib import Path

from .dependencies import WebExecDependency
from .simple import BaseCommandStep

if t.TYPE_CHECKING:
    from _typeshed import StrOrBytesPath


LOCAL_ESBUILD = 'node_modules/.bin/esbuild'
ESBUILD_URL = 'https://esbuild.github.io/getting-started/'


class EsbuildStep(BaseCommandStep):
    """
    Bundle an entry script and everything it imports into one file with
    esbuild, transpiling down to @target and optionally minifying and writing
    a linked source map. An esbuild on the PATH is preferred over one
    installed into the project with npm.
    """
    def __init__(self,
                 target: str = 'es2015',
                 minify: bool = True,
                 source_map: bool = False,
                 bundle_format: t.Literal['iife', 'esm', 'cjs'] = 'iife',
                 options: t.Iterable[str] = ()):
        """
        See https://esbuild.github.io/api/ for further @options.
        """
        self.target = target
        self.minify = minify
        self.source_map = source_map
        self.bundle_format = bundle_format
        self.options = list(options)

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            WebExecDependency('esbuild', ESBUILD_URL) | WebExecDependency(LOCAL_ESBUILD, ESBUILD_URL),
        }

    @staticmethod
    def find_executable() -> str:
        if shutil.which('esbuild'):
            return 'esbuild'
        if local := shutil.which(LOCAL_ESBUILD):
            return str(Path(local).resolve())
        return 'esbuild'

    def get_command(self, input_path: Path, output_path: Path) -> list[StrOrBytesPath]:
        command: list[StrOrBytesPath] = [
            self.find_executable(),
            input_path,
            '--bundle',
            f'--outfile={output_path}',
            f'--target={self.target}',
            f'--format={self.bundle_format}',
            '--log-level=warning',
        ]
        if self.minify:
            command.append('--minify')
        if self.source_map:
            command.append('--sourcemap')
        command.extend(self.options)
        return command

    def __call__(self, path: Path, output_paths: list[Path]):
        super().__call__(path, output_paths)
        if self.source_map:
            maps = [p.with_name(p.name + '.map') for p in output_paths[:1]]
            return [path], [*output_paths, *(m for m in maps if m.exists())]
        return None
