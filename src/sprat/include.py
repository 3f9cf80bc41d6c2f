"""
Markup assembly: resolve `@@include()` directives in HTML sources into flat
pages.
"""
from __future__ import annotations

import json
import re
import typing as t
from pathlib import Path

from .simple import BaseStandardStep


class IncludeError(Exception):
    """
    Raised for include cycles, missing partials and malformed directives.
    """


class _Directive(t.NamedTuple):
    start: int
    end: int
    once: bool
    target: str
    variables: dict[str, t.Any]


def _scan_call(text: str, open_paren: int) -> int:
    """
    Return the index just past the parenthesis matching the one at
    @open_paren, skipping over quoted strings.
    """
    depth = 0
    quote = None
    i = open_paren
    while i < len(text):
        char = text[i]
        if quote:
            if char == '\\':
                i += 1
            elif char == quote:
                quote = None
        elif char in '\'"':
            quote = char
        elif char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
            if not depth:
                return i + 1
        i += 1
    raise IncludeError(f'Unterminated include directive: {text[open_paren:open_paren + 40]!r}')


_TARGET_RE = re.compile(r'''\s*(?P<q>['"])(?P<target>.*?)(?P=q)\s*(?:,(?P<vars>.*))?''', re.DOTALL)


class FileIncludeStep(BaseStandardStep):
    """
    Resolve include directives in a markup file. With the default @prefix:

    - `@@include('partials/head.html')` is replaced by that file's resolved
      content.
    - `@@include('card.html', {"title": "Hi"})` also replaces `@@title`
      inside the included file.
    - `@@include_once('x.html')` only includes on its first use in a page.

    @basepath is `'@file'` to resolve targets relative to the including file,
    or `'@root'` to resolve them relative to the source directory.
    """
    def __init__(self, prefix: str = '@@', basepath: t.Literal['@file', '@root'] = '@file'):
        self.prefix = prefix
        self.basepath = basepath
        self._directive_re = re.compile(re.escape(prefix) + r'include(?P<once>_once)?\s*\(')

    def find_directives(self, text: str):
        pos = 0
        while match := self._directive_re.search(text, pos):
            open_paren = match.end() - 1
            end = _scan_call(text, open_paren)
            args = _TARGET_RE.fullmatch(text, open_paren + 1, end - 1)
            if not args:
                raise IncludeError(f'Malformed include directive: {text[match.start():end]!r}')
            variables = {}
            if raw_vars := (args['vars'] or '').strip():
                try:
                    variables = json.loads(raw_vars)
                except json.JSONDecodeError as e:
                    raise IncludeError(f'Invalid include context {raw_vars!r}: {e}') from e
                if not isinstance(variables, dict):
                    raise IncludeError(f'Include context must be an object, not {raw_vars!r}')
            yield _Directive(match.start(), end, bool(match['once']), args['target'], variables)
            pos = end

    def substitute(self, text: str, variables: dict[str, t.Any]):
        """
        Replace `@@name` references with values from @variables, longest names
        first so `@@title` does not clobber `@@title_long`.
        """
        for name in sorted(variables, key=len, reverse=True):
            value = variables[name]
            if not isinstance(value, str):
                value = json.dumps(value)
            text = re.sub(
                re.escape(self.prefix + name) + r'(?![\w])',
                lambda _m, v=value: v,
                text,
            )
        return text

    def resolve_target(self, including: Path, target: str):
        if self.basepath == '@root':
            return (self.context['source_dir'] / target).resolve()
        return (including.parent / target).resolve()

    def assemble(self,
                 path: Path,
                 variables: dict[str, t.Any],
                 stack: list[Path],
                 included: list[Path]) -> str:
        text = path.read_text(self.encoding)
        if variables:
            text = self.substitute(text, variables)

        parts = []
        pos = 0
        for directive in list(self.find_directives(text)):
            parts.append(text[pos:directive.start])
            pos = directive.end

            target = self.resolve_target(path, directive.target)
            if target in stack:
                chain = ' -> '.join(p.name for p in (*stack, target))
                raise IncludeError(f'Include cycle detected: {chain}')
            if directive.once and target in included:
                continue
            if not target.is_file():
                raise IncludeError(f'{path}: cannot include missing file {directive.target!r}')

            included.append(target)
            parts.append(self.assemble(
                target,
                {**variables, **directive.variables},
                [*stack, target],
                included,
            ))
        parts.append(text[pos:])
        return ''.join(parts)

    def __call__(self, path: Path, output_paths: list[Path]):
        included: list[Path] = []
        data = self.assemble(path, {}, [path.resolve()], included)
        with self.ensure_outputs(output_paths):
            output_paths[0].write_text(data, self.encoding, newline=self.newline)
        return [path, *dict.fromkeys(included)], output_paths
