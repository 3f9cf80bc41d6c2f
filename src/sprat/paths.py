"""
Practical implementations of Matchers and PathCalcs.
"""
import re
import typing as t
from pathlib import Path

from .core import CONTEXT_DIR_KEYS, Context, ContextDir, Matcher, PathCalc


T = t.TypeVar('T')


def _trim_ext_prefix(path: Path, match: re.Match[str]):
    _groups = match.groupdict()
    if 'stem' in _groups:
        return path.with_stem(_groups['stem'])
    if 'ext' in _groups and _groups['ext']:
        return path.with_name(path.name[:-len(_groups['ext'])])
    return path


def _to_dir_inner(dest: Path,
                  ext: str | None,
                  context: Context,
                  path: Path,
                  match: t.Any,
                  base: str | None = None,
                  transform: t.Callable[[Path], Path] | None = None):
    path = _trim_ext_prefix(path, match) if ext and isinstance(match, re.Match) else path

    for root_key in ('source_dir', 'working_dir', 'output_dir'):
        root: Path = context[root_key]
        if path.is_relative_to(root):
            rel = path.relative_to(root)
            break
    else:
        raise ValueError(f'{path} is outside of every build directory')

    if base and rel.is_relative_to(base):
        rel = rel.relative_to(base)
    if transform:
        rel = transform(rel)
    new_path = dest / rel

    if ext is not None:
        # Path.with_suffix() would only replace the last part of names like
        # main.scss -> main.min.css, so strip the old suffix first.
        new_path = new_path.with_name(new_path.name[:-len(new_path.suffix)] + ext
                                      if new_path.suffix else new_path.name + ext)

    return new_path


class DirPathCalc(PathCalc[T]):
    """
    PathCalc which makes its input paths children of a specified directory,
    mirroring their position relative to whichever build directory they came
    from. If @base is given, that leading directory is dropped first, so that
    `scss/site/main.scss` with a @base of `scss` lands at `<dest>/site/`.
    If @ext is specified, it will replace the extension of input paths. If the
    matcher produced an re.Match, it will be checked for explicitly defined
    extension information for the input paths, allowing for meaningful work
    with extensions that `pathlib.Path` does not reflect, like `.min.css`.
    """
    def __init__(self,
                 dest: Path | str,
                 ext: str | None = None,
                 base: str | None = None,
                 transform: t.Callable[[Path], Path] | None = None):
        self.dest = dest
        self.ext = ext
        self.base = base
        self.transform = transform

    def __call__(self, context: Context, path: Path, match: T) -> Path:
        if self.dest in CONTEXT_DIR_KEYS:
            dest = context[t.cast(ContextDir, self.dest)]
        else:
            dest = Path(self.dest)
        return _to_dir_inner(dest, self.ext, context, path, match, self.base, self.transform)


class OutputDirPathCalc(DirPathCalc[T]):
    """
    DirPathCalc targeting @subdir of the Context's output directory.
    """
    def __init__(self,
                 subdir: str | None = None,
                 ext: str | None = None,
                 base: str | None = None,
                 transform: t.Callable[[Path], Path] | None = None):
        super().__init__('output_dir', ext, base, transform)
        self.subdir = subdir

    def __call__(self, context: Context, path: Path, match: T) -> Path:
        dest = context['output_dir'] / self.subdir if self.subdir else context['output_dir']
        return _to_dir_inner(dest, self.ext, context, path, match, self.base, self.transform)


class WorkingDirPathCalc(DirPathCalc[T]):
    """
    DirPathCalc targeting @subdir of the Context's working directory, used
    for intermediate files that another Rule picks up.
    """
    def __init__(self,
                 subdir: str | None = None,
                 ext: str | None = None,
                 base: str | None = None,
                 transform: t.Callable[[Path], Path] | None = None):
        super().__init__('working_dir', ext, base, transform)
        self.subdir = subdir

    def __call__(self, context: Context, path: Path, match: T) -> Path:
        dest = context['working_dir'] / self.subdir if self.subdir else context['working_dir']
        return _to_dir_inner(dest, self.ext, context, path, match, self.base, self.transform)


class InPlacePathCalc(PathCalc[t.Any]):
    """
    PathCalc which returns the input path itself, for Steps that rewrite files
    already placed in the output directory.
    """
    def __call__(self, context: Context, path: Path, match: t.Any) -> Path:
        return path


class REMatcher(Matcher[re.Match | None]):
    """
    Path Matcher using regular expressions. @re_flags will be passed to
    `re.compile()`. @parent_dir, if specified, should be a key to a configured
    directory, not a Path, and will be used to handle matching the beginning of
    Paths; this can be used to avoid pitfalls with unexpected characters in
    the build directories. The whole relative path must match.
    """
    def __init__(self, re_string: str, re_flags: int = 0, parent_dir: ContextDir | None = 'source_dir'):
        self.regex = re.compile(re_string, re_flags)
        self.parent_dir: ContextDir | None = parent_dir

    def __call__(self, context: Context, path: Path):
        if self.parent_dir:
            # Handle this part of matching outside the regex.
            if not path.is_relative_to(context[self.parent_dir]):
                return None
            path = path.relative_to(context[self.parent_dir])
        return self.regex.fullmatch(path.as_posix())
