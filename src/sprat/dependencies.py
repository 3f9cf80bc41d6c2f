"""
Trackable, evaluable, composable descriptions of what a Step needs installed:
Python packages and executables found on the PATH.
"""
from __future__ import annotations

import abc
import importlib.util
import operator
import shutil
import typing as t


class Dependency(abc.ABC):
    """
    A base class for trackable, evaluable, composable dependencies.
    """

    @property
    @abc.abstractmethod
    def satisfied(self) -> bool:
        """
        A bool indicating whether this dependency is met.
        """

    @property
    def needed(self) -> bool:
        """
        A bool indicating whether this dependency is needed on the current platform.
        """
        return True

    @property
    @abc.abstractmethod
    def install_hint(self) -> str:
        """
        A string giving help on how to install this dependency.
        """

    def __repr__(self):
        return f'{self.__class__.__name__}({self}, needed={self.needed}, satisfied={self.satisfied})'

    def __or__(self, other: Dependency):
        return _CompoundDependency(self, other, '|')

    def __and__(self, other: Dependency):
        return _CompoundDependency(self, other, '&')


class _CompoundDependency(Dependency):
    _combine: dict[str, t.Callable[[bool, bool], bool]] = {
        '|': operator.or_,
        '&': operator.and_,
    }

    def __init__(self, left: Dependency, right: Dependency, op: t.Literal['|', '&']):
        self.left = left
        self.right = right
        self.op = op

    def __repr__(self):
        return f'({self.left!r} {self.op} {self.right!r})'

    def __str__(self):
        return f'({self.left} {self.op} {self.right})'

    @property
    def satisfied(self):
        return self._combine[self.op](self.left.satisfied, self.right.satisfied)

    @property
    def needed(self):
        # Either side may be limited to specific platforms.
        return self.left.needed or self.right.needed

    @property
    def install_hint(self):
        """
        For alternatives, the first hint that applies; for requirements, every
        hint that applies.
        """
        hints = [d.install_hint for d in (self.left, self.right) if d.needed]
        if self.op == '|':
            return hints[0] if hints else ''
        return '; '.join(hints)


class _NamedDependency(Dependency):
    def __init__(self,
                 name: str,
                 source: str | None = None,
                 check_name: str | None = None):
        self.name = name
        self.source = source or name
        self.check_name = check_name or name

    def __str__(self):
        return self.name


class PipDependency(_NamedDependency):
    """
    A Dependency on a pip-installable package. @check_name is the importable
    module name when it differs from the distribution name, like `sass` for
    libsass or `PIL` for Pillow.
    """
    @property
    def satisfied(self):
        try:
            return importlib.util.find_spec(self.check_name) is not None
        except (ImportError, ValueError):
            return False

    @property
    def install_hint(self):
        return f'pip install {self.source}'


class WebExecDependency(_NamedDependency):
    """
    A Dependency on an executable that must be found on the PATH, such as
    esbuild or cwebp. @source should say where to get it.
    """
    @property
    def satisfied(self):
        return shutil.which(self.check_name) is not None

    @property
    def install_hint(self):
        if self.source == self.name:
            return f'install {self.name} and put it on the PATH'
        return f'get {self.name} from {self.source}'
