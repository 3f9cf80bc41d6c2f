"""
Core classes and types for the Sprat asset pipeline.
"""
from __future__ import annotations

import abc
import logging
import shutil
import typing as t
from pathlib import Path

from .dependencies import Dependency

if t.TYPE_CHECKING:
    from collections.abc import Sequence, Set


T = t.TypeVar('T')
T2 = t.TypeVar('T2')
ContextDir = t.Literal['source_dir', 'output_dir', 'working_dir']
CONTEXT_DIR_KEYS: set[ContextDir] = {'source_dir', 'output_dir', 'working_dir'}
StepReturn = t.Optional[t.Tuple['Sequence[Path]', t.List[Path]]]

log = logging.getLogger(__name__)


class InputBuildSettings(t.TypedDict, total=False):
    """
    TypedDict for defining build settings in a Sprat config file.
    """
    source_dir: Path
    output_dir: Path
    working_dir: Path | None


class BuildSettings(t.TypedDict):
    """
    TypedDict for processed build settings ready for passing to Context.
    """
    source_dir: Path
    output_dir: Path
    working_dir: Path


def rm_children(path: Path):
    """
    Remove everything inside @path, leaving @path itself in place. A missing
    @path is left alone; any other filesystem error propagates.
    """
    if not path.exists():
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _display(path: Path, roots: t.Iterable[Path]):
    for root in roots:
        if path.is_relative_to(root):
            return f'{root.name}/{path.relative_to(root).as_posix()}'
    return str(path)


class Context:
    """
    A context and configuration class for running Sprat tasks. It holds the
    source, output and working directories and knows how to route files
    through a list of Rules.
    """
    def __init__(self, settings: BuildSettings):
        self.settings = settings

    @t.overload
    def __getitem__(self, key: ContextDir) -> Path: ...
    @t.overload
    def __getitem__(self, key: str) -> t.Any: ...
    def __getitem__(self, key):
        return self.settings[key]

    def bind(self, step: Step | None):
        """
        Bind a Step to this Context, checking to ensure its availability.
        """
        if step:
            if not step.is_available():
                raise StepUnavailableException(step)
            step.bind(self)

    def clean(self):
        """
        Empty the output and working directories.
        """
        log.info('Cleaning %s', self['output_dir'])
        rm_children(self['output_dir'])
        rm_children(self['working_dir'])

    def find_inputs(self, path: Path):
        """
        Overridable function to get paths to process based on a given @path.
        Default behavior is to recursively search for files but exclude the
        directories themselves. Results are sorted so runs are reproducible.
        """
        if not path.exists():
            return
        for candidate in sorted(path.iterdir()):
            if candidate.is_dir():
                yield from self.find_inputs(candidate)
            else:
                yield candidate

    def match_paths(self, rules: Sequence[Rule], input_paths: t.Iterable[Path]):
        """
        Pair each of @input_paths with the Step of every Rule matching it and
        the output paths that Rule computes. Steps keep the order of @rules.

        A matching Rule without a Step, or a None among a Rule's PathCalcs,
        hides the path from the Rules after it.
        """
        tasks: dict[Step, list[tuple[Path, list[Path]]]] = {r.step: [] for r in rules if r.step}

        for path in input_paths:
            for rule in rules:
                if not (match := rule.matcher(self, path)):
                    continue
                if not rule.step:
                    break
                calcs = rule.path_calcs
                halts = None in calcs
                if halts:
                    calcs = calcs[:calcs.index(None)]
                tasks[rule.step].append((path, [calc(self, path, match) for calc in calcs]))
                if halts:
                    break

        return tasks

    def matches(self, rules: Sequence[Rule], path: Path):
        """
        Return whether any Rule with a Step would pick up @path.
        """
        return any(paths for paths in self.match_paths(rules, [path]).values())

    def fixed_outputs(self, rules: Sequence[Rule], step: Step):
        """
        Return the fixed output files the Rules running @step name through
        plain Paths.
        """
        return _unique(
            calc(self, Path(), None)
            for rule in rules if rule.step is step
            for calc in rule.path_calcs if isinstance(calc, _FixedPathCalc)
        )

    def process(self, rules: Sequence[Rule], input_paths: list[Path], nested: bool = False) -> list[Path]:
        """
        Process @input_paths using @rules. If intermediate files are produced
        in the working directory, `self.process()` will be called recursively
        with them and @nested set. Returns every output path written.

        A BatchStep with `run_when_empty` set still runs when nothing matches
        it, outside of nested calls, as long as its Rules name fixed outputs.
        """
        tasks = self.match_paths(rules, input_paths)
        roots = [self['source_dir'], self['output_dir'], self['working_dir']]

        produced: list[Path] = []
        further_processing: list[Path] = []
        for step, pairs in tasks.items():
            if not pairs:
                if nested or not (isinstance(step, BatchStep) and step.run_when_empty):
                    continue
                if not (fixed := self.fixed_outputs(rules, step)):
                    continue
                calls = [([], fixed)]
            elif isinstance(step, BatchStep):
                calls = [([p for p, _ in pairs], _unique(o for _, ops in pairs for o in ops))]
            else:
                calls = [([p], ops) for p, ops in pairs]

            for sources, output_paths in calls:
                explicit_chain = step(sources, output_paths) if isinstance(step, BatchStep) \
                    else step(sources[0], output_paths)
                if explicit_chain:
                    sources, output_paths = explicit_chain
                log.info(
                    '%s: %s ⇒ %s',
                    type(step).__name__,
                    ', '.join(_display(s, roots) for s in sources),
                    ', '.join(_display(o, roots) for o in output_paths) or '∅',
                )
                produced.extend(output_paths)
                further_processing.extend(
                    p for p in output_paths
                    if p.is_relative_to(self['working_dir'])
                )

        if further_processing:
            produced.extend(self.process(rules, further_processing, nested=True))
        return produced


def _unique(paths: t.Iterable[Path]):
    return list(dict.fromkeys(paths))


class Matcher(t.Generic[T], abc.ABC):
    """
    Abstract base class for Path Matchers. Provides pre-baked ability to
    combine Matchers with | and &.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path) -> T:
        ...

    def __or__(self, other: Matcher[T2]):
        return _OrMatcher(self, other)

    def __and__(self, other: Matcher[T2]):
        return _AndMatcher(self, other)


class _OrMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) or self.right(context, path)


class _AndMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) and self.right(context, path)


class PathCalc(t.Generic[T], abc.ABC):
    """
    Abstract base class for path calculators which use `Matcher` match data to
    determine output paths from input paths.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path, match: T) -> Path:
        ...


class _FixedPathCalc(PathCalc[t.Any]):
    def __init__(self, path: Path, parent_dir: ContextDir | None = 'output_dir'):
        self.path = path
        self.parent_dir: ContextDir | None = parent_dir

    def __call__(self, context: Context, path: Path, match: t.Any) -> Path:
        if self.path.is_absolute() or not self.parent_dir:
            return self.path
        return context[self.parent_dir] / self.path


class Rule(t.Generic[T]):
    """
    A single rule for Sprat file processing, with a matcher, output path
    calculators, and an optional Step to run. A plain relative Path given as
    a path calculator names a fixed file inside the output directory.
    """
    def __init__(self,
                 matcher: Matcher[T],
                 path_calc: t.Sequence[PathCalc[T] | Path | None] | PathCalc[T] | Path | None,
                 step: Step | None = None):
        self.matcher = matcher
        self.step = step
        if not isinstance(path_calc, t.Sequence):
            path_calc = [path_calc]
        self.path_calcs = [_FixedPathCalc(p) if isinstance(p, Path) else p for p in path_calc]


class Step(abc.ABC):
    """
    Abstract base class for Steps, individual processing stages used to build a
    full Sprat task.
    """
    context: Context
    _step_registry: list[t.Type[Step]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all currently known Steps.
        """
        return list(cls._step_registry)

    @classmethod
    def get_available_steps(cls):
        """
        Return a list of all currently known Steps whose requirements are met.
        """
        return [s for s in cls._step_registry if s.is_available()]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed, making it
        available for use.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def bind(self, context: Context):
        """
        Bind this Step to a Context.
        """
        self.context = context

    @abc.abstractmethod
    def __call__(self, path: Path, output_paths: list[Path]) -> StepReturn:
        ...


class BatchStep(Step):
    """
    Abstract base class for Steps which consume every matched input at once,
    such as sprite sheets or manifests. The Context calls them a single time
    with all inputs and the de-duplicated union of their output paths.

    Set `run_when_empty` to have the Step called with no inputs when nothing
    matches, so fixed outputs like manifests always get written.
    """
    run_when_empty = False

    @abc.abstractmethod
    def __call__(self, paths: list[Path], output_paths: list[Path]) -> StepReturn:  # type: ignore[override]
        ...


class StepUnavailableException(Exception):
    """
    Exception raised with a step to be used is unavailable due to missing
    dependencies.
    """
    def __init__(self, step: Step, *args: t.Any):
        self.step = step
        super().__init__(*args or (f'{type(step).__name__} is missing dependencies',))


class CommandError(Exception):
    """
    Exception raised when an external command used by a Step fails.
    """
    def __init__(self, command: t.Sequence[t.Any], returncode: int, output: str):
        self.command = [str(c) for c in command]
        self.returncode = returncode
        self.output = output
        super().__init__(
            f'{self.command[0]} exited with status {returncode}'
            + (f':\n{output.strip()}' if output.strip() else '')
        )
