"""
Tasks and their composition into pipelines.

A `Task` runs a list of Rules over one build directory. Tasks are combined
with `series()`, which runs its members in order and stops after a fatal
failure, and `parallel()`, which runs its members on a thread pool and waits
for all of them. Every run yields `TaskResult`s instead of raising, so a
failure in one member never interrupts a sibling that is already running.
"""
from __future__ import annotations

import abc
import logging
import time
import typing as t
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .core import Context, ContextDir, Matcher, Rule, Step
from .pretty_utils import notify

if t.TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


log = logging.getLogger(__name__)

ReloadKind = t.Literal['reload', 'css']
FailureReport = t.Literal['log', 'notify']


class TaskResult(t.NamedTuple):
    """
    Outcome of running one Task. A result that is not `ok` is `fatal` unless
    the Task tolerated the failure.
    """
    name: str
    ok: bool
    fatal: bool = False
    error: BaseException | None = None
    outputs: tuple[Path, ...] = ()
    duration: float = 0.0


class Runnable(abc.ABC):
    """
    Abstract base class for anything a pipeline can run: single Tasks and
    groups of them.
    """
    name: str

    @abc.abstractmethod
    def run(self, context: Context) -> list[TaskResult]:
        ...

    @abc.abstractmethod
    def tasks(self) -> Iterator[Runnable]:
        """
        Yield every leaf runnable in execution order.
        """

    def steps(self) -> Iterator[Step]:
        """
        Yield every Step this runnable may call.
        """
        return iter(())

    def bind(self, context: Context):
        """
        Bind every Step to @context, raising `StepUnavailableException` for the
        first one with missing dependencies.
        """
        for step in dict.fromkeys(self.steps()):
            context.bind(step)

    def __repr__(self):
        return f'<{type(self).__name__} {self.name!r}>'


class Task(Runnable):
    """
    A named set of Rules run over every file in the @root build directory.

    A @tolerant Task reports a failing Step (by logging it, or with a visual
    notification if @report is `'notify'`) and ends without raising or
    marking the run fatal. Other Tasks record the exception as a fatal result.
    A Task rooted in a missing source directory always fails fatally.

    @reload is the kind of live-reload message sent after the Task re-runs
    under the dev server, and @watch holds extra Matchers for source files
    which should trigger a re-run without being processed themselves, like
    partials pulled in by includes.
    """
    def __init__(self,
                 name: str,
                 rules: Sequence[Rule],
                 root: ContextDir = 'source_dir',
                 tolerant: bool = False,
                 report: FailureReport = 'log',
                 reload: ReloadKind | None = 'reload',
                 watch: Sequence[Matcher] = ()):
        self.name = name
        self.rules = list(rules)
        self.root: ContextDir = root
        self.tolerant = tolerant
        self.report = report
        self.reload = reload
        self.watch = list(watch)

    def tasks(self):
        yield self

    def steps(self):
        for rule in self.rules:
            if rule.step:
                yield rule.step

    def watches(self, context: Context, path: Path) -> bool:
        """
        Return whether a change to @path should re-run this Task.
        """
        return context.matches(self.rules, path) or any(m(context, path) for m in self.watch)

    def report_failure(self, error: BaseException):
        message = str(error) or type(error).__name__
        if self.report == 'notify':
            notify(f'Error in {self.name!r}', message)
        else:
            log.error("'%s' failed: %s", self.name, message)

    def run(self, context: Context):
        log.info("Starting '%s'...", self.name)
        root = context[self.root]
        if self.root == 'source_dir' and not root.is_dir():
            # Nothing to build from; never tolerated.
            error = FileNotFoundError(f'Source directory {root} does not exist')
            log.error("'%s' cannot start: %s", self.name, error)
            return [TaskResult(self.name, ok=False, fatal=True, error=error)]
        start = time.perf_counter()
        try:
            inputs = list(context.find_inputs(root))
            outputs = context.process(self.rules, inputs)
        except Exception as e:
            duration = time.perf_counter() - start
            if self.tolerant:
                self.report_failure(e)
                return [TaskResult(self.name, ok=False, error=e, duration=duration)]
            log.exception("'%s' errored after %.2f s", self.name, duration)
            return [TaskResult(self.name, ok=False, fatal=True, error=e, duration=duration)]

        duration = time.perf_counter() - start
        log.info("Finished '%s' after %.2f s", self.name, duration)
        return [TaskResult(self.name, ok=True, outputs=tuple(outputs), duration=duration)]


class CleanTask(Runnable):
    """
    Empty the output and working directories. Filesystem errors are fatal.
    """
    def __init__(self, name: str = 'clean'):
        self.name = name

    def tasks(self):
        yield self

    def run(self, context: Context):
        start = time.perf_counter()
        try:
            context.clean()
        except OSError as e:
            log.error("'%s' failed: %s", self.name, e)
            return [TaskResult(self.name, ok=False, fatal=True, error=e)]
        return [TaskResult(self.name, ok=True, duration=time.perf_counter() - start)]


class _Group(Runnable):
    def __init__(self, members: Sequence[Runnable], name: str | None = None):
        self.members = list(members)
        self.name = name or f'{type(self).__name__.lower()}({", ".join(m.name for m in self.members)})'

    def tasks(self):
        for member in self.members:
            yield from member.tasks()

    def steps(self):
        for member in self.members:
            yield from member.steps()


class Series(_Group):
    """
    Run members one after another, stopping after the first fatal result.
    """
    def run(self, context: Context):
        results: list[TaskResult] = []
        for member in self.members:
            member_results = member.run(context)
            results.extend(member_results)
            if any(r.fatal for r in member_results):
                log.error("Stopping '%s' after a fatal error", self.name)
                break
        return results


class Parallel(_Group):
    """
    Run members at the same time and wait for all of them. Members must write
    to disjoint paths.
    """
    def __init__(self, members: Sequence[Runnable], name: str | None = None, max_workers: int | None = None):
        super().__init__(members, name)
        self.max_workers = max_workers

    def run(self, context: Context):
        with ThreadPoolExecutor(max_workers=self.max_workers or len(self.members) or 1) as pool:
            futures = [pool.submit(member.run, context) for member in self.members]
        return [result for future in futures for result in future.result()]


def series(*members: Runnable, name: str | None = None):
    return Series(members, name)


def parallel(*members: Runnable, name: str | None = None):
    return Parallel(members, name)


class RunReport:
    """
    Aggregated results of a pipeline run.
    """
    def __init__(self, results: list[TaskResult]):
        self.results = results

    @property
    def ok(self):
        """
        Whether the run completed without a fatal failure. Tolerated failures
        do not count.
        """
        return not any(r.fatal for r in self.results)

    @property
    def failures(self):
        return [r for r in self.results if not r.ok]

    def __getitem__(self, name: str):
        for result in self.results:
            if result.name == name:
                return result
        raise KeyError(name)

    def __contains__(self, name: str):
        return any(r.name == name for r in self.results)


def run_pipeline(runnable: Runnable, context: Context):
    """
    Bind and run @runnable, aggregating its results.
    """
    runnable.bind(context)
    report = RunReport(runnable.run(context))
    for failure in report.failures:
        log.debug('%s: %r', failure.name, failure.error)
    return report
