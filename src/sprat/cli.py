"""
Sprat's command line interface. Runs a named task from a config module,
`sprat.presets` unless another is given.
"""
from __future__ import annotations

import argparse
import contextlib
import importlib
import logging
import runpy
import sys
import tempfile
import typing as t
from pathlib import Path

from .core import BuildSettings, Context, InputBuildSettings, Step, StepUnavailableException
from .pipeline import Runnable, run_pipeline
from .pretty_utils import configure_logging, print_with_style

if t.TYPE_CHECKING:
    from types import ModuleType


log = logging.getLogger(__name__)

DEFAULT_CONFIG_MODULE = 'sprat.presets'
DEFAULT_TASK = 'default'


class BuildNamespace(argparse.Namespace):
    """
    Internal used to preserve typing between InputBuildSettings, argparse, and
    BuildSettings. Values from a config's SETTINGS are set before parsing, so
    they win over argparse defaults but not over explicit flags.
    """
    source_dir: Path
    output_dir: Path
    working_dir: Path | None

    def __init__(self, settings: InputBuildSettings | None = None):
        super().__init__()
        if settings:
            self.__dict__.update(settings)

    def to_build_settings(self, resolved_working_dir: Path):
        """
        Convert this argparse-oriented namespace into a Context-ready
        BuildSettings with absolute directories.
        """
        return BuildSettings(
            source_dir=Path(self.source_dir).resolve(),
            output_dir=Path(self.output_dir).resolve(),
            working_dir=Path(resolved_working_dir).resolve(),
        )


@contextlib.contextmanager
def _wrap_temp(path: Path | None):
    if path:
        path.mkdir(parents=True, exist_ok=True)
        yield path
    else:
        with tempfile.TemporaryDirectory(prefix='sprat-') as temp_dir:
            yield Path(temp_dir)


def build_parser(**kw):
    parser = argparse.ArgumentParser(description='Build static site assets.', **kw)
    parser.add_argument('task',
                        nargs='?',
                        help=f'name of the task to run (default: {DEFAULT_TASK})',
                        default=DEFAULT_TASK)

    group = parser.add_mutually_exclusive_group()
    group.add_argument('-c', '--config',
                       help='file path to a config file defining the tasks',
                       type=Path,
                       dest='config_file',
                       default=None)
    group.add_argument('-m',
                       help=f'import path of a config module (default: {DEFAULT_CONFIG_MODULE})',
                       dest='module',
                       default=None)

    parser.add_argument('-i', '--source',
                        help='source directory with authored files',
                        type=Path,
                        dest='source_dir',
                        default=Path('src'))
    parser.add_argument('-o', '--output',
                        help='output directory for built files',
                        type=Path,
                        dest='output_dir',
                        default=Path('app'))
    working = parser.add_mutually_exclusive_group()
    working.add_argument('-w', '--working',
                         help='directory for intermediate files; defaults to a new temporary directory',
                         type=Path,
                         dest='working_dir')
    working.add_argument('--use-temporary',
                         help='force use of a temporary directory for intermediate files',
                         action='store_const',
                         dest='working_dir',
                         const=None)

    parser.add_argument('-p', '--port',
                        help='port for the development server',
                        type=int,
                        default=8080)
    parser.add_argument('--host',
                        help='host for the development server',
                        default='localhost')
    parser.add_argument('-l', '--list',
                        help='list the available tasks instead of running one',
                        action='store_true')
    parser.add_argument('--audit-steps',
                        help=('show information about available, unavailable, '
                              'and used steps, instead of running the task'),
                        action='store_true')
    parser.add_argument('-v', '--verbose',
                        help='log every processed file',
                        action='store_true')
    return parser


def load_config(config_file: Path | None = None, module: str | None = None):
    """
    Load a config from a file path or an import path, returning its SETTINGS
    and a factory for its tasks.
    """
    namespace: dict[str, t.Any] | ModuleType
    if config_file:
        namespace = runpy.run_path(str(config_file))
        get = namespace.get
    else:
        namespace = importlib.import_module(module or DEFAULT_CONFIG_MODULE)
        get = lambda name: getattr(namespace, name, None)

    settings: InputBuildSettings | None = get('SETTINGS')
    factory: t.Callable[..., dict[str, Runnable]] | None = get('get_tasks')
    tasks: dict[str, Runnable] | None = get('TASKS')
    if factory is None:
        if tasks is None:
            raise RuntimeError('Sprat config files must have a TASKS or get_tasks attribute!')
        factory = lambda **_kw: tasks
    return settings, factory


def pprint_step(step: t.Type[Step]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [
        str(d) for d in step.get_dependencies()
        if d.needed and not d.satisfied
    ]
    if missing:
        text = ', '.join(missing)
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: Step):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{type(step).__name__} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in step.get_dependencies():
        missing = False
        if not dep.needed:
            style = None
        elif dep.satisfied:
            style = 'green'
        else:
            missing = True
            style = 'red'

        text = f'✗ {dep}: {dep.install_hint}' if missing else f'✓ {dep}'
        print_with_style(text, style=style)


def audit_steps(runnable: Runnable):
    all_steps = set(Step.get_all_steps())
    available_steps = set(Step.get_available_steps())
    groups = {
        'Available steps': available_steps,
        'Unavailable steps': all_steps - available_steps,
        'Used steps': {type(s) for s in runnable.steps()},
    }
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)


def main(arguments: list[str] | None = None):
    """
    Sprat main function. Loads a config, then runs the requested task with
    settings from the config and the command line.
    """
    pre_parser = build_parser(add_help=False)
    pre_args, _ = pre_parser.parse_known_args(arguments)
    settings, factory = load_config(pre_args.config_file, pre_args.module)

    args = build_parser(prog='sprat').parse_args(arguments, namespace=BuildNamespace(settings))
    configure_logging(args.verbose)

    tasks = factory(port=args.port, host=args.host)
    if args.list:
        for name, runnable in tasks.items():
            leaves = ', '.join(task.name for task in runnable.tasks())
            print_with_style(f'{name}: {leaves}' if leaves != name else name)
        return

    try:
        runnable = tasks[args.task]
    except KeyError:
        print_with_style(
            f'Unknown task {args.task!r}; choose from: {", ".join(tasks)}',
            file='stderr',
            style='red'
        )
        sys.exit(2)

    if args.audit_steps:
        audit_steps(runnable)
        return

    with _wrap_temp(args.working_dir) as working_dir:
        context = Context(args.to_build_settings(working_dir))
        log.debug('Running %r with %s', args.task, context.settings)
        try:
            report = run_pipeline(runnable, context)
        except StepUnavailableException as e:
            pprint_missing_deps(e.step)
            sys.exit(1)
        except KeyboardInterrupt:
            print_with_style('Interrupted', file='stderr', style='yellow')
            sys.exit(130)

    if not report.ok:
        for failure in report.failures:
            if failure.fatal:
                print_with_style(f'✗ {failure.name}: {failure.error}', file='stderr', style='red')
        sys.exit(1)
    if report.failures:
        print_with_style(
            f'Finished with errors in: {", ".join(f.name for f in report.failures)}',
            style='yellow'
        )
