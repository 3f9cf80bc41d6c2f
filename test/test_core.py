from pathlib import Path

import pytest

from sprat.core import BatchStep, BuildSettings, Context, Matcher, PathCalc, Rule, Step, rm_children
from sprat.paths import OutputDirPathCalc, REMatcher, WorkingDirPathCalc
from sprat.test_harness import make_context, snapshot_tree


class DummyStep(Step):
    def __call__(self, path: Path, output_paths: list[Path]):
        pass


class AllMatcher(Matcher[Path]):
    def __call__(self, context: Context, path: Path):
        return path


class BMatcher(Matcher[Path]):
    def __call__(self, context: Context, path: Path):
        if path.name.startswith('b'):
            return path


class DummyPathCalc(PathCalc[Path]):
    def __call__(self, context: Context, path: Path, match: Path) -> Path:
        return context['output_dir'] / path.relative_to(context['source_dir'])


class UpperStep(Step):
    def __call__(self, path: Path, output_paths: list[Path]):
        for o_path in output_paths:
            o_path.parent.mkdir(parents=True, exist_ok=True)
            o_path.write_text(path.read_text().upper())


class JoinStep(BatchStep):
    def __init__(self):
        self.calls = []

    def __call__(self, paths: list[Path], output_paths: list[Path]):
        self.calls.append((list(paths), list(output_paths)))
        for o_path in output_paths:
            o_path.parent.mkdir(parents=True, exist_ok=True)
            o_path.write_text('+'.join(p.read_text() for p in paths))


@pytest.fixture
def build_settings(tmp_path):
    return BuildSettings(
        source_dir=tmp_path / 'src',
        output_dir=tmp_path / 'app',
        working_dir=tmp_path / 'working',
    )


def test_context_match_paths(build_settings: BuildSettings):
    i_a = build_settings['source_dir'] / 'a'
    i_b = build_settings['source_dir'] / 'b'
    i_c = build_settings['source_dir'] / 'c'
    o_a = build_settings['output_dir'] / 'a'
    o_b = build_settings['output_dir'] / 'b'
    o_c = build_settings['output_dir'] / 'c'

    paths = [i_a, i_b, i_c]
    b_step = DummyStep()
    all_step = DummyStep()
    context = Context(build_settings)
    tasks = context.match_paths([
        Rule(BMatcher(), DummyPathCalc(), b_step),
        Rule(AllMatcher(), DummyPathCalc(), all_step),
    ], paths)
    assert tasks == {
        b_step: [
            (i_b, [o_b]),
        ],
        all_step: [
            (i_a, [o_a]),
            (i_b, [o_b]),
            (i_c, [o_c]),
        ],
    }


def test_context_match_paths_stop_matching(build_settings: BuildSettings):
    i_a = build_settings['source_dir'] / 'a'
    i_b = build_settings['source_dir'] / 'b'
    i_c = build_settings['source_dir'] / 'c'
    o_a = build_settings['output_dir'] / 'a'
    o_b = build_settings['output_dir'] / 'b'
    o_c = build_settings['output_dir'] / 'c'

    paths = [i_a, i_b, i_c]

    b_step = DummyStep()
    all_step = DummyStep()
    context = Context(build_settings)
    tasks = context.match_paths([
        Rule(BMatcher(), [DummyPathCalc(), None], b_step),
        Rule(AllMatcher(), DummyPathCalc(), all_step),
    ], paths)
    assert tasks == {
        b_step: [
            (i_b, [o_b]),
        ],
        all_step: [
            (i_a, [o_a]),
            (i_c, [o_c]),
        ],
    }


def test_context_matches_ignores_halting_rules(build_settings: BuildSettings):
    context = Context(build_settings)
    rules = [
        Rule(BMatcher(), None),
        Rule(AllMatcher(), DummyPathCalc(), DummyStep()),
    ]
    assert context.matches(rules, build_settings['source_dir'] / 'a')
    assert not context.matches(rules, build_settings['source_dir'] / 'b')


def test_process_chains_through_working_dir(tmp_path: Path):
    context = make_context(tmp_path, {'text/hello.txt': 'hello'})
    rules = [
        Rule(
            REMatcher(r'text/.*\.txt'),
            WorkingDirPathCalc('stage', ext='.up', base='text'),
            UpperStep()
        ),
        Rule(
            REMatcher(r'stage/.*\.up', parent_dir='working_dir'),
            OutputDirPathCalc('final', ext='.txt', base='stage'),
            UpperStep()
        ),
    ]
    produced = context.process(rules, list(context.find_inputs(context['source_dir'])))

    assert produced == [
        context['working_dir'] / 'stage' / 'hello.up',
        context['output_dir'] / 'final' / 'hello.txt',
    ]
    assert snapshot_tree(context['output_dir']) == {'final/hello.txt': b'HELLO'}


def test_batch_step_called_once(tmp_path: Path):
    context = make_context(tmp_path, {'parts/b.txt': 'b', 'parts/a.txt': 'a', 'parts/c.md': 'c'})
    step = JoinStep()
    rules = [Rule(REMatcher(r'parts/.*\.txt'), Path('joined.txt'), step)]
    context.process(rules, list(context.find_inputs(context['source_dir'])))

    assert step.calls == [(
        [context['source_dir'] / 'parts' / 'a.txt', context['source_dir'] / 'parts' / 'b.txt'],
        [context['output_dir'] / 'joined.txt'],
    )]
    assert (context['output_dir'] / 'joined.txt').read_text() == 'a+b'


def test_find_inputs_missing_dir(build_settings: BuildSettings):
    context = Context(build_settings)
    assert list(context.find_inputs(build_settings['source_dir'] / 'nope')) == []


def test_clean_empties_output(tmp_path: Path):
    context = make_context(tmp_path)
    (context['output_dir'] / 'css').mkdir()
    (context['output_dir'] / 'css' / 'main.min.css').write_text('a{}')
    (context['output_dir'] / 'index.html').write_text('<p>')
    context.clean()
    assert context['output_dir'].exists()
    assert list(context['output_dir'].iterdir()) == []


def test_rm_children_missing_dir(tmp_path: Path):
    rm_children(tmp_path / 'missing')
    assert not (tmp_path / 'missing').exists()
