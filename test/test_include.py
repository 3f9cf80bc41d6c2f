import pathlib

import pytest

from sprat.include import FileIncludeStep, IncludeError
from sprat.presets import fileinclude_task
from sprat.pipeline import run_pipeline
from sprat.test_harness import make_context


def run_include(tmp_path: pathlib.Path, files: dict[str, str], page: str = 'index.html', **kw):
    context = make_context(tmp_path, files)
    step = FileIncludeStep(**kw)
    context.bind(step)
    output = context['output_dir'] / page
    step(context['source_dir'] / page, [output])
    return output.read_text()


def test_include_substitutes_partial(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': "<body>\n@@include('./partial.html')\n</body>\n",
        'partial.html': '<p>partial</p>',
    })
    assert result == '<body>\n<p>partial</p>\n</body>\n'
    assert '@@' not in result


def test_include_relative_to_including_file(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': '@@include("html/header.html")',
        'html/header.html': "<header>@@include('nav.html')</header>",
        'html/nav.html': '<nav></nav>',
    })
    assert result == '<header><nav></nav></header>'


def test_include_root_basepath(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': "@@include('html/header.html')",
        'html/header.html': "@@include('html/nav.html')",
        'html/nav.html': '<nav></nav>',
    }, basepath='@root')
    assert result == '<nav></nav>'


def test_include_variables(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': (
            '@@include(\'card.html\', {"title": "Hello (world)", "title_long": "Long", "count": 3})'
        ),
        'card.html': '<h1>@@title</h1><h2>@@title_long</h2><i>@@count</i>@@include(\'inner.html\')',
        'inner.html': '<b>@@title</b>',
    })
    assert result == '<h1>Hello (world)</h1><h2>Long</h2><i>3</i><b>Hello (world)</b>'


def test_include_inner_variables_shadow(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': '@@include(\'outer.html\', {"name": "outer"})',
        'outer.html': '@@name-@@include(\'inner.html\', {"name": "inner"})',
        'inner.html': '@@name',
    })
    assert result == 'outer-inner'


def test_include_once(tmp_path: pathlib.Path):
    result = run_include(tmp_path, {
        'index.html': "@@include_once('a.html')@@include_once('a.html')@@include('a.html')",
        'a.html': 'A',
    })
    assert result == 'AA'


@pytest.mark.parametrize('files,message', [
    ({'index.html': "@@include('a.html')", 'a.html': "@@include('index.html')"}, 'cycle'),
    ({'index.html': "@@include('missing.html')"}, 'missing'),
    ({'index.html': "@@include('a.html'"}, 'Unterminated'),
    ({'index.html': "@@include(a.html)"}, 'Malformed'),
    ({'index.html': "@@include('a.html', [1])", 'a.html': ''}, 'object'),
])
def test_include_errors(tmp_path: pathlib.Path, files: dict[str, str], message: str):
    with pytest.raises(IncludeError, match=message):
        run_include(tmp_path, files)


def test_fileinclude_task_only_top_level_pages(tmp_path: pathlib.Path):
    context = make_context(tmp_path, {
        'index.html': "<main>@@include('html/hero.html')</main>",
        'about.html': '<main>about</main>',
        'html/hero.html': '<section>hero</section>',
    })
    task = fileinclude_task()
    report = run_pipeline(task, context)

    assert report.ok
    output = context['output_dir']
    assert (output / 'index.html').read_text() == '<main><section>hero</section></main>'
    assert (output / 'about.html').read_text() == '<main>about</main>'
    assert not (output / 'html').exists()
    assert task.watches(context, context['source_dir'] / 'html' / 'hero.html')
    assert not task.watches(context, context['source_dir'] / 'scss' / 'main.scss')
