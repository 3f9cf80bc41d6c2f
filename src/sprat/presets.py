"""
The stock Sprat configuration: the `src/` to `app/` layout and the
`default`, `build` and `cache` pipelines, plus the single tasks they are
made of. Any config file for `sprat -c` follows the same shape: an optional
`SETTINGS` and either a `TASKS` mapping or a `get_tasks()` factory.
"""
from __future__ import annotations

from pathlib import Path

from .core import InputBuildSettings, Rule
from .images import ImageOptimizeStep, PillowWebPStep, SVGOptimizeStep
from .include import FileIncludeStep
from .minify import CSSMinifierStep
from .paths import InPlacePathCalc, OutputDirPathCalc, REMatcher, WorkingDirPathCalc
from .pipeline import CleanTask, Runnable, Task, parallel, series
from .revision import DEFAULT_MANIFEST, RevisionStep
from .rewrite import ManifestRewriteStep
from .scripts import EsbuildStep
from .scss import SassStep
from .server import WatchTask
from .simple import DirectCopyStep
from .sprites import SVGSpriteStep


SETTINGS = InputBuildSettings(
    source_dir=Path('src'),
    output_dir=Path('app'),
)

IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'webp', 'svg')
REVISIONED_EXTENSIONS = ('css', 'js', 'svg', 'png', 'jpg', 'jpeg', 'gif', 'webp', 'woff', 'woff2')


def _ext_pattern(extensions: tuple[str, ...]):
    return '|'.join(extensions)


def fonts_task():
    return Task('fonts', [
        Rule(REMatcher(r'fonts/.+'), OutputDirPathCalc('fonts', base='fonts'), DirectCopyStep()),
    ])


def images_task():
    return Task('images', [
        Rule(
            REMatcher(rf'img/(.*/)?[^/]+\.({_ext_pattern(IMAGE_EXTENSIONS)})'),
            OutputDirPathCalc('img', base='img'),
            DirectCopyStep()
        ),
    ])


def webp_task():
    return Task('webp', [
        Rule(
            REMatcher(r'img/(.*/)?[^/]+\.jpg'),
            OutputDirPathCalc('img', ext='.webp', base='img'),
            PillowWebPStep(quality=80, method=6)
        ),
    ], reload=None)


def sprites_task():
    return Task('sprites', [
        # Only the top level of img/svg/ goes into the sheet.
        Rule(REMatcher(r'img/svg/[^/]+\.svg'), Path('img/sprites.svg'), SVGSpriteStep()),
    ])


def fileinclude_task():
    return Task('fileinclude', [
        Rule(REMatcher(r'[^/]+\.html'), OutputDirPathCalc(), FileIncludeStep(prefix='@@', basepath='@file')),
    ], watch=[REMatcher(r'html/.+\.html')])


def styles_task(dev: bool = True):
    return Task('styles', [
        # Partials are only compiled through the files importing them.
        Rule(REMatcher(r'scss/(.*/)?_[^/]+\.s[ac]ss'), None),
        Rule(
            REMatcher(r'scss/(.*/)?[^/]+\.s[ac]ss'),
            WorkingDirPathCalc('css', ext='.css', base='scss'),
            SassStep(output_style='expanded', source_map=dev, include_paths=[Path('scss')])
        ),
        Rule(
            REMatcher(r'css/(.*/)?[^/]+\.css', parent_dir='working_dir'),
            OutputDirPathCalc('css', ext='.min.css', base='css'),
            CSSMinifierStep(browsers_list=['defaults'], minify=True, source_map=dev)
        ),
    ], tolerant=True, report='notify', reload='css' if dev else None,
       watch=[REMatcher(r'scss/.+\.s[ac]ss')])


def scripts_task(dev: bool = True):
    return Task('scripts', [
        Rule(
            REMatcher(r'js/main\.js'),
            OutputDirPathCalc('js', base='js'),
            EsbuildStep(target='es2015', minify=True, source_map=dev)
        ),
    ], tolerant=True, report='log', reload='reload' if dev else None,
       watch=[REMatcher(r'js/.+\.m?js')])


def imgmin_task():
    return Task('imgmin', [
        Rule(
            REMatcher(r'img/(.*/)?[^/]+\.(jpg|jpeg|png|gif)', parent_dir='output_dir'),
            InPlacePathCalc(),
            ImageOptimizeStep(min_quality=70, max_quality=80, loops=4, target='high')
        ),
        Rule(
            REMatcher(r'img/(.*/)?[^/]+\.svg', parent_dir='output_dir'),
            InPlacePathCalc(),
            SVGOptimizeStep()
        ),
    ], root='output_dir', reload=None)


def rev_task(manifest: str = DEFAULT_MANIFEST):
    return Task('rev', [
        Rule(
            REMatcher(rf'(.*/)?[^/]+\.({_ext_pattern(REVISIONED_EXTENSIONS)})', parent_dir='output_dir'),
            Path(manifest),
            RevisionStep()
        ),
    ], root='output_dir', reload=None)


def rewrite_task(manifest: str = DEFAULT_MANIFEST):
    return Task('rewrite', [
        Rule(
            REMatcher(r'(.*/)?[^/]+\.html', parent_dir='output_dir'),
            InPlacePathCalc(),
            ManifestRewriteStep(manifest)
        ),
    ], root='output_dir', reload=None)


def watch_task(port: int = 8080, host: str = 'localhost'):
    return WatchTask([
        styles_task(dev=True),
        scripts_task(dev=True),
        fileinclude_task(),
        fonts_task(),
        images_task(),
        sprites_task(),
    ], host=host, port=port)


def get_tasks(port: int = 8080, host: str = 'localhost') -> dict[str, Runnable]:
    """
    Build every named entry point. @port and @host configure the dev server.
    """
    fileinclude = fileinclude_task()
    return {
        'default': series(
            CleanTask(),
            parallel(fileinclude, scripts_task(dev=True), images_task(), fonts_task(), sprites_task()),
            styles_task(dev=True),
            webp_task(),
            watch_task(port, host),
            name='default',
        ),
        'build': series(
            CleanTask(),
            parallel(fileinclude, scripts_task(dev=False), images_task(), fonts_task(), sprites_task()),
            styles_task(dev=False),
            imgmin_task(),
            name='build',
        ),
        'cache': series(rev_task(), rewrite_task(), name='cache'),
        'fileinclude': fileinclude,
        'styles': styles_task(dev=True),
        'scripts': scripts_task(dev=True),
        'watch': watch_task(port, host),
    }
