"""
Sprat is a static-site asset pipeline: it routes files from a source tree
through Sass, lightningcss, esbuild, Pillow and lxml into an output tree,
with cache busting and a live-reloading development server.
"""
from .core import (
    BatchStep, BuildSettings, CommandError, Context, InputBuildSettings, Matcher, PathCalc, Rule, Step,
    StepUnavailableException,
)
from .dependencies import Dependency, PipDependency, WebExecDependency
from .images import CWebPStep, ImageOptimizeStep, PillowWebPStep, SVGOptimizeStep
from .include import FileIncludeStep, IncludeError
from .minify import CSSMinifierStep
from .paths import DirPathCalc, InPlacePathCalc, OutputDirPathCalc, REMatcher, WorkingDirPathCalc
from .pipeline import CleanTask, Parallel, RunReport, Series, Task, TaskResult, parallel, run_pipeline, series
from .revision import RevisionStep
from .rewrite import ManifestRewriteStep
from .scripts import EsbuildStep
from .scss import SassStep
from .server import DevServer, WatchTask
from .simple import DirectCopyStep
from .sprites import SVGSpriteStep
