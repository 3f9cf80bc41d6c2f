"""
Filesystem watching: re-run Tasks when their source files change.

Each Task gets one `WatchBinding`. Bindings debounce on the trailing edge:
events arriving within `debounce` seconds of each other collapse into a
single run, started after the last of them. A run in progress is never
interrupted; events arriving during it queue exactly one more run.
"""
from __future__ import annotations

import logging
import os
import threading
import typing as t
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .core import Context
from .pipeline import Task, TaskResult

if t.TYPE_CHECKING:
    from collections.abc import Sequence


log = logging.getLogger(__name__)

CompletionCallback = t.Callable[[Task, 'list[TaskResult]'], None]
WATCHED_EVENTS = {'created', 'modified', 'deleted', 'moved'}


class WatchBinding:
    """
    Ties one Task to change events, re-running it through @on_complete.
    """
    def __init__(self,
                 task: Task,
                 context: Context,
                 on_complete: CompletionCallback | None = None,
                 debounce: float = 0.1):
        self.task = task
        self.context = context
        self.on_complete = on_complete
        self.debounce = debounce
        self.runs = 0
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._running = False
        self._pending = False
        self._idle = threading.Event()
        self._idle.set()

    def trigger(self):
        """
        Note a change, (re)starting the debounce timer.
        """
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._idle.clear()
            timer = threading.Timer(self.debounce, self._fire)
            timer.args = (timer,)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self, timer: threading.Timer):
        with self._lock:
            if self._timer is not timer:
                # Superseded by a later trigger() which owns the run.
                return
            self._timer = None
            if self._running:
                self._pending = True
                return
            self._running = True

        try:
            while True:
                results = self.task.run(self.context)
                self.runs += 1
                if self.on_complete:
                    self.on_complete(self.task, results)
                with self._lock:
                    if not self._pending:
                        break
                    self._pending = False
        finally:
            with self._lock:
                self._running = False
                if not self._timer:
                    self._idle.set()

    def wait(self, timeout: float | None = None):
        """
        Block until no run is scheduled or in progress.
        """
        return self._idle.wait(timeout)

    def cancel(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            if not self._running:
                self._idle.set()


class _SourceEventHandler(FileSystemEventHandler):
    def __init__(self, callback: t.Callable[[Path], None]):
        self.callback = callback

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory or event.event_type not in WATCHED_EVENTS:
            return
        for raw in (event.src_path, getattr(event, 'dest_path', '')):
            if raw:
                self.callback(Path(os.fsdecode(raw)))


class Watcher:
    """
    Watch the source directory and dispatch each change to the bindings of
    the Tasks interested in it.
    """
    def __init__(self,
                 context: Context,
                 tasks: Sequence[Task],
                 on_complete: CompletionCallback | None = None,
                 debounce: float = 0.1):
        self.context = context
        self.bindings = [WatchBinding(task, context, on_complete, debounce) for task in tasks]
        self._observer: t.Any = None

    def dispatch(self, path: Path):
        """
        Trigger every binding whose Task watches @path. Returns the triggered
        bindings.
        """
        triggered = [b for b in self.bindings if b.task.watches(self.context, path)]
        for binding in triggered:
            log.debug('%s changed, re-running %r', path, binding.task.name)
            binding.trigger()
        return triggered

    def start(self):
        if self._observer:
            return
        source_dir = self.context['source_dir']
        self._observer = Observer()
        self._observer.schedule(_SourceEventHandler(self.dispatch), str(source_dir), recursive=True)
        self._observer.start()
        log.info('Watching %s', source_dir)

    def stop(self):
        for binding in self.bindings:
            binding.cancel()
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def wait(self, timeout: float | None = None):
        return all(b.wait(timeout) for b in self.bindings)
