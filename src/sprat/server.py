"""
Development HTTP server with live reload.

`ThreadedHTTPServer` serves a directory with ETag support. When it carries a
`ReloadHub`, HTML responses get a small script which listens for Server-Sent
Events at `EVENTS_PATH`: a `css` event swaps stylesheets in place, a `reload`
event reloads the page. `DevServer` ties the server to a `Watcher` so Task
re-runs are pushed to browsers.
"""
from __future__ import annotations

import argparse
import hashlib
import http.server
import logging
import mimetypes
import os
import pathlib
import queue
import re
import threading
import time
import typing

from .pipeline import Runnable, Task, TaskResult
from .watch import Watcher

if typing.TYPE_CHECKING:
    from collections.abc import Sequence
    from socketserver import _AfInetAddress
    from .core import Context


INDEX_FILE = 'index.html'
# Default used by nginx
DEFAULT_MIME_TYPE = 'application/octet-stream'
EVENTS_PATH = '/__sprat__/events'
KEEPALIVE_SECONDS = 15.0

RELOAD_SCRIPT = f'''<script>
(function () {{
  var source = new EventSource('{EVENTS_PATH}');
  source.addEventListener('reload', function () {{ window.location.reload(); }});
  source.addEventListener('css', function () {{
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    Array.prototype.forEach.call(links, function (link) {{
      var url = new URL(link.href);
      url.searchParams.set('sprat', Date.now());
      link.href = url.href;
    }});
  }});
}})();
</script>'''

_BODY_END = re.compile(rb'</body\s*>', re.IGNORECASE)

log = logging.getLogger(__name__)


class ReloadHub:
    """
    Fan-out of live-reload messages to every connected client.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self.subscribers: list[queue.Queue[tuple[str, str] | None]] = []
        self.closed = False

    def subscribe(self):
        q: queue.Queue[tuple[str, str] | None] = queue.Queue()
        with self._lock:
            self.subscribers.append(q)
            if self.closed:
                q.put(None)
        return q

    def unsubscribe(self, q: queue.Queue):
        with self._lock:
            if q in self.subscribers:
                self.subscribers.remove(q)

    def publish(self, kind: str, data: str = ''):
        log.debug('Live reload: %s %s', kind, data)
        with self._lock:
            for q in self.subscribers:
                q.put((kind, data))

    def close(self):
        with self._lock:
            self.closed = True
            for q in self.subscribers:
                q.put(None)


class ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    """
    A simple HTTP server that handles each request in a separate thread.
    """
    RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler]

    def __init__(self,
                 server_address: _AfInetAddress,
                 directory: str | pathlib.Path = '.',
                 RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler] | None = None,
                 hub: ReloadHub | None = None,
                 bind_and_activate: bool = True) -> None:
        super().__init__(server_address, RequestHandlerClass or Handler, bind_and_activate)
        self.directory = str(directory)
        self.hub = hub

    def finish_request(self, request, client_address) -> None:
        self.RequestHandlerClass(request, client_address, self, directory=self.directory)


class Handler(http.server.SimpleHTTPRequestHandler):
    server: ThreadedHTTPServer

    def log_message(self, format, *args):
        log.debug('%s - %s', self.address_string(), format % args)

    def get_etag(self, file_path):
        """
        Generate an etag for a file based on its path and modification time.
        """
        mtime = os.path.getmtime(file_path)
        file_size = os.path.getsize(file_path)
        file_info = f"{file_size}-{mtime}"
        return hashlib.md5(file_info.encode('utf-8')).hexdigest()

    def stream_events(self):
        hub = self.server.hub
        if not hub:
            return self.send_error(404, 'Live reload is not enabled')
        self.send_response(200)
        self.send_header('Content-type', 'text/event-stream')
        self.send_header('Cache-Control', 'no-cache')
        self.end_headers()
        events = hub.subscribe()
        try:
            self.wfile.write(b'retry: 1000\n\n')
            self.wfile.flush()
            while True:
                try:
                    message = events.get(timeout=KEEPALIVE_SECONDS)
                except queue.Empty:
                    self.wfile.write(b': keepalive\n\n')
                else:
                    if message is None:
                        break
                    kind, data = message
                    self.wfile.write(f'event: {kind}\ndata: {data}\n\n'.encode('utf-8'))
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            hub.unsubscribe(events)

    def do_GET(self):
        if self.path.split('?', 1)[0] == EVENTS_PATH:
            return self.stream_events()
        try:
            # Get the etag for the file
            file_path = pathlib.Path(self.translate_path(self.path))
            if file_path.is_dir():
                file_path /= INDEX_FILE

            # Double-check that we haven't escaped the directory.
            # self.translate_path() should discard any suspicious path
            # components, but it's better to be safe.
            if not file_path.resolve().is_relative_to(pathlib.Path(self.directory).resolve()):
                return self.send_error(403, 'Forbidden')

            etag = self.get_etag(file_path)
            # Check if the client already has the file
            if 'If-None-Match' in self.headers and self.headers['If-None-Match'] == etag:
                self.send_response(304)
                self.end_headers()
                return

            mime_type, _enc = mimetypes.guess_type(file_path)
            if mime_type == 'text/html' and self.server.hub:
                body = self.inject_reload_script(file_path.read_bytes())
                self.send_response(200)
                self.send_header('Content-type', mime_type)
                self.send_header('ETag', etag)
                self.send_header('Content-Length', str(len(body)))
                self.end_headers()
                self.wfile.write(body)
                return

            self.send_response(200)
            self.send_header('Content-type', mime_type or DEFAULT_MIME_TYPE)
            self.send_header('ETag', etag)
            self.end_headers()
            with open(file_path, 'rb') as file:
                # Serve the file in chunks to avoid reading the entire file
                # into memory
                chunk_size = 8192
                while True:
                    chunk = file.read(chunk_size)
                    if not chunk:
                        break
                    self.wfile.write(chunk)
        except FileNotFoundError:
            self.send_error(404, f'File Not Found: {self.path}')

    def inject_reload_script(self, body: bytes):
        script = RELOAD_SCRIPT.encode('utf-8')
        matches = list(_BODY_END.finditer(body))
        if not matches:
            return body + script
        pos = matches[-1].start()
        return body[:pos] + script + body[pos:]


class DevServer:
    """
    The development server: an HTTP listener on the output directory, a live
    reload channel, and a `Watcher` that re-runs @tasks when their sources
    change. Use `start()`/`stop()` or a with block; `serve_forever()` blocks
    until interrupted.
    """
    def __init__(self,
                 context: Context,
                 tasks: Sequence[Task],
                 host: str = 'localhost',
                 port: int = 8080,
                 debounce: float = 0.1):
        self.context = context
        self.tasks = list(tasks)
        self.host = host
        self.port = port
        self.debounce = debounce
        self.hub: ReloadHub | None = None
        self.watcher: Watcher | None = None
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self):
        return self._httpd is not None

    @property
    def url(self):
        return f'http://{self.host}:{self.port}/'

    def task_finished(self, task: Task, results: list[TaskResult]):
        if task.reload and self.hub and all(r.ok for r in results):
            self.hub.publish(task.reload, task.name)

    def start(self, watch: bool = True):
        """
        Start serving and, if @watch is set, watching. Port 0 picks a free
        port, available as `self.port` afterwards.
        """
        if self.running:
            return self
        self.hub = ReloadHub()
        self._httpd = ThreadedHTTPServer((self.host, self.port), self.context['output_dir'], hub=self.hub)
        self.port = self._httpd.server_address[1]
        self._thread = threading.Thread(target=self._httpd.serve_forever, name='sprat-http', daemon=True)
        self._thread.start()
        self.watcher = Watcher(self.context, self.tasks, self.task_finished, self.debounce)
        if watch:
            self.watcher.start()
        log.info('Serving %s at %s', self.context['output_dir'], self.url)
        return self

    def stop(self):
        """
        Stop every watch, then close live-reload streams and the listener.
        """
        if self.watcher:
            self.watcher.stop()
            self.watcher = None
        if self.hub:
            self.hub.close()
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        if self._thread:
            self._thread.join()
            self._thread = None

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc_info):
        self.stop()

    def serve_forever(self, poll_interval: float = 0.5):
        self.start()
        try:
            while True:
                time.sleep(poll_interval)
        finally:
            self.stop()


class WatchTask(Runnable):
    """
    Pipeline entry that runs a `DevServer` for @tasks. It never finishes on
    its own.
    """
    def __init__(self,
                 tasks: Sequence[Task],
                 name: str = 'watch',
                 host: str = 'localhost',
                 port: int = 8080,
                 debounce: float = 0.1):
        self.watched = list(tasks)
        self.name = name
        self.host = host
        self.port = port
        self.debounce = debounce

    def tasks(self):
        yield self

    def steps(self):
        for task in self.watched:
            yield from task.steps()

    def run(self, context: Context) -> list[TaskResult]:
        DevServer(context, self.watched, self.host, self.port, self.debounce).serve_forever()
        return [TaskResult(self.name, ok=True)]


def serve(port: int, directory: str | pathlib.Path, host: str = 'localhost'):
    with ThreadedHTTPServer((host, port), directory) as httpd:
        print(f'Serving at http://{host}:{port}')
        httpd.serve_forever()


def main(arguments: list[str] | None = None):
    parser = argparse.ArgumentParser(description='Serve a directory over HTTP.')
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('-d', '--directory',
                        help='directory to serve',
                        type=pathlib.Path,
                        default='.')
    args = parser.parse_args(arguments)
    serve(args.port, args.directory)


if __name__ == '__main__':
    main()
