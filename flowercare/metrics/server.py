"""
HTTP endpoint serving the Prometheus metrics.
"""

import threading
from typing import Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer


class MetricsServerError(Exception):
    """Raised when the metrics endpoint can not be started."""
    pass


def create_app(registry: CollectorRegistry):
    """WSGI app serving ``/metrics`` and redirecting ``/`` there."""
    metrics_app = make_wsgi_app(registry)

    def app(environ, start_response):
        if environ.get('PATH_INFO', '/') in ('', '/'):
            start_response('302 Found', [('Location', '/metrics'), ('Content-Type', 'text/plain')])
            return [b'']
        return metrics_app(environ, start_response)

    return app


class MetricsServer:
    """Runs the metrics endpoint on a background thread."""

    def __init__(self, host: str, port: int, registry: CollectorRegistry, logger):
        self.host = host
        self.port = port
        self.registry = registry
        self.logger = logger

        self._server: Optional[WSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> int:
        """Port actually bound, useful when started with port 0."""
        if self._server is None:
            return self.port
        return self._server.server_port

    def _handler_class(self):
        logger = self.logger

        class _RequestHandler(WSGIRequestHandler):
            def log_message(self, format, *args):
                logger.debug(f"{self.address_string()} {format % args}")

        return _RequestHandler

    def start(self):
        """
        Bind the listen address and start serving.

        Raises:
            MetricsServerError: If the address can not be bound
        """
        if self._server is not None:
            return

        try:
            self._server = make_server(
                self.host, self.port, create_app(self.registry),
                server_class=ThreadingWSGIServer,
                handler_class=self._handler_class()
            )
        except OSError as e:
            raise MetricsServerError(f"can not listen on {self.host}:{self.port}: {e}") from e

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics-server",
            daemon=True
        )
        self._thread.start()
        self.logger.info(f"Listen on {self.host}:{self.server_port}...")

    def stop(self):
        """Stop serving and release the socket."""
        if self._server is None:
            return

        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)

        self._server = None
        self._thread = None
        self.logger.debug("Metrics server stopped")
