"""Local callback server.

:class:`CallbackServer` is the short-lived HTTP listener the IDP redirects
the browser back to. It exposes these routes:

* ``GET /login`` -- 302 redirect to the IDP authorization URL.
* ``GET <callback_path>`` -- hands the query string to
  :meth:`~idptoken.flow.AuthorizationFlow.handle_callback`.
* ``POST <callback_path>`` -- the same with a URL-encoded form body, for
  IDPs configured with ``response_mode=form_post``.
* ``GET /`` and ``GET /index.html`` -- a static page with a login link.

Anything else is a 404 and does not end the run. Every response carries
no-cache headers.

The server never tears itself down. A handler that finishes the flow (with
success or with a rejected callback) records the exit code on the shared
:class:`~idptoken.lifecycle.Lifecycle`; the runner then calls
:meth:`CallbackServer.stop` from the main thread.

Unexpected errors while resolving a callback are answered with a 500 and
end the run with :data:`~idptoken.exit_codes.EXIT_GENERIC_FAILURE`.
"""

from __future__ import annotations

import socket
import threading
import traceback
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from importlib import resources
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from idptoken.exceptions import FlowError, MalformedRequestError, OutputError, ServerStartError
from idptoken.exit_codes import EXIT_GENERIC_FAILURE, EXIT_SUCCESS
from idptoken.flow import AuthorizationFlow
from idptoken.lifecycle import Lifecycle
from idptoken.models import TokenSet
from idptoken.output import debug, error, warning

DEFAULT_HOST = "127.0.0.1"
DEFAULT_SHUTDOWN_GRACE = 15.0

NO_CACHE_HEADERS = {
    "Expires": "Thu, 01 Jan 1970 00:00:00 GMT",
    "Cache-Control": "no-cache, private, max-age=0",
    "Pragma": "no-cache",
    "X-Accel-Expires": "0",
}

INDEX_ROUTES = ("/", "/index.html")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MAX_FORM_BYTES = 10 << 20


class ServerState(str, Enum):
    """Lifecycle states of :class:`CallbackServer`."""

    IDLE = "idle"
    LISTENING = "listening"
    HANDLING_CALLBACK = "handling_callback"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((DEFAULT_HOST, 0))
        return s.getsockname()[1]


def load_page(name: str) -> bytes:
    """Return the bytes of a page shipped in ``idptoken/html``."""
    return resources.files("idptoken").joinpath("html", name).read_bytes()


class _TrackingHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server that counts requests still being handled."""

    daemon_threads = True
    # server_close() must not join handler threads; stop() bounds the wait.
    block_on_close = False

    def __init__(self, address: tuple[str, int], handler: type[BaseHTTPRequestHandler]) -> None:
        self._in_flight = 0
        self._idle = threading.Condition()
        super().__init__(address, handler)

    @property
    def in_flight(self) -> int:
        with self._idle:
            return self._in_flight

    def process_request(self, request: Any, client_address: Any) -> None:
        # Counted on the accept thread so that stop() never misses a request
        # whose worker has not started yet.
        with self._idle:
            self._in_flight += 1
        try:
            super().process_request(request, client_address)
        except Exception:
            self._done()
            raise

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._done()

    def wait_idle(self, timeout: Optional[float]) -> bool:
        """Block until no request is in flight or *timeout* elapses."""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    def _done(self) -> None:
        with self._idle:
            self._in_flight -= 1
            self._idle.notify_all()


class CallbackServer:
    """Single-listener HTTP server for one authorization code flow.

    Args:
        flow: Resolves callbacks and provides the authorization URL.
        lifecycle: Receives the exit code once the flow has finished.
        on_tokens: Called with the redeemed tokens after the success page
            has been written. Raising :class:`~idptoken.exceptions.OutputError`
            turns the run into a generic failure.
        host: Interface to bind.
        port: Port to bind; defaults to the configured port.
    """

    def __init__(
        self,
        flow: AuthorizationFlow,
        lifecycle: Lifecycle,
        on_tokens: Callable[[TokenSet], None],
        host: str = DEFAULT_HOST,
        port: Optional[int] = None,
    ) -> None:
        self._flow = flow
        self._lifecycle = lifecycle
        self._on_tokens = on_tokens
        self._host = host
        self._port = flow.config.port if port is None else port
        self._callback_path = flow.config.callback_path
        self._state = ServerState.IDLE
        self._state_lock = threading.Lock()
        self._httpd: Optional[_TrackingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ServerState:
        with self._state_lock:
            return self._state

    @property
    def port(self) -> int:
        """The bound port, or the requested one before :meth:`start`."""
        if self._httpd is not None:
            return self._httpd.server_address[1]
        return self._port

    def start(self) -> None:
        """Bind the listener and serve requests on a background thread.

        Raises:
            ServerStartError: The address cannot be bound.
        """
        if self.state is not ServerState.IDLE:
            raise RuntimeError(f"server cannot be started from state {self.state.value}")
        try:
            self._httpd = _TrackingHTTPServer((self._host, self._port), self._build_handler())
        except OSError as exc:
            raise ServerStartError(
                f"could not listen on {self._host}:{self._port}: {exc}"
            ) from exc

        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name="idptoken-server",
            daemon=True,
        )
        self._thread.start()
        self._set_state(ServerState.LISTENING)
        debug(f"Listening on {self._host}:{self.port}")

    def stop(self, grace: float = DEFAULT_SHUTDOWN_GRACE) -> bool:
        """Stop accepting requests and close the listener.

        Requests already being handled get up to *grace* seconds to finish.
        Must not be called from a request handler.

        Returns:
            ``True`` if every in-flight request finished within *grace*.
        """
        if self._httpd is None:
            self._set_state(ServerState.STOPPED)
            return True

        self._set_state(ServerState.SHUTTING_DOWN)
        self._httpd.shutdown()
        drained = self._httpd.wait_idle(grace)
        if not drained:
            warning(
                f"Shutdown grace period of {grace:g}s expired with "
                f"{self._httpd.in_flight} request(s) still in flight"
            )
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        self._set_state(ServerState.STOPPED)
        debug("Callback server stopped")
        return drained

    # ------------------------------------------------------------------ #
    # Routes
    # ------------------------------------------------------------------ #

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        owner = self

        class CallbackHandler(BaseHTTPRequestHandler):
            server_version = "idptoken"

            def do_GET(self) -> None:
                parts = urlsplit(self.path)
                if parts.path == owner._callback_path:
                    owner._handle_callback(self, parts.query)
                elif parts.path == "/login":
                    owner._handle_login(self)
                elif parts.path in INDEX_ROUTES:
                    _send(self, 200, load_page("index.html"), "text/html; charset=utf-8")
                else:
                    _send(self, 404, b"404 page not found\n", "text/plain; charset=utf-8")

            def do_POST(self) -> None:
                parts = urlsplit(self.path)
                if parts.path == owner._callback_path:
                    owner._handle_callback(self, parts.query, form_post=True)
                else:
                    _send(self, 404, b"404 page not found\n", "text/plain; charset=utf-8")

            def log_message(self, format: str, *args: Any) -> None:
                debug(f"{self.address_string()} {format % args}")

        return CallbackHandler

    def _handle_login(self, handler: BaseHTTPRequestHandler) -> None:
        url = self._flow.authorization_url
        debug(f"Redirecting user to authorization endpoint: {url}")
        handler.send_response(302)
        handler.send_header("Location", url)
        handler.send_header("Content-Length", "0")
        _send_no_cache(handler)
        handler.end_headers()

    def _handle_callback(
        self, handler: BaseHTTPRequestHandler, query: str, form_post: bool = False
    ) -> None:
        self._transition(ServerState.LISTENING, ServerState.HANDLING_CALLBACK)
        try:
            self._resolve_callback(handler, query, form_post)
        finally:
            self._transition(ServerState.HANDLING_CALLBACK, ServerState.LISTENING)

    def _resolve_callback(
        self, handler: BaseHTTPRequestHandler, query: str, form_post: bool
    ) -> None:
        try:
            form = _read_form(handler) if form_post else b""
            tokens = self._flow.handle_callback(query, form)
        except FlowError as exc:
            message = f"{exc.label}: {exc}"
            _reply(
                handler,
                exc.status_code,
                f"ERROR: {message}".encode("utf-8"),
                "text/plain; charset=utf-8",
            )
            error(message)
            self._lifecycle.request_exit(exc.exit_code)
            return
        except Exception as exc:
            message = f"unexpected error in callback: {type(exc).__name__}: {exc}"
            debug(traceback.format_exc())
            _reply(
                handler,
                500,
                f"ERROR: {message}".encode("utf-8"),
                "text/plain; charset=utf-8",
            )
            error(message)
            self._lifecycle.request_exit(EXIT_GENERIC_FAILURE)
            return

        _reply(handler, 200, load_page("success.html"), "text/html; charset=utf-8")
        try:
            self._on_tokens(tokens)
        except OutputError as exc:
            error(str(exc))
            self._lifecycle.request_exit(exc.exit_code)
            return
        except Exception as exc:
            debug(traceback.format_exc())
            error(f"could not hand over tokens: {type(exc).__name__}: {exc}")
            self._lifecycle.request_exit(EXIT_GENERIC_FAILURE)
            return
        self._lifecycle.request_exit(EXIT_SUCCESS)

    def _set_state(self, state: ServerState) -> None:
        with self._state_lock:
            self._state = state

    def _transition(self, expected: ServerState, state: ServerState) -> None:
        with self._state_lock:
            if self._state is expected:
                self._state = state


def _send_no_cache(handler: BaseHTTPRequestHandler) -> None:
    for name, value in NO_CACHE_HEADERS.items():
        handler.send_header(name, value)


def _send(handler: BaseHTTPRequestHandler, status: int, body: bytes, content_type: str) -> None:
    handler.send_response(status)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    _send_no_cache(handler)
    handler.end_headers()
    handler.wfile.write(body)
    handler.wfile.flush()


def _reply(handler: BaseHTTPRequestHandler, status: int, body: bytes, content_type: str) -> None:
    """Like :func:`_send`, but a browser that went away is only a warning."""
    try:
        _send(handler, status, body, content_type)
    except OSError as exc:
        warning(f"Could not write callback response: {exc}")


def _read_form(handler: BaseHTTPRequestHandler) -> bytes:
    """Read a URL-encoded request body; other content types carry no form."""
    content_type = handler.headers.get("Content-Type", "")
    if content_type.split(";", 1)[0].strip().lower() != FORM_CONTENT_TYPE:
        return b""
    raw_length = handler.headers.get("Content-Length", "0")
    try:
        length = int(raw_length)
    except ValueError:
        raise MalformedRequestError(f"invalid Content-Length {raw_length!r}") from None
    if length < 0 or length > MAX_FORM_BYTES:
        raise MalformedRequestError(f"form body length {length} out of range")
    return handler.rfile.read(length)
