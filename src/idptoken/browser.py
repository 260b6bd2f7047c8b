"""Opening the login URL in the user's browser."""

from __future__ import annotations

import threading
import webbrowser

from idptoken.output import debug, suggest, warning


def launch_browser(url: str) -> threading.Thread:
    """Open *url* with :mod:`webbrowser` on a daemon thread.

    :mod:`webbrowser` honours the ``BROWSER`` environment variable, which
    dev containers use to forward URLs to the host. Failing to open a
    browser is reported but never fatal; the user can still visit the URL.

    Returns:
        The started thread.
    """

    def open_browser() -> None:
        debug("Launching browser window")
        try:
            opened = webbrowser.open(url)
            reason = ""
        except webbrowser.Error as exc:
            opened = False
            reason = f": {exc}"
        if not opened:
            warning(f"Could not launch browser automatically{reason}")
            suggest(f"Open {url} manually")

    thread = threading.Thread(target=open_browser, name="idptoken-browser", daemon=True)
    thread.start()
    return thread
