"""JWT command -- show the decoded body of a token.

Implements ``idptoken jwt``. The token is taken from the argument or, when
stdin is a pipe or a file, from stdin; giving both is a usage error.
"""

from __future__ import annotations

import io
import os
import stat
import sys
from typing import Optional

import typer

from idptoken.exit_codes import EXIT_GENERIC_FAILURE
from idptoken.jwt import decode_jwt_body, interpret_jwt
from idptoken.output import error, print_data, suggest

USAGE = "idptoken jwt [--pure] <jwt-string>  or  echo <jwt-string> | idptoken jwt [--pure]"


def _stdin_is_piped() -> bool:
    """Return True when stdin is not a terminal or character device."""
    try:
        mode = os.fstat(sys.stdin.fileno()).st_mode
    except (AttributeError, io.UnsupportedOperation, OSError, ValueError):
        return False
    return not stat.S_ISCHR(mode)


def jwt_command(
    token: Optional[str] = typer.Argument(
        None, help="The JWT to decode. Read from stdin when omitted.", show_default=False
    ),
    pure: bool = typer.Option(
        False,
        "--pure",
        help="Print the decoded body as is, without re-formatting or annotations.",
    ),
) -> None:
    """Decode the body of a JWT without verifying it.

    By default the body is indented and the ``iat``, ``nbf``, ``exp`` and
    ``xms_tcdt`` claims are annotated with the local time they denote.

    Example::

        idptoken jwt eyJhbGciOi...
        idptoken fetch --refresh-token "$RT" | jq -r .id_token | idptoken jwt
    """
    piped = _stdin_is_piped()
    if piped and token is not None:
        error("Cannot accept both piped input and command line argument")
        suggest(f"Usage: {USAGE}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE)

    if piped:
        try:
            token = sys.stdin.read().strip()
        except OSError as exc:
            error(f"Could not read from stdin: {exc}")
            raise typer.Exit(code=EXIT_GENERIC_FAILURE) from None
    elif token is None:
        error("Missing JWT")
        suggest(f"Usage: {USAGE}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE)

    if pure:
        print_data(decode_jwt_body(token))
    else:
        print_data(interpret_jwt(token))
