"""Built-in CLI sub-commands for idptoken.

* :mod:`~idptoken.commands.fetch` -- obtain tokens from the IDP.
* :mod:`~idptoken.commands.jwt` -- decode a JWT body.

Each module exports a plain callback function registered directly on the
root app in :mod:`idptoken.app`.
"""
