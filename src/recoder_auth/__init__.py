"""recoder_auth -- credential issuance and session lifecycle for the Recoder CLI.

This package obtains, stores and keeps valid the credentials a command-line
client needs to call the Recoder identity service. Three grants produce the
same persisted session:

* an API key validated by the service,
* the browser authorization code grant with a one-shot local redirect
  listener,
* the device authorization grant for headless terminals.

Typical workflow::

    recoder-auth login            # browser login
    recoder-auth login --device   # headless login
    recoder-auth quota            # remaining requests

Modules:
    app: Typer application and CLI entry point.
    service: The :class:`~recoder_auth.service.AuthService` facade.
    models: Pydantic models shared across the package.
    config: XDG-aware settings and session file locations.
    client: Async HTTP client for the identity service.
    quota: Quota lookups through the token manager.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
