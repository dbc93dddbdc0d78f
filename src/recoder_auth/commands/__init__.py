"""Built-in CLI commands for recoder-auth.

* :mod:`~recoder_auth.commands.auth` -- ``login``, ``logout``, ``status``,
  ``whoami``, ``quota``, ``set-api-key`` and ``token``.

Each command is a plain callback registered directly on the root app in
:func:`~recoder_auth.app.register_commands`.
"""
