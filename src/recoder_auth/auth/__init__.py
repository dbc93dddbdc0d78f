"""Session persistence and token lifecycle.

The main entry points are:

- :class:`SessionStore` -- the session file for one storage scope.
- :class:`TokenManager` -- hands out valid access tokens, refreshing them
  single-flight when they are about to expire.
- :class:`CallbackReceiver` -- one-shot local listener for the browser
  redirect.

Typical usage::

    from recoder_auth.auth import SessionStore, TokenManager

    manager = TokenManager(SessionStore(), client)
    token = await manager.get_access_token()
"""

from recoder_auth.auth.callback import CallbackReceiver
from recoder_auth.auth.session_store import SessionStore
from recoder_auth.auth.token_manager import TokenManager

__all__ = [
    "CallbackReceiver",
    "SessionStore",
    "TokenManager",
]
