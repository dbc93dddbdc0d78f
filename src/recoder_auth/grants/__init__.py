"""Grants that turn user interaction into a persisted session.

Every grant ends the same way: a complete
:class:`~recoder_auth.models.Session` handed to
:meth:`~recoder_auth.auth.session_store.SessionStore.write`. A caller cannot
tell afterwards which grant produced a session.

See Also:
    :class:`~recoder_auth.grants.base.Grant` for the shared interface.
"""

from recoder_auth.grants.api_key import APIKeyGrant
from recoder_auth.grants.base import Grant
from recoder_auth.grants.browser import AuthorizationCodeGrant, BrowserFlowState
from recoder_auth.grants.device_code import DeviceAuthorizationGrant, DeviceFlowState

__all__ = [
    "APIKeyGrant",
    "AuthorizationCodeGrant",
    "BrowserFlowState",
    "DeviceAuthorizationGrant",
    "DeviceFlowState",
    "Grant",
]
