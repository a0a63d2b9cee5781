"""
careena: Python client for the CarePay "Careena" loan assistant.

REST client, session lifecycle and chat-message interpretation for the
patient financing chat.
"""

from careena.client import Careena, AsyncCareena
from careena.auth import Auth
from careena.sessions import SessionsAPI
from careena.errors import CareenaError, AuthError, AuthExpiredError, SessionError, ConnectionError
from careena.interpret.classifier import classify, classify_text
from careena.session_machine import SessionMachine, SessionState

__version__ = "0.1.0"
__all__ = [
    "Careena",
    "AsyncCareena",
    "Auth",
    "SessionsAPI",
    "CareenaError",
    "AuthError",
    "AuthExpiredError",
    "SessionError",
    "ConnectionError",
    "classify",
    "classify_text",
    "SessionMachine",
    "SessionState",
]
