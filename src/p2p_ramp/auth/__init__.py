"""
Authentication Layer - credentials, sessions and email registration.

Public API:
    AuthenticationManager, AuthConfig, AuthResult - Login, session lifecycle
    SessionStore - Durable session record and preferred currency
    RegistrationFlow, EmailNotifier - Email confirmation and password reset
"""
from p2p_ramp.auth.manager import AuthConfig, AuthenticationManager, AuthResult
from p2p_ramp.auth.registration import EmailNotifier, RegistrationConfig, RegistrationFlow
from p2p_ramp.auth.session import SessionStore

__all__ = [
    "AuthConfig",
    "AuthenticationManager",
    "AuthResult",
    "EmailNotifier",
    "RegistrationConfig",
    "RegistrationFlow",
    "SessionStore",
]
