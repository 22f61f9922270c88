"""accounts/ -- Credential and session lifecycle for WorkBridge accounts.

Holds the five components (vault, session tokens, verification tokens, OTP
reset, lifecycle orchestrator) plus the primitives and the store they share.

Layer rule: accounts/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from accounts/, not the other way
around -- the one exception is accounts/dependencies.py, which is part of the
FastAPI dependency injection system.
"""
