"""auth/ -- Authentication and authorization engine for Gatekeeper.

Credential hashing, bearer token issuance/verification, account persistence,
the signup/login/password-change flows and the AccessGate that guards
protected routes.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
