"""auth/ -- Authentication and authorization engine for AuthGate.

Components, leaves first:
  store.py        CredentialStore (SQLAlchemy Core repository)
  credentials.py  CredentialVerifier (passwords, verification / reset tokens)
  tokens.py       TokenService (access / refresh tokens, rotation, revocation)
  rbac.py         RBACEngine (role -> permission decisions)
  gateway.py      AuthGateway (the operations the transport layer calls)
  accounts.py     AccountService (profile self-service, admin user management)

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/ (auth/seed.py's CLI entry point reads
settings, nothing else does). api/ imports from auth/, not the other way around.
"""
