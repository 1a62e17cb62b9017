"""auth/ -- Accounts, credentials, tokens and sessions for shopgate.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/, mail/, or storage/.
api/ imports from auth/, not the other way around.
"""
