"""auth/ -- Accounts, sessions and tokens for AniVault.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/, core/, or cache/.
api/ imports from auth/, not the other way around.
"""
