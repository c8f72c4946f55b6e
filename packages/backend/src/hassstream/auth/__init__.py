"""Authentication.

Learn: There is a single shared secret (the Home Assistant long-lived
token). A client is authenticated when the token it presents on connect
equals that secret. The outcome is fixed for the lifetime of the
connection; there is no rotation or per-client revocation.
"""
