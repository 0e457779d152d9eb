"""
HaasOnline server access: transport, session and read-only accessors.

Defines the transport protocol, the HTTP client and error taxonomy, the
authenticated session, and the market/script/account lookups.
"""
