"""
cert_broker — role-governed X.509 certificate broker.

Issues, signs, fetches, lists and revokes certificates through an external
certificate authority's REST API, enforcing per-role domain policy and
keeping issued and revoked records in a shared key-value store.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
