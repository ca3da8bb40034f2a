"""Paper Nexus - student resources backend.

The service is deliberately small:
- Session-cookie auth backed by signed JWTs (access + refresh).
- A discussion forum with role-gated moderation (pin / lock / delete / restore).
- A signed, encrypted proxy in front of the upstream papers catalog.

"""

__all__ = ["__version__"]

__version__ = "0.1.0"
