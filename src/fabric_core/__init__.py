"""
Shared infrastructure for the Fabric API core.

Subpackages:
    auth: Multi-audience bearer token cache and Azure credential provider
    errors: Typed exception hierarchy and classification
    logging: Structured logging setup and context
    utils: Serialization helpers
"""

__version__ = "0.1.0"
