"""Self-custodial wallet core.

Keeps a BIP-39 seed phrase encrypted at rest behind a PIN, derives EVM
account keys from it, and builds, signs and broadcasts transactions through
a plain JSON-RPC node connection.
"""

__version__ = "0.1.0"
