"""HTTP API for wallet-core."""
