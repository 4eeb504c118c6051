"""Command-line interface for wallet-core."""
