"""Wallet core: PIN-encrypted seed vault, HD account derivation, transaction
building, signing and broadcasting for EVM chains, orchestrated per user by
:class:`wallet_core.wallet.session.WalletSession`.
"""
