"""
Starlane - a client library for Cosmos SDK proof-of-stake chains.

Key features:
- BIP-39 seed phrases and BIP-32 hierarchical key derivation
- Deterministic, low-S secp256k1 signing and bech32 account addresses
- Byte-exact SIGN_MODE_DIRECT transaction encoding
- Concurrency-safe per-account sequence allocation
- Async broadcast and confirmation over the node's REST gateway
"""

__version__ = "0.3.0"
__all__ = [
    "errors",
    "mnemonic",
    "hd_keys",
    "crypto_utils",
    "address",
    "wallet",
    "proto",
    "coin",
    "msg",
    "transaction",
    "sequence",
    "network",
    "broadcast",
    "account",
    "config",
    "logging_config",
]
