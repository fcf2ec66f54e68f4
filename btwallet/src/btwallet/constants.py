"""
Bitcoin and wallet policy constants.

Fees are expressed per started kilobyte of transaction size, following
the Blocktrail fee model.
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

# Change below this is added to the fee instead of creating an output
DEFAULT_DUST_THRESHOLD = STANDARD_DUST_LIMIT

# Fallback fee rate when no oracle rate is configured
BASE_FEE_PER_KB = 10_000  # satoshis per KB

# m-of-n policy for every wallet address
REQUIRED_SIGNATURES = 2
TOTAL_KEYS = 3

# Derivation chains under M/{key_index}'
CHAIN_RECEIVE = 0
CHAIN_CHANGE = 1

HARDENED_OFFSET = 0x80000000

# Size estimation (bytes)
TX_OVERHEAD_SIZE = 10  # version + locktime + in/out counts
OUTPUT_SIZE = 34  # value + varint + P2PKH/P2SH-sized scriptPubKey
SIGNATURE_SIZE = 72  # DER signature upper bound + sighash byte
COMPRESSED_PUBKEY_SIZE = 33
# OP_2 + 3 * (push + 33) + OP_3 + OP_CHECKMULTISIG
REDEEM_SCRIPT_SIZE = 3 + TOTAL_KEYS * (1 + COMPRESSED_PUBKEY_SIZE)

SIGHASH_ALL = 1
