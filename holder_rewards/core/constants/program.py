"""Default AMY program parameters (Berachain, Bulla Exchange AMY/HONEY pool)."""

from __future__ import annotations

from holder_rewards.core.constants.chains import CHAIN_ID_BERACHAIN

PROGRAM_NAME = "AMY"
PROGRAM_CHAIN_ID = CHAIN_ID_BERACHAIN

AMY_TOKEN = "0x098a75baeddec78f9a8d0830d6b86eac5cc8894e"
HONEY_TOKEN = "0xfcbd14dc51f0a4d49d5e53c2e0950e0bc26d0dce"
TOKEN_DECIMALS = 18

BULLA_POSITION_MANAGER = "0xc228fbf18864b6e91d15abfcc2039f87a5f66741"
AMY_HONEY_POOL = "0xff716930eefb37b5b4ac55b1901dc5704b098d84"

# HONEY is a USD stablecoin.
HONEY_PRICE_USD = 1.0

MINIMUM_QUALIFYING_VALUE = 300.0

DEFAULT_TIERS: list[dict] = [
    {"name": "gold", "min_value": 500, "multiplier": 100},
    {"name": "silver", "min_value": 100, "multiplier": 10},
    {"name": "bronze", "min_value": 10, "multiplier": 3},
    {"name": "base", "min_value": 0, "multiplier": 1},
]

CHALLENGE_TEMPLATE = (
    "Verify wallet ownership for the {program} holder program\n"
    "\n"
    "Wallet: {wallet}\n"
    "Nonce: {nonce}\n"
    "Timestamp: {timestamp}"
)

# Breakdown key for LP value; balance sources may not use it.
LIQUIDITY_SOURCE = "liquidity"
