# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict

# Global Constants
DENOM = "dst"
DECIMALS = 18
BASIS_POINTS = 10_000
SECONDS_PER_DAY = 86_400

# Pool account on the token (a label; it never signs)
CONTRACT_ADDRESS = "dst1stakingpool00000000000000000000000000000000"

class StakingConfig:
    def __init__(self,
                 network_id: str,
                 token_symbol: str = DENOM,
                 # Reward window
                 reward_lifetime_sec: int = 365 * SECONDS_PER_DAY,
                 fixed_apr_bps: int = 500,          # 5.00% annual
                 max_stakable: int = 10_000_000 * 10**DECIMALS,
                 # Arithmetic width of every counter
                 uint_bits: int = 128,
                 # Re-check sum invariants after every operation (O(accounts))
                 check_invariants: bool = True,
                 admin_address: str = None):
        if reward_lifetime_sec <= 0:
            raise ValueError("reward_lifetime_sec must be positive")
        if fixed_apr_bps < 0:
            raise ValueError("fixed_apr_bps must be non-negative")
        self.network_id = network_id
        self.token_symbol = token_symbol
        self.reward_lifetime_sec = reward_lifetime_sec
        self.fixed_apr_bps = fixed_apr_bps
        self.max_stakable = max_stakable
        self.uint_bits = uint_bits
        self.check_invariants = check_invariants
        self.admin_address = admin_address

NETWORKS: Dict[str, StakingConfig] = {
    "devnet": StakingConfig(
        network_id="devnet",
        reward_lifetime_sec=365 * SECONDS_PER_DAY,
        fixed_apr_bps=500,
        max_stakable=10_000_000 * 10**DECIMALS,
        check_invariants=True,
    ),
    "testnet": StakingConfig(
        network_id="testnet",
        reward_lifetime_sec=30 * SECONDS_PER_DAY,   # Short window for rehearsals
        fixed_apr_bps=500,
        max_stakable=1_000_000 * 10**DECIMALS,
        check_invariants=True,
    ),
    "mainnet": StakingConfig(
        network_id="mainnet",
        reward_lifetime_sec=365 * SECONDS_PER_DAY,
        fixed_apr_bps=500,
        max_stakable=50_000_000 * 10**DECIMALS,
        check_invariants=False,
    )
}

# Default to devnet for now
CURRENT_NETWORK = NETWORKS["devnet"]
