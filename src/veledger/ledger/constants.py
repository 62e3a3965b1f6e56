# src/veledger/ledger/constants.py
from __future__ import annotations

DAY_SECONDS: int = 86_400
WEEK_SECONDS: int = 7 * DAY_SECONDS
YEAR_SECONDS: int = 52 * WEEK_SECONDS

DEFAULT_EPOCH_SECONDS: int = WEEK_SECONDS
DEFAULT_MAX_LOCK_SECONDS: int = 4 * YEAR_SECONDS
DEFAULT_MIN_LOCK_EPOCHS: int = 2

DEFAULT_FEE_INCREASE_DELAY_EPOCHS: int = 2
DEFAULT_MAX_DELEGATE_FEE_BPS: int = 5_000
DEFAULT_DELEGATE_REGISTRATION_FEE: int = 0
DEFAULT_SWEEP_COOLDOWN_SECONDS: int = 4 * WEEK_SECONDS

BPS_DENOMINATOR: int = 10_000

# Asset kinds held in custody.
DEFAULT_LOCK_ASSET_A: str = "NATIVE"
DEFAULT_LOCK_ASSET_B: str = "STAKED"
DEFAULT_REWARD_ASSET: str = "NATIVE"
DEFAULT_NATIVE_ASSET: str = "NATIVE"
DEFAULT_WRAPPED_ASSET: str = "WNATIVE"

# Epoch states, in lifecycle order.
EPOCH_VOTING: str = "Voting"
EPOCH_ENDED: str = "Ended"
EPOCH_VERIFIED: str = "Verified"
EPOCH_PROCESSED: str = "Processed"
EPOCH_FINALIZED: str = "Finalized"
EPOCH_FORCE_FINALIZED: str = "ForceFinalized"

EPOCH_TERMINAL_STATES = frozenset({EPOCH_FINALIZED, EPOCH_FORCE_FINALIZED})

# Roles consulted through the injected authority.
ROLE_ADMIN: str = "admin"
ROLE_POOL_ADMIN: str = "pool_admin"
ROLE_EPOCH_ADMIN: str = "epoch_admin"
ROLE_EMERGENCY_OPERATOR: str = "emergency_operator"
ROLE_COLLECTOR: str = "collector"
ROLE_REWARDS_FUNDER: str = "rewards_funder"

ALL_ROLES = frozenset(
    {
        ROLE_ADMIN,
        ROLE_POOL_ADMIN,
        ROLE_EPOCH_ADMIN,
        ROLE_EMERGENCY_OPERATOR,
        ROLE_COLLECTOR,
        ROLE_REWARDS_FUNDER,
    }
)
