from __future__ import annotations

"""Transaction payload schemas.

Strict pydantic models, one per tx type. The executor validates payload
shape (types, required keys, unknown keys rejected) before apply so a
malformed payload never reaches an applier.

Apply-layer code still enforces semantics (ranges that depend on state,
ownership, epoch state, ...). These schemas are early shape checks only.
"""

from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

Json = Dict[str, Any]


# ---------------------------------------------------------------------------
# Base Models
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


class _EmptyPayload(_StrictModel):
    """Payload must be an empty object (or omitted)."""


class _LockRef(_StrictModel):
    lock_id: int = Field(..., ge=1)


class _EpochRef(_StrictModel):
    epoch: int = Field(..., ge=1)


class _EpochPools(_EpochRef):
    pools: List[str] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Decay ledger
# ---------------------------------------------------------------------------


class LockCreatePayload(_StrictModel):
    expiry: int = Field(..., ge=0)
    amount_a: int = Field(default=0, ge=0)
    amount_b: int = Field(default=0, ge=0)
    delegate: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _nonzero_principal(self) -> "LockCreatePayload":
        if self.amount_a + self.amount_b <= 0:
            raise ValueError("zero_principal")
        return self


class LockIncreaseAmountPayload(_LockRef):
    amount_a: int = Field(default=0, ge=0)
    amount_b: int = Field(default=0, ge=0)


class LockExtendPayload(_LockRef):
    expiry: int = Field(..., ge=0)


class LockDelegatePayload(_LockRef):
    delegate: Optional[str] = Field(default=None, min_length=1)


class LockUnlockPayload(_LockRef):
    pass


# ---------------------------------------------------------------------------
# Pools / epochs
# ---------------------------------------------------------------------------


class PoolBatchPayload(_StrictModel):
    pools: List[str] = Field(..., min_length=1)


class EpochVerifyPayload(_EpochRef):
    all_cleared: bool
    block_list: List[str] = Field(default_factory=list)


class EpochAllocatePayload(_EpochPools):
    reward_amounts: List[int]
    subsidy_amounts: List[int]

    @model_validator(mode="after")
    def _equal_lengths(self) -> "EpochAllocatePayload":
        n = len(self.pools)
        if len(self.reward_amounts) != n or len(self.subsidy_amounts) != n:
            raise ValueError("length_mismatch")
        if any(a < 0 for a in self.reward_amounts) or any(a < 0 for a in self.subsidy_amounts):
            raise ValueError("negative_amount")
        return self


# ---------------------------------------------------------------------------
# Voting / delegates
# ---------------------------------------------------------------------------


class VoteCastPayload(_StrictModel):
    pool_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    as_delegate: bool = False


class VoteMigratePayload(_StrictModel):
    src_pool: str = Field(..., min_length=1)
    dst_pool: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    as_delegate: bool = False


class DelegateFeePayload(_StrictModel):
    fee_bps: int = Field(..., ge=0, le=10_000)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class ClaimPayload(_EpochPools):
    pass


class ClaimDelegatedRewardPayload(_EpochPools):
    delegate: str = Field(..., min_length=1)


class ClaimSubsidyPayload(_EpochPools):
    as_delegate: bool = False


# ---------------------------------------------------------------------------
# Control
# ---------------------------------------------------------------------------


class PauseSetPayload(_StrictModel):
    paused: bool


class FreezeSetPayload(_StrictModel):
    frozen: bool


class RolePayload(_StrictModel):
    role: str = Field(..., min_length=1)
    account: str = Field(..., min_length=1)


Schema = Type[BaseModel]

_SCHEMA_BY_TX_TYPE: Dict[str, Schema] = {
    "VE_LOCK_CREATE": LockCreatePayload,
    "VE_LOCK_INCREASE_AMOUNT": LockIncreaseAmountPayload,
    "VE_LOCK_EXTEND": LockExtendPayload,
    "VE_LOCK_DELEGATE": LockDelegatePayload,
    "VE_LOCK_UNLOCK": LockUnlockPayload,
    "VE_LOCK_EMERGENCY_EXIT": LockUnlockPayload,
    "POOL_CREATE_BATCH": PoolBatchPayload,
    "POOL_REMOVE_BATCH": PoolBatchPayload,
    "EPOCH_END": _EmptyPayload,
    "EPOCH_VERIFY": EpochVerifyPayload,
    "EPOCH_ALLOCATE": EpochAllocatePayload,
    "EPOCH_FINALIZE": _EpochRef,
    "EPOCH_FORCE_FINALIZE": _EpochRef,
    "EPOCH_SWEEP": _EpochRef,
    "VOTE_CAST": VoteCastPayload,
    "VOTE_MIGRATE": VoteMigratePayload,
    "DELEGATE_REGISTER": DelegateFeePayload,
    "DELEGATE_FEE_UPDATE": DelegateFeePayload,
    "DELEGATE_UNREGISTER": _EmptyPayload,
    "REGISTRATION_FEE_SWEEP": _EmptyPayload,
    "CLAIM_REWARD": ClaimPayload,
    "CLAIM_DELEGATE_FEE": ClaimPayload,
    "CLAIM_DELEGATED_REWARD": ClaimDelegatedRewardPayload,
    "CLAIM_SUBSIDY": ClaimSubsidyPayload,
    "CONTROL_PAUSE_SET": PauseSetPayload,
    "CONTROL_FREEZE_SET": FreezeSetPayload,
    "ROLE_GRANT": RolePayload,
    "ROLE_REVOKE": RolePayload,
}


def schema_for(tx_type: str) -> Optional[Schema]:
    return _SCHEMA_BY_TX_TYPE.get(str(tx_type or "").strip().upper())


def validate_payload(*, tx_type: str, payload: Any) -> Tuple[bool, str, str, Optional[Json]]:
    """Validate payload against its schema.

    Returns: (ok, code, reason, details)

    Unknown tx types pass here and are rejected by dispatch.
    """
    sch = schema_for(tx_type)
    if sch is None:
        return True, "", "", None

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return False, "invalid_payload", "payload_must_be_object", None

    try:
        sch(**payload)
    except ValidationError as ve:
        errors = [
            {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
            for e in ve.errors()
        ]
        return False, "invalid_payload", "payload_schema_mismatch", {"tx_type": tx_type, "errors": errors}
    return True, "", "", None


__all__ = ["schema_for", "validate_payload"]
