from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TxEnvelope:
    tx_type: str
    signer: str
    nonce: int
    payload: Dict[str, Any]
    parent: Optional[str] = None
    system: bool = False

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "")).strip().upper(),
            signer=str(j.get("signer", "") or "").strip(),
            nonce=int(j.get("nonce", 0) or 0),
            payload=dict(j.get("payload", {}) or {}),
            parent=(None if j.get("parent") is None else str(j.get("parent"))),
            system=bool(j.get("system", False)),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "parent": self.parent,
            "system": self.system,
        }


__all__ = ["TxEnvelope"]
