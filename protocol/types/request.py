from pydantic import BaseModel, Field
from typing import Dict, Any
from ..crypto.hash import sha256_hex, canonical_json
from ..crypto.keys import sign as crypto_sign
from .common import OpType

class SignedRequest(BaseModel):
    """
    An operation submitted over RPC, signed by the caller's key.

    `params` holds the operation arguments with amounts as decimal strings,
    e.g. {"amount": "100"} or {"addresses": [...], "amounts": [...], "total": "..."}.
    """
    op: OpType
    caller: str
    nonce: int
    params: Dict[str, Any] = Field(default_factory=dict)
    pub_key: str = ""    # hex compressed secp256k1 public key
    signature: str = ""  # hex 64-byte (r,s)

    def hash(self) -> str:
        payload = {
            "op": self.op.value,
            "caller": self.caller,
            "nonce": self.nonce,
            "params": self.params,
            "pub_key": self.pub_key,
        }
        return sha256_hex(canonical_json(payload))

    def sign(self, priv_key_bytes: bytes):
        """Signs the request hash. Set `pub_key` first: it is part of the hash."""
        msg_hash = bytes.fromhex(self.hash())
        self.signature = crypto_sign(msg_hash, priv_key_bytes).hex()
