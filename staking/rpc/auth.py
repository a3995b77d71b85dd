"""
Request authentication for the RPC surface.

Every state-changing request carries the caller's public key, a signature over
SignedRequest.hash() and the caller's next nonce. The caller address must be
the one derived from the public key, so the `caller` field cannot name anyone
else (the administrator included).
"""
from typing import Dict, Optional
import logging
import threading
from protocol.types.common import AuthenticationError, OpType
from protocol.types.request import SignedRequest
from protocol.crypto.addresses import address_from_pubkey
from protocol.crypto.keys import verify
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)


class RequestVerifier:
    """
    Checks signed requests and tracks one nonce per caller.

    A nonce is consumed as soon as its request authenticates, whether or not
    the operation then succeeds, so a rejected request cannot be replayed
    once its preconditions change.
    """

    def __init__(self, db: Optional[StorageDB] = None):
        self.db = db
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()
        if self.db:
            for k, v in self.db.get_state_by_prefix("nonce:").items():
                self._nonces[k.split(":", 1)[1]] = int(v)

    def next_nonce(self, address: str) -> int:
        return self._nonces.get(address, 0)

    def verify(self, req: SignedRequest, op: OpType) -> str:
        """
        Authenticate `req` for `op` and consume its nonce.

        Returns:
            The authenticated caller address

        Raises:
            AuthenticationError: wrong op, missing or mismatched key,
                bad signature, or unexpected nonce
        """
        if req.op != op:
            raise AuthenticationError(f"Request signed for {req.op.value}, submitted as {op.value}")
        if not req.signature or not req.pub_key:
            raise AuthenticationError("Missing signature or pub_key")

        try:
            pub_bytes = bytes.fromhex(req.pub_key)
            sig_bytes = bytes.fromhex(req.signature)
        except ValueError:
            raise AuthenticationError("pub_key and signature must be hex")

        prefix = req.caller.rsplit("1", 1)[0]
        derived = address_from_pubkey(pub_bytes, prefix=prefix)
        if derived != req.caller:
            raise AuthenticationError(f"pub_key mismatch: derived {derived}, expected {req.caller}")

        if not verify(bytes.fromhex(req.hash()), sig_bytes, pub_bytes):
            raise AuthenticationError("Invalid signature")

        with self._lock:
            expected = self.next_nonce(req.caller)
            if req.nonce != expected:
                raise AuthenticationError(f"Invalid nonce: expected {expected}, got {req.nonce}")
            self._nonces[req.caller] = expected + 1
            if self.db:
                self.db.set_state_many({f"nonce:{req.caller}": str(expected + 1)})

        logger.debug(f"Authenticated {op.value} from {req.caller} (nonce {req.nonce})")
        return req.caller
