from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Optional, Tuple
from prometheus_client import CONTENT_TYPE_LATEST
from protocol.types.common import (
    OpType, ProtocolError, PolicyViolation, Unauthorized, InputIntegrityError,
    FundingShortfall, TransferFailed, AuthenticationError,
)
from protocol.types.request import SignedRequest
from ..core.contract import StakingContract
from ..observability.metrics import export_metrics
from .auth import RequestVerifier
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="DualStake Node RPC")

# Enable CORS for dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
contract: Optional[StakingContract] = None
verifier: Optional[RequestVerifier] = None

class FaucetRequest(BaseModel):
    address: str
    amount: str


def _require_contract() -> StakingContract:
    if not contract:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return contract


def _require_node() -> Tuple[StakingContract, RequestVerifier]:
    c = _require_contract()
    if not verifier:
        raise HTTPException(status_code=503, detail="Request verifier not initialized")
    return c, verifier


def _parse_amount(value: Any, name: str = "amount", bits: int = 128) -> int:
    """Decimal string -> uint. Anything else is a 400, never an arithmetic fault."""
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be a decimal integer string")
    if amount < 0 or amount >= 1 << bits:
        raise HTTPException(status_code=400, detail=f"{name} {value} outside uint{bits} range")
    return amount


def _to_http(e: ProtocolError) -> HTTPException:
    if isinstance(e, AuthenticationError):
        status = 401
    elif isinstance(e, Unauthorized):
        status = 403
    elif isinstance(e, (PolicyViolation, InputIntegrityError)):
        status = 400
    elif isinstance(e, (FundingShortfall, TransferFailed)):
        status = 409
    else:
        status = 500
    return HTTPException(status_code=status, detail=f"{type(e).__name__}: {e}")


def _authenticate(req: SignedRequest, op: OpType) -> Tuple[StakingContract, str]:
    c, v = _require_node()
    try:
        return c, v.verify(req, op)
    except AuthenticationError as e:
        logger.warning(f"Rejected unauthenticated {op.value} for {req.caller}: {e}")
        raise _to_http(e)


@app.get("/")
async def root():
    return {"message": "DualStake Node RPC", "version": "1.0"}

@app.get("/status")
async def get_status():
    c = _require_contract()
    status = c.status()
    # Stringify amounts
    return {k: (str(v) if isinstance(v, int) and not isinstance(v, bool) else v) for k, v in status.items()}

@app.get("/account/{address}")
async def get_account(address: str):
    c = _require_contract()
    try:
        info = c.stake_info(address)
    except ProtocolError as e:
        raise _to_http(e)
    return {
        "address": info.address,
        "amount": str(info.amount),
        "pending_fixed_reward": str(info.pending_fixed_reward),
        "pending_dynamic_reward": str(info.pending_dynamic_reward),
        "max_obligation": str(info.max_obligation),
        "last_settlement_time": info.last_settlement_time,
        "effective_claim_time": info.effective_claim_time,
    }

@app.get("/account/{address}/percentage")
async def get_stake_percentage(address: str):
    c = _require_contract()
    pct = c.stake_percentage(address)
    return {
        "address": address,
        "total_staked": str(pct.total_staked),
        "individual_staked": str(pct.individual_staked),
    }

@app.get("/nonce/{address}")
async def get_nonce(address: str):
    _, v = _require_node()
    return {"address": address, "nonce": v.next_nonce(address)}

@app.get("/balance/{address}")
async def get_balance(address: str):
    c = _require_contract()
    if not hasattr(c.token, "balance_of"):
        raise HTTPException(status_code=501, detail="Token gate does not expose balances")
    return {"address": address, "balance": str(c.token.balance_of(address)), "token": c.token_symbol}

@app.post("/faucet")
async def post_faucet(req: FaucetRequest):
    """Devnet only: mint tokens to `address` on the in-memory token."""
    c = _require_contract()
    if c.config.network_id != "devnet" or not hasattr(c.token, "mint"):
        raise HTTPException(status_code=403, detail="Faucet is only available on devnet")
    amount = _parse_amount(req.amount, bits=c.config.uint_bits)
    if amount == 0:
        raise HTTPException(status_code=400, detail="amount must be positive")
    c.token.mint(req.address, amount)
    logger.info(f"Faucet minted {amount} to {req.address}")
    return {"address": req.address, "balance": str(c.token.balance_of(req.address))}

@app.get("/events")
async def get_events(limit: int = 100):
    c = _require_contract()
    return {"events": [e.model_dump(mode="json") for e in c.recent_events(limit)]}

@app.get("/metrics")
async def get_metrics():
    return Response(content=export_metrics(), media_type=CONTENT_TYPE_LATEST)

# --- Account operations ---
@app.post("/stake")
async def post_stake(req: SignedRequest):
    c, caller = _authenticate(req, OpType.STAKE)
    amount = _parse_amount(req.params.get("amount"), bits=c.config.uint_bits)
    try:
        c.stake(caller, amount)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "staked": str(c.staked_amount(caller))}

@app.post("/unstake")
async def post_unstake(req: SignedRequest):
    c, caller = _authenticate(req, OpType.UNSTAKE)
    amount = _parse_amount(req.params.get("amount"), bits=c.config.uint_bits)
    try:
        c.unstake(caller, amount)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "staked": str(c.staked_amount(caller))}

@app.post("/claim")
async def post_claim(req: SignedRequest):
    c, caller = _authenticate(req, OpType.CLAIM)
    try:
        settled = c.claim(caller)
    except ProtocolError as e:
        raise _to_http(e)
    return {
        "status": "ok",
        "fixed_reward": str(settled.fixed_reward),
        "dynamic_reward": str(settled.dynamic_reward),
    }

# --- Administrator operations ---
@app.post("/admin/start_clock")
async def post_start_clock(req: SignedRequest):
    c, caller = _authenticate(req, OpType.START_CLOCK)
    try:
        started = c.start_reward_clock(caller)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "reward_start_time": started}

@app.post("/admin/deposit_fixed")
async def post_deposit_fixed(req: SignedRequest):
    c, caller = _authenticate(req, OpType.DEPOSIT_FIXED)
    amount = _parse_amount(req.params.get("amount"), bits=c.config.uint_bits)
    try:
        available = c.deposit_fixed_reward(caller, amount)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "fixed_rewards_available": str(available)}

@app.post("/admin/withdraw_fixed")
async def post_withdraw_fixed(req: SignedRequest):
    c, caller = _authenticate(req, OpType.WITHDRAW_FIXED)
    try:
        withdrawn = c.withdraw_fixed_reward(caller)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "withdrawn": str(withdrawn)}

@app.post("/admin/deposit_dynamic")
async def post_deposit_dynamic(req: SignedRequest):
    c, caller = _authenticate(req, OpType.DEPOSIT_DYNAMIC)
    amount = _parse_amount(req.params.get("amount"), bits=c.config.uint_bits)
    try:
        pending = c.deposit_dynamic_reward(caller, amount)
    except ProtocolError as e:
        raise _to_http(e)
    return {"status": "ok", "dynamic_tokens_to_allocate": str(pending)}

@app.post("/admin/allocate_dynamic")
async def post_allocate_dynamic(req: SignedRequest):
    c, caller = _authenticate(req, OpType.ALLOCATE_DYNAMIC)
    bits = c.config.uint_bits
    addresses = req.params.get("addresses")
    raw_amounts = req.params.get("amounts")
    if not isinstance(addresses, list) or not isinstance(raw_amounts, list):
        raise HTTPException(status_code=400, detail="addresses and amounts must be lists")
    amounts = [_parse_amount(a, "amounts", bits) for a in raw_amounts]
    total = _parse_amount(req.params.get("total"), "total", bits)
    try:
        c.allocate_dynamic_reward(
            caller, [str(a) for a in addresses], amounts, total,
            batch_id=req.params.get("batch_id"),
        )
    except ProtocolError as e:
        raise _to_http(e)
    return {
        "status": "ok",
        "dynamic_tokens_to_allocate": str(c.dynamic_tokens_to_allocate),
        "dynamic_tokens_allocated": str(c.dynamic_tokens_allocated),
    }
