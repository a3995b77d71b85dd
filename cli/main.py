# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import csv
import requests
import os
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple
from .keystore import KeyStore
from protocol.types.common import OpType
from protocol.types.request import SignedRequest
from protocol.crypto.hash import sha256_hex, canonical_json
from protocol.config.params import DECIMALS, DENOM

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("DUALSTAKE_NODE", DEFAULT_NODE)

def to_units(amount: str) -> int:
    """Whole-token decimal string -> base units. Precision finer than one unit is an error."""
    try:
        units = Decimal(amount) * 10**DECIMALS
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if not units.is_finite() or units < 0 or units != units.to_integral_value():
        raise ValueError(f"Amount {amount} is not a whole number of base units (max {DECIMALS} decimals)")
    return int(units)

def from_units(units) -> str:
    return str(Decimal(int(units)) / 10**DECIMALS)

def parse_units(amount: str) -> int:
    try:
        return to_units(amount)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def _get(url, path):
    try:
        resp = requests.get(f"{url}{path}")
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def _post(url, path, body):
    try:
        resp = requests.post(f"{url}{path}", json=body)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        try:
            detail = resp.json().get('detail', resp.text)
        except ValueError:
            detail = resp.text
        print(f"Error: {detail}")
        sys.exit(1)
    return resp.json()

# --- Query Commands ---
def cmd_query_status(args):
    data = _get(get_node_url(args), "/status")
    print(json.dumps(data, indent=2))

def cmd_query_account(args):
    data = _get(get_node_url(args), f"/account/{args.address}")
    print(f"Staked:          {from_units(data['amount'])} {DENOM}")
    print(f"Pending fixed:   {from_units(data['pending_fixed_reward'])} {DENOM}")
    print(f"Pending dynamic: {from_units(data['pending_dynamic_reward'])} {DENOM}")
    print(f"Max obligation:  {from_units(data['max_obligation'])} {DENOM}")
    print(f"Last settled:    {data['last_settlement_time']}")
    print(f"Claimable until: {data['effective_claim_time']}")

def cmd_query_share(args):
    data = _get(get_node_url(args), f"/account/{args.address}/percentage")
    total = int(data['total_staked'])
    mine = int(data['individual_staked'])
    share = (mine / total * 100) if total else 0.0
    print(f"{from_units(mine)} / {from_units(total)} {DENOM} ({share:.4f}%)")

def cmd_query_balance(args):
    data = _get(get_node_url(args), f"/balance/{args.address}")
    print(f"Balance: {from_units(data['balance'])} {data['token']}")

def cmd_query_events(args):
    data = _get(get_node_url(args), f"/events?limit={args.limit}")
    for e in data['events']:
        print(json.dumps(e))


# --- Keys Commands ---
def cmd_keys_add(args):
    try:
        key = KeyStore().create_key(args.name)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Key '{args.name}' created.")
    print(f"Address: {key['address']}")
    print(f"Pubkey:  {key['public_key']}")
    print("Important: Private key saved unencrypted. Do not share!")

def cmd_keys_import(args):
    try:
        key = KeyStore().import_key(args.name, args.private_key)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Key '{args.name}' imported.")
    print(f"Address: {key['address']}")

def cmd_keys_list(args):
    keys = KeyStore().list_keys()
    if not keys:
        print("No keys found.")
        return
    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")

def cmd_keys_show(args):
    key = load_key(args.name)
    print(json.dumps({k: v for k, v in key.items() if k != 'private_key'}, indent=2))

# --- Signed requests ---
def load_key(name: str) -> Dict[str, str]:
    key = KeyStore().get_key(name)
    if not key:
        print(f"Key '{name}' not found.")
        sys.exit(1)
    return key

def send_signed(url: str, path: str, op: OpType, key: Dict[str, str], params: Dict = None):
    """Fetch the caller's nonce, sign `op` with `key` and submit it."""
    nonce = _get(url, f"/nonce/{key['address']}")['nonce']
    req = SignedRequest(
        op=op,
        caller=key['address'],
        nonce=nonce,
        params=params or {},
        pub_key=key['public_key'],
    )
    req.sign(bytes.fromhex(key['private_key']))
    return _post(url, path, req.model_dump(mode="json"))

# --- Account Commands ---
def cmd_tx_stake(args):
    amount = parse_units(args.amount)
    print(f"Staking {args.amount} {DENOM} from {args.from_name}...")
    res = send_signed(get_node_url(args), "/stake", OpType.STAKE, load_key(args.from_name), {"amount": str(amount)})
    print(f"Success! Staked: {from_units(res['staked'])} {DENOM}")

def cmd_tx_unstake(args):
    amount = parse_units(args.amount)
    print(f"Unstaking {args.amount} {DENOM} to {args.from_name}...")
    res = send_signed(get_node_url(args), "/unstake", OpType.UNSTAKE, load_key(args.from_name), {"amount": str(amount)})
    print(f"Success! Staked: {from_units(res['staked'])} {DENOM}")

def cmd_tx_claim(args):
    res = send_signed(get_node_url(args), "/claim", OpType.CLAIM, load_key(args.from_name))
    print(f"Claimed fixed={from_units(res['fixed_reward'])} dynamic={from_units(res['dynamic_reward'])} {DENOM}")

def cmd_tx_faucet(args):
    res = _post(get_node_url(args), "/faucet", {"address": args.address, "amount": str(parse_units(args.amount))})
    print(f"Balance: {from_units(res['balance'])} {DENOM}")

# --- Admin Commands ---
def cmd_admin_start_clock(args):
    res = send_signed(get_node_url(args), "/admin/start_clock", OpType.START_CLOCK, load_key(args.from_name))
    print(f"Reward clock started at {res['reward_start_time']}")

def cmd_admin_deposit_fixed(args):
    amount = parse_units(args.amount)
    res = send_signed(get_node_url(args), "/admin/deposit_fixed", OpType.DEPOSIT_FIXED,
                      load_key(args.from_name), {"amount": str(amount)})
    print(f"Fixed pool: {from_units(res['fixed_rewards_available'])} {DENOM}")

def cmd_admin_withdraw_fixed(args):
    res = send_signed(get_node_url(args), "/admin/withdraw_fixed", OpType.WITHDRAW_FIXED, load_key(args.from_name))
    print(f"Withdrawn: {from_units(res['withdrawn'])} {DENOM}")

def cmd_admin_deposit_dynamic(args):
    amount = parse_units(args.amount)
    res = send_signed(get_node_url(args), "/admin/deposit_dynamic", OpType.DEPOSIT_DYNAMIC,
                      load_key(args.from_name), {"amount": str(amount)})
    print(f"Dynamic pool to allocate: {from_units(res['dynamic_tokens_to_allocate'])} {DENOM}")

def read_allocations(path: str) -> List[Tuple[str, int]]:
    """Reads `address,amount` rows (amount in whole tokens)."""
    rows = []
    with open(path, newline="") as f:
        for n, row in enumerate(csv.reader(f), start=1):
            if not row or row[0].startswith("#"):
                continue
            try:
                rows.append((row[0].strip(), to_units(row[1].strip())))
            except (IndexError, ValueError) as e:
                raise ValueError(f"{path}:{n}: {e}")
    return rows

def batch_id_for(round_id: str, batch: List[Tuple[str, int]]) -> str:
    """Replay key of one batch: the round plus a digest of its (address, amount) rows."""
    digest = sha256_hex(canonical_json([[addr, str(amt)] for addr, amt in batch]))
    return f"{round_id}:{digest[:32]}"

def cmd_admin_allocate(args):
    try:
        rows = read_allocations(args.file)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    if not rows:
        print("No allocations found.")
        return

    url = get_node_url(args)
    key = load_key(args.from_name)
    batches = [rows[i:i + args.batch_size] for i in range(0, len(rows), args.batch_size)]
    for n, batch in enumerate(batches):
        amounts = [amt for _, amt in batch]
        params = {
            "addresses": [a for a, _ in batch],
            "amounts": [str(a) for a in amounts],
            "total": str(sum(amounts)),
            "batch_id": batch_id_for(args.round, batch) if args.round else None,
        }
        res = send_signed(url, "/admin/allocate_dynamic", OpType.ALLOCATE_DYNAMIC, key, params)
        print(f"Batch {n + 1}/{len(batches)}: {len(batch)} addresses, "
              f"remaining to allocate {from_units(res['dynamic_tokens_to_allocate'])} {DENOM}")

def main():
    parser = argparse.ArgumentParser(prog="dualstake-cli", description="DualStake Client CLI")
    parser.add_argument("--node", help="Node URL (default: http://localhost:8000)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage signing keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create a new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # query
    p_query = subparsers.add_parser("query", help="Query staking state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("status", help="Pool-wide counters")

    pq_acc = sp_query.add_parser("account", help="Stake and pending rewards of an account")
    pq_acc.add_argument("address", help="Account address")

    pq_share = sp_query.add_parser("share", help="Account share of total stake")
    pq_share.add_argument("address", help="Account address")

    pq_bal = sp_query.add_parser("balance", help="Token balance of an account")
    pq_bal.add_argument("address", help="Account address")

    pq_events = sp_query.add_parser("events", help="Recent operations")
    pq_events.add_argument("--limit", type=int, default=20)

    # tx
    p_tx = subparsers.add_parser("tx", help="Account operations")
    sp_tx = p_tx.add_subparsers(dest="subcommand")

    pt_stake = sp_tx.add_parser("stake", help="Stake tokens")
    pt_stake.add_argument("amount", help=f"Amount in {DENOM}")
    pt_stake.add_argument("--from", dest="from_name", required=True, help="Key name")

    pt_unstake = sp_tx.add_parser("unstake", help="Withdraw staked tokens")
    pt_unstake.add_argument("amount", help=f"Amount in {DENOM}")
    pt_unstake.add_argument("--from", dest="from_name", required=True, help="Key name")

    pt_claim = sp_tx.add_parser("claim", help="Claim accrued rewards")
    pt_claim.add_argument("--from", dest="from_name", required=True, help="Key name")

    pt_faucet = sp_tx.add_parser("faucet", help="Devnet: mint tokens")
    pt_faucet.add_argument("address", help="Recipient address")
    pt_faucet.add_argument("amount", help=f"Amount in {DENOM}")

    # admin
    p_admin = subparsers.add_parser("admin", help="Administrator operations")
    sp_admin = p_admin.add_subparsers(dest="subcommand")

    pa_start = sp_admin.add_parser("start-clock", help="Start the reward clock (once)")
    pa_start.add_argument("--from", dest="from_name", required=True, help="Admin key name")

    pa_dfix = sp_admin.add_parser("deposit-fixed", help="Fund the fixed reward pool")
    pa_dfix.add_argument("amount", help=f"Amount in {DENOM}")
    pa_dfix.add_argument("--from", dest="from_name", required=True, help="Admin key name")

    pa_wfix = sp_admin.add_parser("withdraw-fixed", help="Withdraw unobligated fixed rewards after expiry")
    pa_wfix.add_argument("--from", dest="from_name", required=True, help="Admin key name")

    pa_ddyn = sp_admin.add_parser("deposit-dynamic", help="Fund the dynamic reward pool")
    pa_ddyn.add_argument("amount", help=f"Amount in {DENOM}")
    pa_ddyn.add_argument("--from", dest="from_name", required=True, help="Admin key name")

    pa_alloc = sp_admin.add_parser("allocate", help="Allocate dynamic rewards from a CSV of address,amount")
    pa_alloc.add_argument("file", help="CSV file")
    pa_alloc.add_argument("--batch-size", type=int, default=200, help="Addresses per call")
    pa_alloc.add_argument("--round", help="Funding round id (enables replay protection)")
    pa_alloc.add_argument("--from", dest="from_name", required=True, help="Admin key name")

    args = parser.parse_args()

    if args.command == "keys":
        if args.subcommand == "add": cmd_keys_add(args)
        elif args.subcommand == "import": cmd_keys_import(args)
        elif args.subcommand == "list": cmd_keys_list(args)
        elif args.subcommand == "show": cmd_keys_show(args)
        else: p_keys.print_help()

    elif args.command == "query":
        if args.subcommand == "status": cmd_query_status(args)
        elif args.subcommand == "account": cmd_query_account(args)
        elif args.subcommand == "share": cmd_query_share(args)
        elif args.subcommand == "balance": cmd_query_balance(args)
        elif args.subcommand == "events": cmd_query_events(args)
        else: p_query.print_help()

    elif args.command == "tx":
        if args.subcommand == "stake": cmd_tx_stake(args)
        elif args.subcommand == "unstake": cmd_tx_unstake(args)
        elif args.subcommand == "claim": cmd_tx_claim(args)
        elif args.subcommand == "faucet": cmd_tx_faucet(args)
        else: p_tx.print_help()

    elif args.command == "admin":
        if args.subcommand == "start-clock": cmd_admin_start_clock(args)
        elif args.subcommand == "deposit-fixed": cmd_admin_deposit_fixed(args)
        elif args.subcommand == "withdraw-fixed": cmd_admin_withdraw_fixed(args)
        elif args.subcommand == "deposit-dynamic": cmd_admin_deposit_dynamic(args)
        elif args.subcommand == "allocate": cmd_admin_allocate(args)
        else: p_admin.print_help()

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
