import argparse
import os
import logging
import asyncio
import json
from uvicorn import Config, Server
from protocol.config.params import NETWORKS, CURRENT_NETWORK, DECIMALS, CONTRACT_ADDRESS
from protocol.crypto.keys import generate_private_key, public_key_from_private
from protocol.crypto.addresses import address_from_pubkey, is_valid_address
from ..core.contract import StakingContract
from ..core.token import InMemoryToken
from ..storage.db import StorageDB
from ..rpc import api # import module to set globals
from ..rpc.auth import RequestVerifier

logger = logging.getLogger(__name__)

GENESIS_FILE = "genesis.json"
ADMIN_KEY_FILE = "admin_key.json"

def cmd_init(args):
    """Initialize node: data dir and genesis token allocation (devnet token)."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)

    genesis_path = os.path.join(data_dir, GENESIS_FILE)
    if os.path.exists(genesis_path):
        print(f"Genesis already exists at {genesis_path}")
        return

    config = NETWORKS.get(args.network, CURRENT_NETWORK)
    admin = args.admin or config.admin_address
    if not admin:
        # No admin given: create one and leave its key in the data dir
        priv = generate_private_key()
        pub = public_key_from_private(priv)
        admin = address_from_pubkey(pub, prefix=config.token_symbol)
        key_path = os.path.join(data_dir, ADMIN_KEY_FILE)
        with open(key_path, "w") as f:
            json.dump({"name": "admin", "address": admin, "public_key": pub.hex(), "private_key": priv.hex()}, f, indent=2)
        os.chmod(key_path, 0o600)
        print(f"Admin key written to {key_path} (import it with: dualstake keys import admin --private-key ...)")
    elif not is_valid_address(admin, config.token_symbol):
        print(f"Error: {admin} is not a valid {config.token_symbol} address")
        raise SystemExit(1)

    # The admin funds both reward pools out of this premine
    genesis_data = {
        "network": config.network_id,
        "admin": admin,
        "alloc": {
            admin: str(args.premine * 10**DECIMALS)
        }
    }
    with open(genesis_path, "w") as f:
        f.write(json.dumps(genesis_data, indent=2))

    print(f"Admin:   {admin}")
    print(f"Premine: {args.premine} {config.token_symbol}")
    print(f"\nNode initialized in {data_dir}")

def load_contract(data_dir: str) -> StakingContract:
    genesis_path = os.path.join(data_dir, GENESIS_FILE)
    if not os.path.exists(genesis_path):
        raise FileNotFoundError(f"No {GENESIS_FILE} in {data_dir}; run 'init' first")

    with open(genesis_path, "r") as f:
        genesis = json.load(f)

    config = NETWORKS[genesis.get("network", CURRENT_NETWORK.network_id)]
    # Genesis seeds balances only on first start; token.db holds them afterwards
    token = InMemoryToken(
        symbol=config.token_symbol,
        balances={addr: int(amount) for addr, amount in genesis.get("alloc", {}).items()},
        db=StorageDB(os.path.join(data_dir, "token.db")),
    )
    return StakingContract(
        token=token,
        admin=genesis["admin"],
        config=config,
        db_path=os.path.join(data_dir, "staking.db"),
        address=CONTRACT_ADDRESS,
    )

async def run_node_async(args):
    data_dir = args.datadir

    print(f"Starting DualStake node...")
    print(f"Data dir: {data_dir}")
    print(f"RPC: {args.host}:{args.port}")

    contract = load_contract(data_dir)

    # Inject into RPC module (global vars)
    api.contract = contract
    api.verifier = RequestVerifier(contract.db)

    config = Config(app=api.app, host=args.host, port=args.port, log_level="info")
    server = Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        contract.close()

def cmd_run(args):
    """Wrapper to run async main."""
    try:
        asyncio.run(run_node_async(args))
    except KeyboardInterrupt:
        pass

def main():
    parser = argparse.ArgumentParser(description="DualStake Node CLI")
    parser.add_argument("--datadir", default="./.dualstake", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--network", default=CURRENT_NETWORK.network_id, choices=sorted(NETWORKS))
    init_parser.add_argument("--admin", help="Administrator address")
    init_parser.add_argument("--premine", type=int, default=1_000_000, help="Whole tokens minted to the admin")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
