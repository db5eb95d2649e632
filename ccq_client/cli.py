"""
ccq-query: send one eth_call query over the gossip network and print the result.

By default it reads WETH name() and totalSupply() on Ethereum mainnet at the
latest block, the same exchange guardians are routinely probed with.
"""
import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from .abi import WETH_ABI, WETH_ADDRESS, AbiCodec
from .client import QueryClient
from .config import DEFAULT_PORT, NetworkConfig, QueryNetwork, response_timeout_from_env
from .correlator import QueryResult
from .exceptions import (
    CCQError,
    QueryCancelledError,
    ResponseTimeoutError,
    SetupError,
)
from .gossip.transport import get_relay_transport
from .keys import load_signer, signer_from_env
from .signing import query_response_digest, recover_signer

logger = logging.getLogger("ccq_client.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2
EXIT_CANCELLED = 130

DEFAULT_SIGNER_KEY = "ccq_query.signerKey"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccq-query",
        description="Send a signed cross-chain query and wait for the matching response.",
    )
    parser.add_argument("--network", default="mainnet",
                        help="Network name from the packaged config, or a raw P2P network id")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="P2P listen port")
    parser.add_argument("--bootstrap", help="Comma separated bootstrap multiaddrs (overrides the network default)")
    parser.add_argument("--signer-key", default=DEFAULT_SIGNER_KEY,
                        help="Armored or hex key file used to sign the request (relative to --config-dir)")
    parser.add_argument("--config-dir", default=".", help="Directory the signer key is loaded from")
    parser.add_argument("--unsafe-dev-mode", action="store_true",
                        help="Accept signer keys flagged as deterministic")
    parser.add_argument("--target-peer-id", help="Only accept responses from this peer ID")
    parser.add_argument("--relay", help="gRPC gossip relay URL (default: $CCQ_RELAY_URL)")
    parser.add_argument("--rpc", help="RPC endpoint used to look up the latest block")
    parser.add_argument("--contract", default=WETH_ADDRESS, help="Contract to call")
    parser.add_argument("--methods", default="name,totalSupply", help="Comma separated view methods to call")
    parser.add_argument("--abi", help="Path to a JSON ABI for --contract (default: WETH)")
    parser.add_argument("--block", help="Block number or hash to query at (default: latest from --rpc)")
    parser.add_argument("--chain-id", type=int, help="Chain to query (default: the network's chain)")
    parser.add_argument("--timeout", type=float,
                        help="Seconds to wait for a response; 0 waits forever "
                             "(default: $CCQ_RESPONSE_TIMEOUT, else forever)")
    parser.add_argument("--min-peers", type=int, default=1, help="Peers to wait for before publishing")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level")
    return parser


def resolve_network(args: argparse.Namespace) -> QueryNetwork:
    bootstrap = None
    if args.bootstrap:
        bootstrap = [peer.strip() for peer in args.bootstrap.split(",") if peer.strip()]

    if args.network in NetworkConfig.load_networks():
        network = QueryNetwork.from_name(args.network, port=args.port)
        if bootstrap is not None:
            network.bootstrap_peers = bootstrap
        return network
    return QueryNetwork.from_network_id(args.network, bootstrap_peers=bootstrap, port=args.port)


def resolve_signer(args: argparse.Namespace):
    """Signer from --signer-key, falling back to $CCQ_SIGNER_KEY."""
    key_path = Path(args.config_dir) / args.signer_key
    if args.signer_key == DEFAULT_SIGNER_KEY and not key_path.is_file():
        signer = signer_from_env()
        if signer is not None:
            return signer
    if not key_path.is_file():
        raise SetupError(f"Signing key file {key_path} not found")
    logger.info(f"Loading signing key from {key_path}")
    return load_signer(key_path, unsafe_dev_mode=args.unsafe_dev_mode)


def load_abi(path: Optional[str]) -> list:
    if not path:
        return WETH_ABI
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise SetupError(f"Failed to load ABI from {path}: {e}") from e


def fetch_latest_block(rpc_url: str) -> int:
    """
    Look up the latest block number.

    Raises:
        SetupError: If the RPC endpoint can't be queried
    """
    logger.info(f"Querying for latest block height url={rpc_url}")
    try:
        block_number = Web3(Web3.HTTPProvider(rpc_url)).eth.block_number
    except (Web3Exception, OSError, ValueError) as e:
        raise SetupError(f"Failed to fetch latest block number: {e}") from e
    logger.info(f"latest block num={block_number} encoded={hex(block_number)}")
    return block_number


def resolve_block(args: argparse.Namespace, network: QueryNetwork) -> str:
    if args.block:
        return hex(int(args.block)) if args.block.isdigit() else args.block
    rpc_url = args.rpc or network.rpc
    if not rpc_url:
        raise SetupError("No --block given and no RPC endpoint to look up the latest block")
    return hex(fetch_latest_block(rpc_url))


def report(result: QueryResult) -> None:
    """Print the decoded results, one line each."""
    responder = None
    try:
        digest = query_response_digest(result.signed_response.query_response)
        responder = recover_signer(digest, result.signed_response.signature)
    except ValueError as e:
        logger.debug(f"Could not recover responder address: {e}")
    print(f"Response from peer {result.sender}" + (f" signed by {responder}" if responder else ""))
    for decoded in result.results:
        if decoded.ok:
            value = decoded.value[0] if isinstance(decoded.value, tuple) and len(decoded.value) == 1 else decoded.value
            print(f"  {decoded.descriptor}: {value}")
        else:
            print(f"  {decoded.descriptor}: <decode failed: {decoded.error}> 0x{decoded.raw.hex()}")


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handler(signum, frame):
        logger.info("Received signal, cancelling")
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    try:
        network = resolve_network(args)
        signer = resolve_signer(args)
        codec = AbiCodec(load_abi(args.abi))
        methods = [m.strip() for m in args.methods.split(",") if m.strip()]
        for method in methods:
            codec.encode_call(method)
        transport = get_relay_transport(args.relay)
        if transport is None:
            raise SetupError("No gossip relay available; pass --relay or set CCQ_RELAY_URL")
        timeout = args.timeout if args.timeout is not None else response_timeout_from_env()
        if timeout is not None and timeout <= 0:
            timeout = None
        allowed = {args.target_peer_id} if args.target_peer_id else None
        block_id = resolve_block(args, network)
    except (CCQError, ValueError) as e:
        logger.error(f"Setup failed: {e}")
        return EXIT_FAILURE

    client = QueryClient(
        transport,
        network,
        signer=signer,
        allowed_senders=allowed,
        timeout=timeout,
    )
    try:
        with client:
            client.start(min_peers=args.min_peers, cancel_event=cancel_event)
            logger.info(f"Sending query for block {block_id} as {client.address}")
            result = client.eth_call(
                args.chain_id if args.chain_id is not None else network.chain_id,
                block_id,
                args.contract,
                codec,
                methods,
                cancel_event=cancel_event,
            )
    except QueryCancelledError:
        logger.info("Query cancelled")
        return EXIT_CANCELLED
    except ResponseTimeoutError as e:
        logger.error(str(e))
        return EXIT_TIMEOUT
    except CCQError as e:
        if cancel_event.is_set():
            logger.info("Query cancelled")
            return EXIT_CANCELLED
        logger.error(f"Query failed: {e}")
        return EXIT_FAILURE

    report(result)
    logger.info("Success! Query answered.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
