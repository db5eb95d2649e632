"""
Network configuration.

Known networks ship with the package in networks.json; each entry names the
P2P network identifier, the digest environment, bootstrap peers and a
default RPC endpoint for the source chain.
"""
import importlib.resources
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .gossip.transport import request_topic, response_topic
from .signing import Environment

logger = logging.getLogger(__name__)

CCQ_SUFFIX = "/ccq"
DEFAULT_PORT = 8998


class NetworkConfig:
    """Loads and caches the packaged network definitions."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network definitions, caching them after the first read.

        Returns:
            Mapping of network name to its definition
        """
        if cls._networks_cache is None:
            resource = importlib.resources.files("ccq_client").joinpath("networks.json")
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, name: str) -> Dict[str, Any]:
        """
        Get a single network definition.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if name not in networks:
            raise ValueError(f"Network '{name}' not found. Available networks: {', '.join(sorted(networks))}")
        return networks[name]

    @classmethod
    def get_rpc_url(cls, name: str, override: Optional[str] = None) -> Optional[str]:
        """
        RPC endpoint of a network's source chain.

        Precedence: override argument, then {NAME}_RPC_URL, then networks.json.
        """
        if override:
            return override
        env_var = f"{name.upper().replace('-', '_')}_RPC_URL"
        if os.environ.get(env_var):
            return os.environ[env_var]
        return cls.get_network(name).get("rpc")

    @classmethod
    def get_chain_id(cls, name: str) -> int:
        return int(cls.get_network(name)["chainId"])

    @classmethod
    def environment_for_network_id(cls, network_id: str) -> Environment:
        """
        Map a P2P network identifier to its digest environment.

        Unknown identifiers are treated as devnet so a local network can't
        produce signatures that are valid on mainnet.
        """
        base = network_id[:-len(CCQ_SUFFIX)] if network_id.endswith(CCQ_SUFFIX) else network_id
        for definition in cls.load_networks().values():
            if definition["networkId"] == base:
                return Environment(definition["environment"])
        logger.warning(f"Unknown network id {network_id}, signing for devnet")
        return Environment.DEVNET


@dataclass
class QueryNetwork:
    """
    Resolved settings for talking to one network.

    Attributes:
        network_id: Base P2P network identifier (without the /ccq suffix)
        environment: Digest environment
        bootstrap_peers: Bootstrap multiaddrs
        port: P2P listen port
        rpc: Default RPC endpoint of the source chain
        chain_id: Default chain to query
    """
    network_id: str
    environment: Environment
    bootstrap_peers: List[str] = field(default_factory=list)
    port: int = DEFAULT_PORT
    rpc: Optional[str] = None
    chain_id: int = 2

    @property
    def ccq_network_id(self) -> str:
        return self.network_id + CCQ_SUFFIX

    @property
    def request_topic(self) -> str:
        return request_topic(self.ccq_network_id)

    @property
    def response_topic(self) -> str:
        return response_topic(self.ccq_network_id)

    @classmethod
    def from_name(cls, name: str, port: int = DEFAULT_PORT) -> "QueryNetwork":
        """Build settings from a packaged network definition."""
        definition = NetworkConfig.get_network(name)
        return cls(
            network_id=definition["networkId"],
            environment=Environment(definition["environment"]),
            bootstrap_peers=list(definition.get("bootstrapPeers", [])),
            port=port,
            rpc=NetworkConfig.get_rpc_url(name),
            chain_id=NetworkConfig.get_chain_id(name),
        )

    @classmethod
    def from_network_id(
        cls,
        network_id: str,
        bootstrap_peers: Optional[List[str]] = None,
        port: int = DEFAULT_PORT
    ) -> "QueryNetwork":
        """
        Build settings from a raw P2P network identifier.

        Values missing from the arguments are filled from the matching
        packaged definition, if there is one.
        """
        if network_id.endswith(CCQ_SUFFIX):
            network_id = network_id[:-len(CCQ_SUFFIX)]
        environment = NetworkConfig.environment_for_network_id(network_id)
        definition = next(
            (d for d in NetworkConfig.load_networks().values() if d["networkId"] == network_id),
            {},
        )
        if bootstrap_peers is None:
            bootstrap_peers = list(definition.get("bootstrapPeers", []))
        return cls(
            network_id=network_id,
            environment=environment,
            bootstrap_peers=bootstrap_peers,
            port=port,
            rpc=definition.get("rpc"),
            chain_id=definition.get("chainId", 2),
        )


def response_timeout_from_env(default: Optional[float] = None) -> Optional[float]:
    """
    Read CCQ_RESPONSE_TIMEOUT (seconds). Unset, empty, or 0 means no timeout.
    """
    value = os.environ.get("CCQ_RESPONSE_TIMEOUT")
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid CCQ_RESPONSE_TIMEOUT={value!r}")
        return default
    return timeout if timeout > 0 else None
