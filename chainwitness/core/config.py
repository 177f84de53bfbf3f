"""
Domain configuration.

Environment Variables:
    CHAINWITNESS_DOMAIN_ID: Identifier of this domain (generated when unset)
    CHAINWITNESS_WITNESS_NETWORK: Ledger network recorded on new events (default sepolia)
    CHAINWITNESS_SMART_CONTRACT_ADDRESS: Witness contract recorded on new events
    CHAINWITNESS_INJECT_SIGNATURE: Append a signature marker to signed documents (default true)
"""

import os
from dataclasses import dataclass

from ..observability import get_logger
from .hasher import Hasher

logger = get_logger(__name__)

# Networks the publishing wallet knows how to submit to
KNOWN_NETWORKS = ("mainnet", "sepolia", "holesky")

DEFAULT_SMART_CONTRACT_ADDRESS = "0x45f59310ADD88E6d23ca58A0Fa7A55BEE6d2a611"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class DomainConfig:
    """Identity and witnessing settings of this domain."""
    domain_id: str
    witness_network: str = "sepolia"
    smart_contract_address: str = DEFAULT_SMART_CONTRACT_ADDRESS
    inject_signature: bool = True

    @classmethod
    def from_env(cls) -> "DomainConfig":
        domain_id = os.getenv("CHAINWITNESS_DOMAIN_ID", "")
        if not domain_id:
            domain_id = Hasher.random_domain_id()
            logger.warning(
                "CHAINWITNESS_DOMAIN_ID not set, generated an ephemeral domain id",
                domain_id=domain_id,
            )

        network = os.getenv("CHAINWITNESS_WITNESS_NETWORK", "sepolia").lower()
        if network not in KNOWN_NETWORKS:
            logger.warning("Unrecognized witness network", witness_network=network)

        return cls(
            domain_id=domain_id,
            witness_network=network,
            smart_contract_address=os.getenv(
                "CHAINWITNESS_SMART_CONTRACT_ADDRESS", DEFAULT_SMART_CONTRACT_ADDRESS
            ),
            inject_signature=_env_bool("CHAINWITNESS_INJECT_SIGNATURE", True),
        )
