"""Event topic hash computation."""

from typing import Any, Dict, List

from web3 import Web3

from escrow_indexer.eth.abi_loader import CAMPAIGN, FACTORY, event_abis


def event_signature(event_abi: Dict[str, Any]) -> str:
    """Canonical signature of an event ABI entry.

    Args:
        event_abi: ABI entry of type "event"

    Returns:
        Signature such as "Deposited(address,uint256)"
    """
    input_types = [inp["type"] for inp in event_abi.get("inputs", [])]
    return f"{event_abi['name']}({','.join(input_types)})"


def compute_topic(signature: str) -> str:
    """Compute the keccak256 topic of an event signature.

    Args:
        signature: Event signature (e.g., "CampaignCreated(address,address,uint256,uint256)")

    Returns:
        Topic hash (0x-prefixed lowercase hex string)
    """
    return Web3.to_hex(Web3.keccak(text=signature)).lower()


def topics_by_name(contract_name: str) -> Dict[str, str]:
    """Map event name -> topic hash for one contract ABI."""
    return {abi["name"]: compute_topic(event_signature(abi)) for abi in event_abis(contract_name)}


def get_campaign_created_topic() -> str:
    """Topic hash for the factory's CampaignCreated event."""
    return topics_by_name(FACTORY)["CampaignCreated"]


def get_all_campaign_topics() -> List[str]:
    """Topic hashes for every Campaign event, in ABI order."""
    return list(topics_by_name(CAMPAIGN).values())
