"""
Storage destination selection.

Picks which existing dataset to append to: the most-used destination in the
requested CDN mode.
"""

import asyncio
import dataclasses
import logging
from typing import Any, List, Mapping, Optional, Sequence

from .errors import MalformedResponse, UpstreamUnavailable
from storage_guard.chain.interfaces import DestinationRegistry
from storage_guard.chain.models import StorageDestination

logger = logging.getLogger(__name__)


def select_destination(
    candidates: Sequence[StorageDestination],
    use_cdn: bool,
) -> Optional[StorageDestination]:
    """Select the destination with the most pieces in the requested mode.

    Ties keep the first candidate seen.

    Returns:
        The selected destination, or None when no candidate matches the
        mode and a new destination must be created
    """
    selected = None
    for candidate in candidates:
        if candidate.with_cdn != use_cdn:
            continue
        if selected is None or candidate.current_piece_count > selected.current_piece_count:
            selected = candidate
    return selected


async def list_destinations(registry: DestinationRegistry, client_address: str) -> List[StorageDestination]:
    """List and validate a client's destinations.

    Raises:
        UpstreamUnavailable: If the registry read could not complete
        MalformedResponse: If a destination payload is malformed
    """
    try:
        raw_destinations = await registry.list_client_destinations(client_address)
    except (OSError, asyncio.TimeoutError) as e:
        raise UpstreamUnavailable("destination listing", str(e)) from e
    try:
        return [_parse_destination(raw) for raw in raw_destinations]
    except ValueError as e:
        raise MalformedResponse("destination listing", str(e)) from e


async def resolve_destination(
    registry: DestinationRegistry,
    candidates: Sequence[StorageDestination],
    use_cdn: bool,
) -> Optional[StorageDestination]:
    """Select a destination and attach its provider id.

    A failed provider lookup leaves ``provider_id`` as None rather than
    failing the selection.
    """
    selected = select_destination(candidates, use_cdn)
    if selected is None:
        logger.info("No %s destination to reuse", "CDN" if use_cdn else "non-CDN")
        return None

    provider_id = await lookup_provider_id(registry, selected.id)
    return dataclasses.replace(selected, provider_id=provider_id)


async def lookup_provider_id(registry: DestinationRegistry, destination_id: int) -> Optional[int]:
    """Provider id for a destination, or None if the lookup fails."""
    try:
        provider_id = await registry.resolve_provider_id(destination_id)
    except Exception as e:
        logger.warning("Provider lookup failed for destination %s: %s", destination_id, e)
        return None

    if provider_id is None:
        logger.warning("No provider id resolved for destination %s", destination_id)
    return provider_id


def _parse_destination(raw: Any) -> StorageDestination:
    if isinstance(raw, StorageDestination):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"Unexpected destination payload: {type(raw).__name__}")
    return StorageDestination.from_raw(raw)
