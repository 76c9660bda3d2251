from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

from dam_renditions.config import TransformStrategy
from dam_renditions.lambda_utils import logger
from dam_renditions.models import AssetMetadata, RenditionRequest


def template_address(base_url: str, preset: str) -> Optional[str]:
    """
    Insert the preset segment in front of the last two path segments.

    ``.../transform/R123/slug-name`` becomes
    ``.../transform/<preset>/R123/slug-name``. Returns None when the base
    address has fewer than two path segments.
    """
    parts = urlsplit(base_url)
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        return None

    path = "/".join(segments[:-2] + [preset] + segments[-2:])
    return urlunsplit((parts.scheme, parts.netloc, f"/{path}", parts.query, ""))


def resolve_from_template(base_url: str, presets: Iterable[str]) -> Dict[str, str]:
    addresses = {}
    for preset in presets:
        address = template_address(base_url, preset)
        if address is None:
            logger.warning(
                "Transform base address has too few path segments",
                extra={"transformBaseUrl": base_url},
            )
            return {}
        addresses[preset] = address
    return addresses


def resolve_from_mapping(mapping: Dict[str, str], presets: Iterable[str]) -> Dict[str, str]:
    addresses = {}
    for preset in presets:
        if preset in mapping:
            addresses[preset] = mapping[preset]
        else:
            logger.debug(f"Preset {preset} not present in thumbnail mapping")
    return addresses


def mapping_covers(metadata: AssetMetadata, presets: Iterable[str]) -> bool:
    return any(preset in metadata.thumbnails for preset in presets)


def resolve_addresses(
    metadata: AssetMetadata,
    presets: Iterable[str],
    strategy: TransformStrategy = TransformStrategy.AUTO,
) -> Dict[str, str]:
    """Map each configured preset to the address its rendition is served from."""
    presets = list(presets)

    if strategy is TransformStrategy.MAPPING or (
        strategy is TransformStrategy.AUTO and mapping_covers(metadata, presets)
    ):
        return resolve_from_mapping(metadata.thumbnails, presets)

    if not metadata.transformBaseUrl:
        return {}
    return resolve_from_template(metadata.transformBaseUrl, presets)


def rendition_requests(addresses: Dict[str, str]) -> List[RenditionRequest]:
    return [RenditionRequest(preset, address) for preset, address in addresses.items()]
