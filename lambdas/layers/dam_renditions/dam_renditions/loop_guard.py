from typing import Optional

DEFAULT_SEPARATOR = "__"


def rendition_filename(
    stem: str, preset: str, extension: str, separator: str = DEFAULT_SEPARATOR
) -> str:
    """Name given to an uploaded rendition, e.g. ``photo__crop300.jpg``."""
    return f"{stem}{separator}{preset}.{extension}"


def is_derivative(asset_name: Optional[str], separator: str = DEFAULT_SEPARATOR) -> bool:
    """True for assets this pipeline produced itself (see rendition_filename)."""
    return bool(asset_name) and separator in asset_name
