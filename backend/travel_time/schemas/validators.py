"""
Shared Pydantic validators for common data types.
"""

import base64
import binascii
import math
from typing import Annotated, Any

from pydantic import BeforeValidator, Field


def validate_latitude(v: Any) -> float:
    """
    Validate latitude value.

    Latitude must be between -90 and 90 degrees.
    """
    if v is None:
        raise ValueError("Latitude is required")

    try:
        lat = float(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid latitude value: {v}")

    if math.isnan(lat) or lat < -90 or lat > 90:
        raise ValueError(f"Latitude must be between -90 and 90, got {lat}")

    return lat


def validate_longitude(v: Any) -> float:
    """
    Validate longitude value.

    Longitude must be between -180 and 180 degrees.
    """
    if v is None:
        raise ValueError("Longitude is required")

    try:
        lon = float(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid longitude value: {v}")

    if math.isnan(lon) or lon < -180 or lon > 180:
        raise ValueError(f"Longitude must be between -180 and 180, got {lon}")

    return lon


def validate_hex_bytes(v: Any) -> bytes | None:
    """Hex-encoded binary (WKB as printed by PostGIS/DuckDB), optional \\x prefix."""
    if v is None or isinstance(v, bytes):
        return v
    text = str(v).strip()
    if text.startswith(("\\x", "0x")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise ValueError("Invalid hex-encoded geometry")


def validate_base64_bytes(v: Any) -> bytes | None:
    if v is None or isinstance(v, bytes):
        return v
    try:
        return base64.b64decode(str(v), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Invalid base64-encoded geometry")


# Annotated types for use in Pydantic models
Latitude = Annotated[
    float,
    BeforeValidator(validate_latitude),
    Field(description="Latitude in degrees (-90 to 90)", examples=[43.94]),
]

Longitude = Annotated[
    float,
    BeforeValidator(validate_longitude),
    Field(description="Longitude in degrees (-180 to 180)", examples=[12.45]),
]

HexBytes = Annotated[
    bytes | None,
    BeforeValidator(validate_hex_bytes),
    Field(default=None, description="Hex-encoded binary geometry"),
]

Base64Bytes = Annotated[
    bytes | None,
    BeforeValidator(validate_base64_bytes),
    Field(default=None, description="Base64-encoded binary geometry"),
]
