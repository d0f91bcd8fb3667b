# devbox/sandbox/endpoints.py
"""
Endpoint Allocator

Deterministic project id -> network address mapping. No stored state:
every value is recomputed from the project id and settings.
"""
import re
from typing import Optional

from devbox.core.config import settings


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_units(text: str):
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def rolling_hash(project_id: str) -> int:
    """hash = hash * 31 + code unit, wrapped to signed 32-bit at each step."""
    h = 0
    for unit in _utf16_units(project_id):
        h = _to_int32(h * 31 + unit)
    return h


def port_for(project_id: str, base: Optional[int] = None, width: Optional[int] = None) -> int:
    """
    Node port for a project in the local profile.

    port_for("a") == 30097, port_for("ab") == 30337.
    """
    base = settings.endpoints.port_base if base is None else base
    width = settings.endpoints.port_range if width is None else width
    return base + abs(rolling_hash(project_id)) % width


def host_for(project_id: str, base_domain: Optional[str] = None) -> str:
    """Routable hostname for a project in the production profile."""
    domain = base_domain or settings.endpoints.base_domain
    slug = re.sub(r"[^a-zA-Z0-9]", "", project_id).lower()
    return f"{slug}.{domain}"


def endpoint_url(project_id: str, production: Optional[bool] = None) -> str:
    if production is None:
        production = settings.kubernetes.is_production
    if production:
        return f"https://{host_for(project_id)}"
    return f"http://{settings.endpoints.node_host}:{port_for(project_id)}"
