# tests/test_endpoints.py
"""
Tests for deterministic endpoint allocation.
"""
import pytest

from devbox.core.config import settings
from devbox.sandbox.endpoints import endpoint_url, host_for, port_for, rolling_hash


class TestPortFor:
    def test_known_values(self):
        assert port_for("a") == 30097
        assert port_for("ab") == 30337

    def test_empty_id_maps_to_base(self):
        assert port_for("") == 30000

    @pytest.mark.parametrize("project_id", [
        "p1",
        "a-much-longer-project-identifier-that-overflows-32-bits",
        "550e8400-e29b-41d4-a716-446655440000",
        "ПРОЕКТ",
        "x" * 500,
    ])
    def test_within_node_port_range(self, project_id):
        assert 30000 <= port_for(project_id) <= 32767

    def test_stable_across_calls(self):
        assert port_for("stable-project") == port_for("stable-project")

    def test_hash_wraps_to_signed_32_bit(self):
        h = rolling_hash("x" * 500)
        assert -(2 ** 31) <= h < 2 ** 31

    def test_hashes_utf16_code_units(self):
        # U+1F600 is the surrogate pair D83D DE00
        assert rolling_hash("\U0001F600") == 0xD83D * 31 + 0xDE00
        assert port_for("\U0001F600") == 31379


class TestHostFor:
    def test_strips_and_lowercases(self):
        assert host_for("My_Project-1", base_domain="apps.example.com") == "myproject1.apps.example.com"

    def test_uses_configured_domain(self):
        assert host_for("abc").endswith("." + settings.endpoints.base_domain)


class TestEndpointUrl:
    def test_local_profile_uses_node_port(self):
        url = endpoint_url("a", production=False)
        assert url == f"http://{settings.endpoints.node_host}:30097"

    def test_production_profile_uses_https_host(self):
        assert endpoint_url("a", production=True) == f"https://a.{settings.endpoints.base_domain}"
