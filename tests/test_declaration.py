"""Tests for declaration.py.

Tests for loading YAML declarations.
"""

import tempfile
from pathlib import Path

import pytest

from landform.core.errors import DeclarationError
from landform.declaration import load_declaration, parse_declaration
from landform.model import ResourceKey, ResourceRef

TOPOLOGY = """
resources:
  - kind: network
    name: main
    attributes:
      cidr: 10.0.0.0/16
  - kind: subnet
    name: a
    attributes:
      network_id: ${network.main.id}
      cidr: 10.0.1.0/24
      tags: [web, "${network.main.cidr}"]
    depends_on: [network.main]
outputs:
  subnet_id: ${subnet.a.id}
providers:
  network: {type: memory}
  subnet: {type: http, base_url: "https://cloud.example.com"}
"""


def write(content: str) -> Path:
    tmp = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False)
    tmp.write(content)
    tmp.close()
    return Path(tmp.name)


class TestLoadDeclaration:
    """Tests for load_declaration."""

    def test_load_topology(self):
        path = write(TOPOLOGY)
        try:
            declaration = load_declaration(path)
        finally:
            path.unlink()

        network, subnet = declaration.resources
        assert network.key == ResourceKey("network", "main")
        assert network.attributes == {"cidr": "10.0.0.0/16"}
        assert subnet.attributes["network_id"] == ResourceRef("network", "main", "id")
        assert subnet.attributes["tags"] == ["web", ResourceRef("network", "main", "cidr")]
        assert subnet.depends_on == frozenset({ResourceKey("network", "main")})
        assert declaration.outputs == {"subnet_id": ResourceRef("subnet", "a", "id")}
        assert declaration.providers["subnet"]["type"] == "http"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeclarationError, match="not found"):
            load_declaration(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("resources: [unclosed")
        with pytest.raises(DeclarationError, match="Invalid YAML"):
            load_declaration(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        declaration = load_declaration(path)
        assert declaration.resources == ()


class TestParseDeclaration:
    """Validation of the declaration structure."""

    def test_partial_interpolation_is_literal(self):
        declaration = parse_declaration(
            {"resources": [{"kind": "dns", "name": "d", "attributes": {"host": "db-${x.y.z}"}}]}
        )
        assert declaration.resources[0].attributes == {"host": "db-${x.y.z}"}

    @pytest.mark.parametrize(
        "data,message",
        [
            (["not", "a", "mapping"], "must be a mapping"),
            ({"resource": []}, "Unknown top-level"),
            ({"resources": {"kind": "x"}}, "'resources' must be a list"),
            ({"resources": ["network"]}, "Resource #0 must be a mapping"),
            ({"resources": [{"name": "main"}]}, "missing 'kind'"),
            ({"resources": [{"kind": "network"}]}, "missing 'name'"),
            ({"resources": [{"kind": "n", "name": "m", "attrs": {}}]}, "unknown fields: attrs"),
            ({"resources": [{"kind": "n", "name": "m", "attributes": [1]}]}, "must be a mapping"),
            ({"resources": [{"kind": "n", "name": "m", "depends_on": "x.y"}]}, "must be a list"),
            ({"resources": [{"kind": "n", "name": "m", "depends_on": ["nodot"]}]}, "Invalid resource key"),
            ({"outputs": ["x"]}, "'outputs' must be a mapping"),
            ({"providers": {"network": "memory"}}, "'providers' must map"),
        ],
    )
    def test_invalid_structure(self, data, message):
        with pytest.raises(DeclarationError, match=message):
            parse_declaration(data, "topology.yaml")

    def test_error_details_name_resource(self):
        with pytest.raises(DeclarationError) as exc_info:
            parse_declaration({"resources": [{"kind": "n", "name": "m", "extra": 1}]}, "t.yaml")
        assert exc_info.value.details["resource"] == "n.m"
        assert exc_info.value.details["file"] == "t.yaml"
