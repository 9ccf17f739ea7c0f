"""Tests des utilitaires de rendu HCL."""

from hcl_format import (attr, block, commented_out, hcl_escape, hcl_value, nested_block,
                        notice_stub, reference_map, terraform_requirements, variable)


class TestValues:
    def test_escape_quotes_and_newlines(self):
        assert hcl_escape('a "b"\nc') == 'a \\"b\\"\\nc'

    def test_escape_interpolation(self):
        assert hcl_escape("${var.x} %{if}") == "$${var.x} %%{if}"

    def test_scalars(self):
        assert hcl_value(True) == "true"
        assert hcl_value(None) == "null"
        assert hcl_value(30) == "30"
        assert hcl_value("x") == '"x"'

    def test_list(self):
        assert hcl_value(["a", "b"]) == '["a", "b"]'
        assert hcl_value([]) == "[]"

    def test_map_is_sorted_and_indented(self):
        assert attr("config", {"b": "2", "a": "1"}) == '  config = {\n    "a" = "1"\n    "b" = "2"\n  }'

    def test_reference_map_keeps_expressions(self):
        rendered = reference_map({"alice": "keycloak_user.alice.id"})
        assert '"alice" = keycloak_user.alice.id' in rendered


class TestBlocks:
    def test_block_and_nested_block(self):
        body = [attr("a", 1)] + nested_block("inner", [attr("b", "x", 2)])
        assert block("thing", body) == 'thing {\n  a = 1\n  inner {\n    b = "x"\n  }\n}\n'

    def test_commented_out_prefixes_every_line(self):
        rendered = commented_out('resource "x" "y" {\n  a = 1\n}\n')
        assert all(line.startswith("#") for line in rendered.splitlines())

    def test_sensitive_variable(self):
        rendered = variable("secrets", "Secrets", var_type="map(string)", default={}, has_default=True, sensitive=True)
        assert 'variable "secrets" {' in rendered
        assert "type = map(string)" in rendered
        assert "default = {}" in rendered
        assert "sensitive = true" in rendered

    def test_requirements_with_null_provider(self):
        rendered = terraform_requirements(use_null_provider=True)
        assert 'source  = "keycloak/keycloak"' in rendered
        assert 'source  = "hashicorp/null"' in rendered

    def test_notice_stub_only_echoes(self):
        rendered = notice_stub("login_theme", {"theme": "custom"}, "Thème 'custom'")
        assert rendered.startswith('resource "null_resource" "login_theme" {')
        assert 'provisioner "local-exec"' in rendered
        assert 'command = "echo ' in rendered
