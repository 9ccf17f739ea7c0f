"""Tests de l'analyseur de configuration Terragrunt."""

import pytest

from analyze_terragrunt import TerragruntAnalyzer, brace_delta, main
from realm_model import GeneratedFile


@pytest.fixture
def analyzer():
    return TerragruntAnalyzer()


def _errors(results):
    return [issue for issue in results['issues'] if issue['type'] == 'error']


class TestExtraction:
    def test_brace_delta_ignores_strings(self):
        assert brace_delta('  a = "{ not a block"') == 0
        assert brace_delta('inner {') == 1

    def test_extract_resources(self, analyzer):
        content = (
            'resource "keycloak_role" "reader" {\n'
            '  realm_id = var.realm_id\n'
            '  attributes = {\n'
            '    "x" = "1"\n'
            '  }\n'
            '  name = "reader"\n'
            '}\n'
            '# resource "keycloak_role" "ghost" {\n'
            '#   name = "ghost"\n'
            '# }\n'
        )
        resources = analyzer.extract_resources(content)
        assert [(r['type'], r['name']) for r in resources] == [('keycloak_role', 'reader')]
        assert set(resources[0]['attributes']) == {'realm_id', 'attributes', 'name'}


class TestChecks:
    """Vérifications heuristiques."""

    def test_missing_required_attribute(self, analyzer):
        results = analyzer.analyze_files([GeneratedFile(
            file_path='r/users/main.tf',
            content='resource "keycloak_user" "bob" {\n  realm_id = var.realm_id\n}\n')])
        assert len(_errors(results)) == 1
        assert 'username' in _errors(results)[0]['message']
        assert results['stats']['invalid_resources'] == 1

    def test_unknown_access_type(self, analyzer):
        content = ('resource "keycloak_openid_client" "c" {\n  realm_id = var.realm_id\n'
                   '  client_id = "c"\n  access_type = "WEIRD"\n}\n')
        results = analyzer.analyze_files([GeneratedFile(file_path='r/clients/main.tf', content=content)])
        assert "WEIRD" in _errors(results)[0]['message']

    def test_dangling_reference(self, analyzer):
        content = ('resource "keycloak_user_groups" "g" {\n  realm_id = var.realm_id\n'
                   '  user_id = keycloak_user.missing.id\n}\n')
        results = analyzer.analyze_files([GeneratedFile(file_path='r/users/main.tf', content=content)])
        assert _errors(results)[0]['resource'] == 'keycloak_user.missing'

    def test_reference_text_inside_string_is_ignored(self, analyzer):
        content = ('resource "keycloak_user" "bob" {\n  realm_id = var.realm_id\n'
                   '  username = "bob"\n  first_name = "keycloak_user.foo.bar"\n}\n')
        results = analyzer.analyze_files([GeneratedFile(file_path='r/users/main.tf', content=content)])
        assert _errors(results) == []

    def test_interpolated_reference_is_checked(self, analyzer):
        content = ('resource "keycloak_user" "bob" {\n  realm_id = var.realm_id\n'
                   '  username = "${keycloak_user.ghost.id}-bob"\n}\n')
        results = analyzer.analyze_files([GeneratedFile(file_path='r/users/main.tf', content=content)])
        assert [issue['resource'] for issue in _errors(results)] == ['keycloak_user.ghost']

    def test_weak_password_policy(self, analyzer):
        content = 'resource "keycloak_realm" "r" {\n  realm = "r"\n  password_policy = "abc"\n}\n'
        results = analyzer.analyze_files([GeneratedFile(file_path='r/realm/main.tf', content=content)])
        assert results['stats']['warnings'] == 1
        assert results['stats']['errors'] == 0

    def test_module_wiring_without_dependency(self, analyzer):
        content = 'include "root" {\n  path = find_in_parent_folders()\n}\n'
        results = analyzer.analyze_files([GeneratedFile(file_path='r/users/terragrunt.hcl', content=content)])
        assert len(_errors(results)) == 2
        assert results['stats']['wiring_files'] == 1

    def test_generated_configuration_is_clean(self, rich_result):
        assert [issue for issue in rich_result.issues if issue['type'] == 'error'] == []


class TestReport:
    def test_report_without_issues(self, analyzer, converter, demo_realm):
        results = analyzer.analyze_files(converter.convert(demo_realm).files)
        report = analyzer.generate_report(results)
        assert "RAPPORT D'ANALYSE TERRAGRUNT" in report
        assert "✅ Aucun problème détecté" in report

    def test_missing_directory(self, analyzer, tmp_path):
        results = analyzer.analyze_directory(str(tmp_path / "absent"))
        assert 'error' in results
        assert "❌ ERREUR" in analyzer.generate_report(results)


class TestMain:
    def test_directory_analysis(self, tmp_path, converter, demo_realm, capsys):
        converter.write_files(converter.convert(demo_realm).files, str(tmp_path))
        assert main([str(tmp_path)]) == 0
        assert "Fichiers Terragrunt: 6" in capsys.readouterr().out

    def test_empty_directory(self, tmp_path):
        assert main([str(tmp_path)]) == 1
