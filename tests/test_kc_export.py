"""Tests de l'export depuis un serveur Keycloak (requêtes HTTP simulées)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from kc_export import (KeycloakExportError, detect_keycloak_version, get_access_token,
                       keycloak_endpoints, main, partial_export)


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class TestVersionDetection:
    """Détection moderne (17+) ou legacy (/auth)."""

    @patch("kc_export.requests.request")
    def test_modern(self, mock_request):
        mock_request.return_value = _response(401)
        assert detect_keycloak_version("https://kc.test") == "modern"
        mock_request.assert_called_once()

    @patch("kc_export.requests.request")
    def test_legacy(self, mock_request):
        mock_request.side_effect = [_response(404), _response(401)]
        assert detect_keycloak_version("https://kc.test") == "legacy"
        assert mock_request.call_args[0][1] == "https://kc.test/auth/admin/realms/master"

    @patch("kc_export.requests.request")
    def test_unreachable_defaults_to_legacy(self, mock_request):
        mock_request.side_effect = requests.ConnectionError("refused")
        assert detect_keycloak_version("https://kc.test") == "legacy"


class TestEndpoints:
    def test_modern(self):
        assert keycloak_endpoints("https://kc.test/", "demo", "modern") == (
            "https://kc.test/realms/demo/protocol/openid-connect/token",
            "https://kc.test/admin/realms/demo",
        )

    def test_legacy_with_auth_realm(self):
        auth_url, admin_base = keycloak_endpoints("https://kc.test", "demo", "legacy", auth_realm="master")
        assert auth_url == "https://kc.test/auth/realms/master/protocol/openid-connect/token"
        assert admin_base == "https://kc.test/auth/admin/realms/demo"


class TestToken:
    @patch("kc_export.requests.request")
    def test_token(self, mock_request):
        mock_request.return_value = _response(200, {"access_token": "abc"})
        assert get_access_token("https://kc.test/token", "admin", "secret") == "abc"
        assert mock_request.call_args[1]["data"]["grant_type"] == "password"

    @patch("kc_export.requests.request")
    def test_unauthorized_carries_hints(self, mock_request):
        mock_request.return_value = _response(401)
        with pytest.raises(KeycloakExportError) as excinfo:
            get_access_token("https://kc.test/token", "admin", "wrong")
        assert excinfo.value.status_code == 401
        assert "Nom d'utilisateur ou mot de passe incorrect" in excinfo.value.hints

    @patch("kc_export.requests.request")
    def test_missing_token(self, mock_request):
        mock_request.return_value = _response(200, {})
        with pytest.raises(KeycloakExportError):
            get_access_token("https://kc.test/token", "admin", "secret")


class TestPartialExport:
    """Appel de partial-export."""

    @patch("kc_export.requests.request")
    def test_falls_back_to_get(self, mock_request):
        mock_request.side_effect = [_response(405), _response(200, {"realm": "demo"})]
        assert partial_export("https://kc.test/admin/realms/demo", "abc") == {"realm": "demo"}
        methods = [call[0][0] for call in mock_request.call_args_list]
        assert methods == ["POST", "GET"]
        assert "exportClients=true" in mock_request.call_args[0][1]
        assert mock_request.call_args[1]["headers"]["Authorization"] == "Bearer abc"

    @patch("kc_export.requests.request")
    def test_forbidden(self, mock_request):
        mock_request.return_value = _response(403)
        with pytest.raises(KeycloakExportError) as excinfo:
            partial_export("https://kc.test/admin/realms/demo", "abc")
        assert excinfo.value.status_code == 403
        assert excinfo.value.hints


class TestMain:
    @pytest.fixture(autouse=True)
    def no_environment(self, monkeypatch):
        for name in ("KEYCLOAK_URL", "KEYCLOAK_USERNAME", "KEYCLOAK_PASSWORD", "KEYCLOAK_CLIENT_ID"):
            monkeypatch.delenv(name, raising=False)

    def test_missing_settings(self):
        with pytest.raises(SystemExit):
            main(["demo"])

    @patch("kc_export.export_realm")
    def test_saves_export(self, mock_export, tmp_path):
        mock_export.return_value = {"realm": "demo"}
        output = tmp_path / "demo.json"
        code = main(["demo", "--url", "https://kc.test", "--username", "admin",
                     "--password", "secret", "--output", str(output)])
        assert code == 0
        assert output.read_text(encoding="utf-8").startswith("{")

    @patch("kc_export.export_realm")
    def test_prints_diagnostic(self, mock_export, capsys):
        mock_export.side_effect = KeycloakExportError("Erreur d'authentification: 401", status_code=401,
                                                      hints=["Nom d'utilisateur ou mot de passe incorrect"])
        code = main(["demo", "--url", "https://kc.test", "--username", "admin", "--password", "x"])
        assert code == 1
        assert "=== DIAGNOSTIC ERREUR 401 ===" in capsys.readouterr().out
