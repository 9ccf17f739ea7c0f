"""Tests du client du backend de conversion."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from realm_model import ConversionOptions
from remote_converter import RemoteConversionError, RemoteConverter


def _response(status_code=200, body=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def remote():
    return RemoteConverter("https://converter.test/", timeout=5)


class TestPayload:
    def test_url(self, remote):
        assert remote.convert_url == "https://converter.test/api/v1/convert"

    def test_options_use_wire_names(self, remote):
        payload = remote.build_payload({"realm": "demo"}, ConversionOptions(include_users=False, exclude_builtin=True))
        assert payload["realm"] == {"realm": "demo"}
        assert payload["options"] == {
            "includeUsers": False,
            "includeGroups": True,
            "includeClients": True,
            "includeRoles": True,
            "generateTerragrunt": True,
            "outputFormat": "terragrunt",
            "validateOutput": False,
        }


class TestConvert:
    """Interprétation des réponses du backend."""

    @patch("remote_converter.requests.request")
    def test_success(self, mock_request, remote):
        mock_request.return_value = _response(body={
            "success": True,
            "files": [{"filePath": "demo/realm/main.tf", "content": "resource {}"}],
        })
        files = remote.convert({"realm": "demo"})
        assert [(f.file_path, f.content) for f in files] == [("demo/realm/main.tf", "resource {}")]
        args, kwargs = mock_request.call_args
        assert args == ("POST", "https://converter.test/api/v1/convert")
        assert kwargs["timeout"] == 5
        assert kwargs["verify"] is True

    @patch("remote_converter.requests.request")
    def test_backend_refusal(self, mock_request, remote):
        mock_request.return_value = _response(body={"success": False, "error": "realm invalide"})
        with pytest.raises(RemoteConversionError, match="realm invalide"):
            remote.convert({"realm": "demo"})

    @patch("remote_converter.requests.request")
    def test_http_error(self, mock_request, remote):
        mock_request.return_value = _response(status_code=502, reason="Bad Gateway")
        with pytest.raises(RemoteConversionError, match="HTTP 502 Bad Gateway"):
            remote.convert({"realm": "demo"})

    @patch("remote_converter.requests.request")
    def test_transport_error(self, mock_request, remote):
        mock_request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(RemoteConversionError, match="injoignable"):
            remote.convert({"realm": "demo"})

    @patch("remote_converter.requests.request")
    def test_unreadable_body(self, mock_request, remote):
        mock_request.return_value = _response(body=ValueError("no json"))
        with pytest.raises(RemoteConversionError):
            remote.convert({"realm": "demo"})

    @patch("remote_converter.requests.request")
    def test_missing_files(self, mock_request, remote):
        mock_request.return_value = _response(body={"success": True})
        with pytest.raises(RemoteConversionError):
            remote.convert({"realm": "demo"})
