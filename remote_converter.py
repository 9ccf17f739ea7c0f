"""
Client du backend de conversion HTTP (POST /api/v1/convert)
"""

import logging
from typing import Any, List, Mapping, Optional

import requests
from pydantic import ValidationError

from realm_model import ConversionOptions, GeneratedFile

logger = logging.getLogger(__name__)

# Options transmises au backend ; les autres restent locales
BACKEND_OPTIONS = {
    'include_users', 'include_groups', 'include_clients', 'include_roles',
    'generate_terragrunt', 'output_format', 'validate_output',
}


class RemoteConversionError(Exception):
    """Échec de la conversion déléguée (transport, statut HTTP ou refus du backend)"""


class RemoteConverter:
    """Délègue la conversion d'un realm au backend ; aucune nouvelle tentative en cas d'échec"""

    def __init__(self, base_url: str, timeout: float = 30, verify: bool = True):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.verify = verify

    @property
    def convert_url(self) -> str:
        return self.base_url + '/api/v1/convert'

    def build_payload(self, document: Mapping[str, Any],
                      options: Optional[ConversionOptions] = None) -> dict:
        options = options or ConversionOptions()
        return {
            'realm': document,
            'options': options.model_dump(by_alias=True, include=BACKEND_OPTIONS),
        }

    def convert(self, document: Mapping[str, Any],
                options: Optional[ConversionOptions] = None) -> List[GeneratedFile]:
        logger.debug("Conversion déléguée à %s", self.convert_url)
        try:
            response = requests.request("POST", self.convert_url, json=self.build_payload(document, options),
                                        timeout=self.timeout, verify=self.verify)
        except requests.RequestException as e:
            raise RemoteConversionError(f"Backend de conversion injoignable: {e}") from e

        if not response.ok:
            raise RemoteConversionError(f"HTTP {response.status_code} {response.reason}")

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteConversionError("Réponse du backend illisible (JSON attendu)") from e

        if not isinstance(body, Mapping):
            raise RemoteConversionError("Réponse du backend inattendue")
        if not body.get('success'):
            raise RemoteConversionError(str(body.get('error') or 'Conversion refusée par le backend'))

        files = body.get('files')
        if not isinstance(files, list):
            raise RemoteConversionError("Réponse du backend sans liste de fichiers")
        try:
            return [GeneratedFile.model_validate(item) for item in files]
        except ValidationError as e:
            raise RemoteConversionError(f"Fichier généré invalide dans la réponse: {e}") from e
