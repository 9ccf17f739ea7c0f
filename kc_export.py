#!/usr/bin/env python3
"""
Export d'un realm depuis un serveur Keycloak (partial-export, lecture seule)
"""

import argparse
import json
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
import urllib3

logger = logging.getLogger(__name__)

# Diagnostic des erreurs courantes d'authentification
AUTH_DIAGNOSTICS = {
    401: [
        "Nom d'utilisateur ou mot de passe incorrect",
        "Compte désactivé ou verrouillé",
        "Client ID incorrect (par défaut: admin-cli)",
        "Realm inexistant ou mal configuré",
    ],
    403: [
        "Compte sans permissions suffisantes",
        "Client ID sans autorisation",
        "Realm avec restrictions d'accès",
    ],
    404: [
        "URL Keycloak incorrecte",
        "Realm inexistant",
        "Endpoint d'authentification incorrect",
    ],
    400: [
        "Format de requête incorrect",
        "Paramètres manquants ou invalides",
        "Grant type non supporté",
    ],
}


class KeycloakExportError(Exception):
    """Échec de l'authentification ou de l'export ; porte le statut HTTP et les causes possibles"""

    def __init__(self, message: str, status_code: Optional[int] = None, hints: Optional[List[str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.hints = hints or []


def detect_keycloak_version(base_url: str, verify: bool = True, timeout: float = 10) -> str:
    """Détecte la version de Keycloak : "modern" (17+) ou "legacy" (préfixe /auth)"""
    candidates = (
        ("modern", base_url.rstrip('/') + "/admin/realms/master"),
        ("legacy", base_url.rstrip('/') + "/auth/admin/realms/master"),
    )
    for version, version_url in candidates:
        try:
            response = requests.request("GET", version_url, verify=verify, timeout=timeout)
        except requests.RequestException as e:
            logger.debug("Sonde %s injoignable: %s", version_url, e)
            continue
        # Sans jeton, l'API d'administration répond 401 si l'endpoint existe
        if response.status_code in (200, 401):
            logger.debug("Détection Keycloak %s", version)
            return version

    logger.debug("Impossible de détecter la version, utilisation du mode legacy par défaut")
    return "legacy"


def keycloak_endpoints(base_url: str, realm: str, version: str, auth_realm: Optional[str] = None) -> Tuple[str, str]:
    """URL du jeton et base de l'API d'administration selon la version détectée"""
    prefix = base_url.rstrip('/') + ("" if version == "modern" else "/auth")
    auth_url = f"{prefix}/realms/{auth_realm or realm}/protocol/openid-connect/token"
    admin_base = f"{prefix}/admin/realms/{realm}"
    return auth_url, admin_base


def get_access_token(auth_url: str, username: str, password: str, client_id: str = 'admin-cli',
                     verify: bool = True, timeout: float = 30) -> str:
    """Obtient un jeton d'accès par le grant password"""
    payload = {
        'grant_type': 'password',
        'client_id': client_id,
        'username': username,
        'password': password,
    }
    try:
        response = requests.request("POST", auth_url, data=payload, verify=verify, timeout=timeout)
    except requests.RequestException as e:
        raise KeycloakExportError(f"Serveur Keycloak injoignable: {e}") from e

    logger.debug("Code de statut d'authentification: %s", response.status_code)
    if response.status_code != 200:
        raise KeycloakExportError(f"Erreur d'authentification: {response.status_code}",
                                  status_code=response.status_code,
                                  hints=AUTH_DIAGNOSTICS.get(response.status_code))

    try:
        token = response.json().get('access_token')
    except ValueError as e:
        raise KeycloakExportError("Réponse d'authentification illisible") from e
    if not token:
        raise KeycloakExportError("Token d'accès non trouvé dans la réponse")
    return token


def partial_export(admin_base: str, token: str, verify: bool = True, timeout: float = 120) -> Dict[str, Any]:
    """Appelle partial-export (POST, puis GET si le serveur répond 405)"""
    url = admin_base + "/partial-export?exportClients=true&exportGroupsAndRoles=true"
    headers = {
        'Content-Type': 'application/json',
        'Authorization': f'Bearer {token}',
    }
    try:
        response = requests.request("POST", url, headers=headers, verify=verify, timeout=timeout)
        if response.status_code == 405:
            logger.info("Méthode POST non autorisée, tentative avec GET...")
            response = requests.request("GET", url, headers=headers, verify=verify, timeout=timeout)
    except requests.RequestException as e:
        raise KeycloakExportError(f"Export impossible: {e}") from e

    logger.debug("Code de statut d'export: %s", response.status_code)
    if response.status_code not in (200, 201):
        raise KeycloakExportError(f"Erreur lors de l'export: {response.status_code}",
                                  status_code=response.status_code,
                                  hints=AUTH_DIAGNOSTICS.get(response.status_code))
    try:
        return response.json()
    except ValueError as e:
        raise KeycloakExportError("Réponse d'export illisible (JSON attendu)") from e


def export_realm(username: str, password: str, base_url: str, realm: str, client_id: str = 'admin-cli',
                 auth_realm: Optional[str] = None, verify: bool = True) -> Dict[str, Any]:
    """Authentifie puis exporte un realm ; rien n'est modifié sur le serveur"""
    start = time.time()
    version = detect_keycloak_version(base_url, verify=verify)
    auth_url, admin_base = keycloak_endpoints(base_url, realm, version, auth_realm)
    logger.debug("Version Keycloak détectée: %s", version)
    logger.debug("URL d'authentification: %s", auth_url)

    token = get_access_token(auth_url, username, password, client_id, verify=verify)
    document = partial_export(admin_base, token, verify=verify)
    logger.info("Realm %s exporté en %.1fs", realm, time.time() - start)
    return document


def save_export(document: Dict[str, Any], path: str):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(document, f, ensure_ascii=False, indent=4)


def main(argv: List[str] = None) -> int:
    """Fonction principale"""
    parser = argparse.ArgumentParser(description="Exporter un realm depuis un serveur Keycloak")
    parser.add_argument("realm", help="Realm à exporter")
    parser.add_argument("--url", default=os.environ.get("KEYCLOAK_URL"), help="URL de Keycloak (défaut: $KEYCLOAK_URL)")
    parser.add_argument("--username", default=os.environ.get("KEYCLOAK_USERNAME"),
                        help="Utilisateur administrateur (défaut: $KEYCLOAK_USERNAME)")
    parser.add_argument("--password", default=os.environ.get("KEYCLOAK_PASSWORD"),
                        help="Mot de passe (défaut: $KEYCLOAK_PASSWORD)")
    parser.add_argument("--client-id", default=os.environ.get("KEYCLOAK_CLIENT_ID", "admin-cli"),
                        help="Client utilisé pour l'authentification (défaut: admin-cli)")
    parser.add_argument("--auth-realm", help="Realm d'authentification (défaut: le realm exporté)")
    parser.add_argument("--output", "-o", default="realm_dump.json", help="Fichier d'export")
    parser.add_argument("--insecure", action="store_true", help="Ne pas vérifier le certificat TLS")
    parser.add_argument("--debug", action="store_true", help="Mode debug")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    missing = [name for name in ('url', 'username', 'password') if not getattr(args, name)]
    if missing:
        parser.error(f"paramètres manquants: {', '.join('--' + name for name in missing)}")

    if args.insecure:
        # Certificats auto-signés
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    print(f"📥 Export du realm '{args.realm}' depuis {args.url}...")
    try:
        document = export_realm(args.username, args.password, args.url, args.realm,
                                client_id=args.client_id, auth_realm=args.auth_realm,
                                verify=not args.insecure)
    except KeycloakExportError as e:
        print(f"❌ {e}")
        if e.hints:
            print(f"\n=== DIAGNOSTIC ERREUR {e.status_code} ===")
            print("Causes possibles:")
            for hint in e.hints:
                print(f"- {hint}")
        print(f"\nURL utilisée: {args.url}")
        print(f"Client ID: {args.client_id}")
        print(f"Username: {args.username}")
        return 1

    save_export(document, args.output)
    print(f"✅ Realm exporté dans '{args.output}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
