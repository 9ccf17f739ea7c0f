#!/usr/bin/env python3
"""
Script pour analyser la configuration Terragrunt générée
Vérifications heuristiques : attributs requis, câblage des modules, références internes
Version: 1.0.0
"""

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

from realm_model import GeneratedFile

RESOURCE_HEADER = re.compile(r'^resource\s+"([^"]+)"\s+"([^"]+)"\s*\{\s*$')
ATTRIBUTE_LINE = re.compile(r'^\s*(\w+)\s*=\s*(.*?)\s*$')
REFERENCE = re.compile(r'\b(keycloak_[a-z_]+|null_resource)\.([A-Za-z_][A-Za-z0-9_]*)\.')

ACCESS_TYPES = ('CONFIDENTIAL', 'PUBLIC', 'BEARER-ONLY')

PASSWORD_POLICY_KEYWORDS = [
    'length', 'maxLength', 'digits', 'lowerCase', 'upperCase', 'specialChars',
    'notUsername', 'notEmail', 'passwordHistory', 'hashIterations', 'hashAlgorithm',
    'regexPattern', 'forceExpiredPasswordChange', 'passwordBlacklist',
]


def _strip_comment(line: str) -> str:
    return '' if line.lstrip().startswith('#') else line


def _strip_strings(line: str) -> str:
    """Blanchit le texte littéral des chaînes ; les interpolations ${...} restent lisibles"""
    kept = []
    in_string = False
    escaped = False
    interpolation = 0
    i = 0
    while i < len(line):
        char = line[i]
        if interpolation:
            if char == '{':
                interpolation += 1
            elif char == '}':
                interpolation -= 1
        elif in_string:
            if escaped:
                escaped = False
                char = ' '
            elif char == '\\':
                escaped = True
                char = ' '
            elif line.startswith('$${', i):
                kept.append('   ')
                i += 3
                continue
            elif line.startswith('${', i):
                interpolation = 1
                kept.append('${')
                i += 2
                continue
            elif char == '"':
                in_string = False
            else:
                char = ' '
        elif char == '"':
            in_string = True
        kept.append(char)
        i += 1
    return ''.join(kept)


def brace_delta(line: str) -> int:
    """Variation de profondeur d'une ligne, en ignorant les accolades dans les chaînes"""
    delta = 0
    in_string = False
    escaped = False
    for char in line:
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == '{':
            delta += 1
        elif char == '}':
            delta -= 1
    return delta


class TerragruntAnalyzer:
    """Classe pour analyser les fichiers Terragrunt/Terraform générés"""

    def __init__(self):
        self.issues: List[Dict[str, Any]] = []
        self.stats = {
            'files_analyzed': 0,
            'wiring_files': 0,
            'total_resources': 0,
            'valid_resources': 0,
            'invalid_resources': 0,
            'warnings': 0,
            'errors': 0,
        }

        # Attributs requis pour chaque ressource
        self.required_attributes = {
            'keycloak_realm': ['realm'],
            'keycloak_user': ['realm_id', 'username'],
            'keycloak_group': ['realm_id', 'name'],
            'keycloak_role': ['realm_id', 'name'],
            'keycloak_openid_client': ['realm_id', 'client_id', 'access_type'],
            'keycloak_saml_client': ['realm_id', 'client_id'],
            'keycloak_oidc_identity_provider': ['realm', 'alias', 'client_id'],
            'keycloak_saml_identity_provider': ['realm', 'alias', 'single_sign_on_service_url'],
            'keycloak_custom_identity_provider_mapper': ['realm', 'name', 'identity_provider_alias',
                                                         'identity_provider_mapper'],
            'keycloak_openid_client_default_scopes': ['realm_id', 'client_id', 'default_scopes'],
            'keycloak_openid_client_optional_scopes': ['realm_id', 'client_id', 'optional_scopes'],
            'keycloak_openid_client_scope': ['realm_id', 'name'],
            'keycloak_saml_client_scope': ['realm_id', 'name'],
            'keycloak_required_action': ['realm_id', 'alias'],
            'keycloak_authentication_flow': ['realm_id', 'alias'],
            'keycloak_authentication_subflow': ['realm_id', 'alias', 'parent_flow_alias'],
            'keycloak_authentication_execution': ['realm_id', 'parent_flow_alias', 'authenticator'],
            'keycloak_ldap_user_federation': ['realm_id', 'name', 'connection_url', 'users_dn',
                                              'username_ldap_attribute', 'rdn_ldap_attribute',
                                              'uuid_ldap_attribute', 'user_object_classes'],
            'keycloak_ldap_user_attribute_mapper': ['realm_id', 'ldap_user_federation_id', 'name',
                                                    'user_model_attribute', 'ldap_attribute'],
            'keycloak_realm_events': ['realm_id'],
        }

    def add_issue(self, level: str, file_path: str, resource: str, message: str):
        self.issues.append({
            'type': level,
            'file': file_path,
            'resource': resource,
            'message': message,
        })
        self.stats['errors' if level == 'error' else 'warnings'] += 1

    def extract_resources(self, content: str) -> List[Dict[str, Any]]:
        """Extrait les blocs resource (les lignes commentées sont ignorées)"""
        resources = []
        current = None
        depth = 0
        for line in content.splitlines():
            line = _strip_comment(line)
            if current is None:
                match = RESOURCE_HEADER.match(line)
                if match:
                    current = {'type': match.group(1), 'name': match.group(2), 'lines': []}
                    depth = 1
                continue
            depth += brace_delta(line)
            if depth <= 0:
                current['attributes'] = self.extract_attributes(current.pop('lines'))
                resources.append(current)
                current = None
                continue
            current['lines'].append(line)
        return resources

    def extract_attributes(self, lines: List[str]) -> Dict[str, str]:
        """Attributs de premier niveau d'une ressource (hors blocs imbriqués)"""
        attributes = {}
        depth = 0
        for line in lines:
            if depth == 0:
                match = ATTRIBUTE_LINE.match(line)
                if match:
                    attributes[match.group(1)] = match.group(2)
            depth += brace_delta(line)
        return attributes

    def analyze_resource(self, file_path: str, resource: Dict[str, Any]):
        resource_type = resource['type']
        label = f"{resource_type}.{resource['name']}"
        attributes = resource['attributes']
        errors_before = self.stats['errors']

        self.stats['total_resources'] += 1

        required = self.required_attributes.get(resource_type, [])
        missing = [name for name in required if name not in attributes]
        if missing:
            self.add_issue('error', file_path, label, f"Attributs requis manquants: {', '.join(missing)}")

        if resource_type == 'keycloak_realm':
            self.analyze_realm(file_path, label, attributes)
        elif resource_type == 'keycloak_openid_client':
            self.analyze_client(file_path, label, attributes)
        elif resource_type == 'keycloak_oidc_identity_provider':
            self.analyze_identity_provider(file_path, label, attributes)

        if self.stats['errors'] == errors_before:
            self.stats['valid_resources'] += 1
        else:
            self.stats['invalid_resources'] += 1

    def analyze_realm(self, file_path: str, label: str, attributes: Dict[str, str]):
        policy = attributes.get('password_policy')
        if policy is not None and not self.is_valid_password_policy(policy.strip('"')):
            self.add_issue('warning', file_path, label, f"Politique de mot de passe potentiellement invalide: {policy}")

    def analyze_client(self, file_path: str, label: str, attributes: Dict[str, str]):
        access_type = attributes.get('access_type', '').strip('"')
        if access_type and access_type not in ACCESS_TYPES:
            self.add_issue('error', file_path, label, f"Type d'accès inconnu: {access_type}")
        if access_type == 'BEARER-ONLY' and attributes.get('standard_flow_enabled') == 'true':
            self.add_issue('warning', file_path, label, "Un client bearer-only ne devrait pas activer le flow standard")

    def analyze_identity_provider(self, file_path: str, label: str, attributes: Dict[str, str]):
        provider_id = attributes.get('provider_id', '"oidc"').strip('"')
        if provider_id not in ('oidc', 'keycloak-oidc'):
            # Les fournisseurs sociaux connaissent leurs propres URLs
            return
        missing_urls = [url for url in ('authorization_url', 'token_url') if not attributes.get(url)]
        if missing_urls:
            self.add_issue('error', file_path, label, f"URLs OIDC manquantes: {', '.join(missing_urls)}")

    def is_valid_password_policy(self, policy: str) -> bool:
        """Vérifie si une politique de mot de passe utilise des mots-clés connus"""
        if not policy or len(policy) < 5:
            return False
        return any(keyword in policy for keyword in PASSWORD_POLICY_KEYWORDS)

    def analyze_references(self, file_path: str, content: str, resources: List[Dict[str, Any]]):
        """Signale les références keycloak_*.<nom> vers des ressources absentes du fichier"""
        declared = {(r['type'], r['name']) for r in resources}
        reported = set()
        for line in content.splitlines():
            for match in REFERENCE.finditer(_strip_strings(_strip_comment(line))):
                reference = (match.group(1), match.group(2))
                if reference not in declared and reference not in reported:
                    reported.add(reference)
                    self.add_issue('error', file_path, f'{reference[0]}.{reference[1]}',
                                   "Référence vers une ressource absente du fichier")

    def analyze_wiring(self, file_path: str, content: str):
        """Vérifie qu'un fichier terragrunt.hcl de module dépend du module realm"""
        self.stats['wiring_files'] += 1
        if 'include "root"' not in content:
            if 'generate "provider"' not in content:
                self.add_issue('warning', file_path, file_path, "Fichier Terragrunt sans include ni provider")
            return
        module = Path(file_path).parent.name
        if module == 'realm':
            return
        if 'dependency "realm"' not in content or 'config_path = "../realm"' not in content:
            self.add_issue('error', file_path, file_path, "Dépendance vers le module realm manquante")
        if 'dependency.realm.outputs.realm_id' not in content:
            self.add_issue('error', file_path, file_path, "Entrée realm_id non reliée au module realm")

    def analyze_content(self, file_path: str, content: str):
        self.stats['files_analyzed'] += 1
        if file_path.endswith('terragrunt.hcl'):
            self.analyze_wiring(file_path, content)
            return
        resources = self.extract_resources(content)
        for resource in resources:
            self.analyze_resource(file_path, resource)
        self.analyze_references(file_path, content, resources)

    def results(self) -> Dict[str, Any]:
        return {
            'issues': self.issues,
            'stats': self.stats,
            'files_analyzed': self.stats['files_analyzed'],
        }

    def analyze_files(self, files: Iterable[GeneratedFile]) -> Dict[str, Any]:
        """Analyse des fichiers générés en mémoire"""
        for generated in files:
            self.analyze_content(generated.file_path, generated.content)
        return self.results()

    def analyze_directory(self, directory: str) -> Dict[str, Any]:
        """Analyse tous les fichiers .tf et terragrunt.hcl d'une arborescence"""
        root = Path(directory)
        if not root.exists():
            return {
                'error': f"Le répertoire {root} n'existe pas",
                'issues': [],
                'stats': self.stats,
            }

        paths = sorted(p for p in root.rglob('*')
                       if p.is_file() and (p.suffix == '.tf' or p.name == 'terragrunt.hcl')
                       and '.terragrunt-cache' not in p.parts)
        if not paths:
            return {
                'error': f"Aucun fichier .tf ou terragrunt.hcl trouvé dans {root}",
                'issues': [],
                'stats': self.stats,
            }

        for path in paths:
            try:
                content = path.read_text(encoding='utf-8')
            except (OSError, UnicodeDecodeError) as e:
                self.add_issue('error', str(path), str(path), f"Erreur lors de la lecture du fichier: {e}")
                continue
            self.analyze_content(str(path), content)
        return self.results()

    def generate_report(self, results: Dict[str, Any]) -> str:
        """Génère un rapport d'analyse"""
        report = []
        report.append("=" * 60)
        report.append("RAPPORT D'ANALYSE TERRAGRUNT")
        report.append("=" * 60)

        if 'error' in results:
            report.append(f"❌ ERREUR: {results['error']}")
            return "\n".join(report)

        stats = results['stats']
        issues = results['issues']

        report.append("📊 STATISTIQUES:")
        report.append(f"   • Fichiers analysés: {stats['files_analyzed']}")
        report.append(f"   • Fichiers Terragrunt: {stats['wiring_files']}")
        report.append(f"   • Ressources totales: {stats['total_resources']}")
        report.append(f"   • Ressources valides: {stats['valid_resources']}")
        report.append(f"   • Ressources invalides: {stats['invalid_resources']}")
        report.append(f"   • Avertissements: {stats['warnings']}")
        report.append(f"   • Erreurs: {stats['errors']}")
        report.append("")

        errors = [issue for issue in issues if issue['type'] == 'error']
        warnings = [issue for issue in issues if issue['type'] == 'warning']

        if errors:
            report.append("🚨 ERREURS:")
            for error in errors:
                report.append(f"   • {error['resource']}: {error['message']}")
            report.append("")

        if warnings:
            report.append("⚠️  AVERTISSEMENTS:")
            for warning in warnings:
                report.append(f"   • {warning['resource']}: {warning['message']}")
            report.append("")

        if not errors and not warnings:
            report.append("✅ Aucun problème détecté! La configuration Terragrunt est cohérente.")
        else:
            report.append(f"📋 RÉSUMÉ: {len(errors)} erreur(s), {len(warnings)} avertissement(s)")

        return "\n".join(report)


def main(argv: List[str] = None) -> int:
    """Fonction principale"""
    parser = argparse.ArgumentParser(description="Analyser la configuration Terragrunt générée")
    parser.add_argument("terragrunt_dir", help="Répertoire contenant la configuration générée")
    parser.add_argument("--output", "-o", help="Fichier de sortie pour le rapport")
    parser.add_argument("--json", action="store_true", help="Sortie en format JSON")

    args = parser.parse_args(argv)

    analyzer = TerragruntAnalyzer()
    results = analyzer.analyze_directory(args.terragrunt_dir)

    if args.json:
        print(json.dumps(results, indent=2, ensure_ascii=False))
    else:
        report = analyzer.generate_report(results)
        print(report)

        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                f.write(report)
            print(f"\n📄 Rapport sauvegardé dans: {args.output}")

    return 1 if 'error' in results or results['stats']['errors'] else 0


if __name__ == "__main__":
    sys.exit(main())
