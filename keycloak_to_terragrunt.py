#!/usr/bin/env python3
"""
Script pour transformer un export de realm Keycloak en configuration Terragrunt
Provider: keycloak/keycloak
Version: 1.0.0
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import urllib3
from pydantic import BaseModel, Field

from analyze_terragrunt import TerragruntAnalyzer
from realm_model import (ConversionOptions, ConversionResult, Diagnostic, GeneratedFile,
                         InvalidRealmError, RealmExport, is_valid_realm)
from remote_converter import RemoteConversionError, RemoteConverter
from terragrunt_emitters import MODULES, ModuleDescriptor, render_root_wiring, render_wiring
from terragrunt_paths import DEFINITION, WIRING, module_path, root_dir, root_wiring_path

logger = logging.getLogger(__name__)


class BatchEntry(BaseModel):
    """Résultat de la conversion d'un fichier dans un lot"""

    files: List[GeneratedFile] = Field(default_factory=list)
    skipped: List[Diagnostic] = Field(default_factory=list)
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def plan_modules(document: Mapping[str, Any],
                 options: Optional[ConversionOptions] = None) -> List[ModuleDescriptor]:
    """Modules applicables à un document, dans l'ordre de génération"""
    options = options or ConversionOptions()
    planned = []
    for descriptor in MODULES:
        if descriptor.option and not getattr(options, descriptor.option):
            continue
        if descriptor.trigger(document):
            planned.append(descriptor)
    return planned


def load_realm_files(paths: Iterable[str]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Charge des exports JSON ; renvoie les documents lus et les erreurs par fichier"""
    documents = {}
    errors = {}
    for path in paths:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                documents[path] = json.load(f)
        except OSError as e:
            errors[path] = f"Lecture impossible: {e}"
        except json.JSONDecodeError as e:
            errors[path] = f"JSON invalide: {e}"
    return documents, errors


class KeycloakToTerragrunt:
    """Classe principale pour la conversion Keycloak vers Terragrunt"""

    def __init__(self, options: Optional[ConversionOptions] = None, debug: bool = False):
        self.options = options or ConversionOptions()
        self.debug = debug

    def log_debug(self, message: str):
        """Trace un message de debug si le mode debug est activé"""
        if self.debug:
            logger.debug(message)

    def convert(self, document: Any, file_name: str = 'realm.json') -> ConversionResult:
        """
        Convertit un export de realm en liste de fichiers Terragrunt/Terraform.

        Lève InvalidRealmError si le document n'a pas de propriété "realm" exploitable.
        Les entrées inutilisables sont ignorées et reportées dans le résultat.
        """
        if not is_valid_realm(document):
            raise InvalidRealmError(f"{file_name}: export Keycloak invalide (propriété \"realm\" manquante)")

        export = RealmExport(document, file_name, exclude_builtin=self.options.exclude_builtin)
        root = root_dir(export.realm_name)
        self.log_debug(f"Realm '{export.realm_name}' -> répertoire '{root}'")

        files = []
        if self.options.generate_terragrunt:
            files.append(GeneratedFile(file_path=root_wiring_path(root), content=render_root_wiring(export)))

        for descriptor in plan_modules(document, self.options):
            self.log_debug(f"Génération du module {descriptor.slug}")
            if self.options.generate_terragrunt:
                files.append(GeneratedFile(file_path=module_path(root, descriptor.slug, WIRING),
                                           content=render_wiring(descriptor, export.realm_name)))
            files.append(GeneratedFile(file_path=module_path(root, descriptor.slug, DEFINITION),
                                       content=descriptor.emitter(export)))

        result = ConversionResult(realm=export.realm_name, files=files, diagnostics=export.diagnostics)
        if self.options.validate_output:
            result.issues = self.validate(files)
        return result

    def validate(self, files: List[GeneratedFile]) -> List[Dict[str, Any]]:
        analyzer = TerragruntAnalyzer()
        results = analyzer.analyze_files(files)
        self.log_debug(f"Analyse: {results['stats']['errors']} erreur(s), {results['stats']['warnings']} avertissement(s)")
        return results['issues']

    def convert_batch(self, named_documents: Mapping[str, Any],
                      remote: Optional[RemoteConverter] = None) -> Dict[str, BatchEntry]:
        """
        Convertit plusieurs documents indépendamment, localement ou via le backend.
        Un échec n'interrompt pas le lot : il est reporté dans l'entrée du fichier.
        """
        entries = {}
        for file_name, document in named_documents.items():
            try:
                if remote is None:
                    result = self.convert(document, os.path.basename(file_name))
                    entry = BatchEntry(files=result.files, skipped=result.skipped, issues=result.issues)
                else:
                    if not is_valid_realm(document):
                        raise InvalidRealmError(f"{file_name}: export Keycloak invalide (propriété \"realm\" manquante)")
                    files = remote.convert(document, self.options)
                    issues = self.validate(files) if self.options.validate_output else []
                    entry = BatchEntry(files=files, issues=issues)
            except (InvalidRealmError, RemoteConversionError) as e:
                logger.error("Conversion de %s impossible: %s", file_name, e)
                entry = BatchEntry(error=str(e))
            except Exception as e:
                logger.exception("Erreur inattendue pendant la conversion de %s", file_name)
                entry = BatchEntry(error=f"{file_name}: erreur inattendue ({type(e).__name__}: {e})")
            entries[file_name] = entry
        return entries

    def write_files(self, files: Iterable[GeneratedFile], output_dir: str) -> List[str]:
        """Écrit les fichiers générés sous output_dir et renvoie leurs chemins"""
        written = []
        for generated in files:
            path = os.path.join(output_dir, *generated.file_path.split('/'))
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(generated.content)
            written.append(path)
        self.log_debug(f"{len(written)} fichier(s) écrit(s) dans {output_dir}")
        return written


def main(argv: List[str] = None) -> int:
    """Fonction principale"""
    parser = argparse.ArgumentParser(description="Convertir un export de realm Keycloak en configuration Terragrunt")
    parser.add_argument("export_files", nargs="+", help="Fichier(s) d'export Keycloak (JSON)")
    parser.add_argument("--output-dir", default="terragrunt_output", help="Répertoire de sortie")
    parser.add_argument("--debug", action="store_true", help="Mode debug")
    parser.add_argument("--backend-url", default=os.environ.get("KC2TG_BACKEND_URL"),
                        help="Déléguer la conversion au backend HTTP (défaut: $KC2TG_BACKEND_URL)")
    parser.add_argument("--timeout", type=float, default=30, help="Délai d'attente du backend en secondes")
    parser.add_argument("--insecure", action="store_true", help="Ne pas vérifier le certificat TLS du backend")
    parser.add_argument("--exclude-builtin", action="store_true",
                        help="Ignorer les objets créés automatiquement par Keycloak")
    parser.add_argument("--no-users", dest="include_users", action="store_false", help="Ne pas générer les utilisateurs")
    parser.add_argument("--no-groups", dest="include_groups", action="store_false", help="Ne pas générer les groupes")
    parser.add_argument("--no-clients", dest="include_clients", action="store_false", help="Ne pas générer les clients")
    parser.add_argument("--no-roles", dest="include_roles", action="store_false", help="Ne pas générer les rôles")
    parser.add_argument("--no-terragrunt", dest="generate_terragrunt", action="store_false",
                        help="Ne générer que les fichiers main.tf")
    parser.add_argument("--validate", action="store_true", help="Analyser la configuration générée")
    parser.add_argument("--json", action="store_true", help="Afficher le résultat en JSON au lieu d'écrire les fichiers")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    if args.insecure:
        # Certificats auto-signés
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    options = ConversionOptions(
        include_users=args.include_users,
        include_groups=args.include_groups,
        include_clients=args.include_clients,
        include_roles=args.include_roles,
        generate_terragrunt=args.generate_terragrunt,
        validate_output=args.validate,
        exclude_builtin=args.exclude_builtin,
    )
    converter = KeycloakToTerragrunt(options=options, debug=args.debug)
    remote = None
    if args.backend_url:
        remote = RemoteConverter(args.backend_url, timeout=args.timeout, verify=not args.insecure)

    if not args.json:
        print(f"📥 Chargement de {len(args.export_files)} export(s) Keycloak...")
    documents, load_errors = load_realm_files(args.export_files)

    if not args.json:
        target = f"via {args.backend_url}" if remote else "localement"
        print(f"🔄 Génération des configurations Terragrunt ({target})...")
    entries = converter.convert_batch(documents, remote=remote)
    for path, error in load_errors.items():
        entries[path] = BatchEntry(error=error)

    if args.json:
        payload = {path: entries[path].model_dump(by_alias=True) for path in args.export_files if path in entries}
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0 if all(entry.ok for entry in entries.values()) else 1

    failures = 0
    for path in args.export_files:
        entry = entries.get(path)
        if entry is None:
            continue
        if not entry.ok:
            failures += 1
            print(f"❌ {path}: {entry.error}")
            continue
        written = converter.write_files(entry.files, args.output_dir)
        print(f"✅ {path}: {len(written)} fichier(s) généré(s) dans '{args.output_dir}'")
        if entry.skipped:
            print(f"   ⚠️  {len(entry.skipped)} entrée(s) ignorée(s):")
            for diagnostic in entry.skipped:
                print(f"      • [{diagnostic.module}] {diagnostic.kind} {diagnostic.identifier or '#' + str(diagnostic.index)}: {diagnostic.reason}")
        if entry.issues:
            print(f"   🔍 {len(entry.issues)} problème(s) détecté(s) par l'analyse")

    if failures:
        print(f"\n⚠️  {failures} fichier(s) n'ont pas pu être convertis")
        return 1

    print("🎉 Conversion terminée avec succès!")
    print("\n📝 Prochaines étapes:")
    print("1. Exportez KEYCLOAK_URL, KEYCLOAK_USERNAME et KEYCLOAK_PASSWORD")
    print("2. Renseignez les variables sensibles (secrets des fournisseurs, mots de passe LDAP/SMTP)")
    print("3. Exécutez 'terragrunt run-all plan' dans le répertoire du realm")
    print("4. Exécutez 'terragrunt run-all apply' pour déployer")
    print("\n⚠️  IMPORTANT:")
    print("   • Les appartenances aux groupes et rôles sont générées comme placeholders à compléter")
    print("   • Utilisez --exclude-builtin pour éviter les erreurs 409 sur un serveur neuf")
    return 0


if __name__ == "__main__":
    sys.exit(main())
