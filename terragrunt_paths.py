"""
Nommage des répertoires, des fichiers et des ressources générés
"""

import re
from pathlib import PurePosixPath
from typing import Any, Optional

WIRING = 'wiring'
DEFINITION = 'definition'

# Un fichier de câblage Terragrunt et un fichier de définition Terraform par module
FILE_NAMES = {
    WIRING: 'terragrunt.hcl',
    DEFINITION: 'main.tf',
}

_DIR_UNSAFE = re.compile(r'[^A-Za-z0-9_-]')
_RESOURCE_UNSAFE = re.compile(r'[^A-Za-z0-9_]')


def sanitize_dir_name(name: str) -> str:
    """Nettoie un nom pour qu'il soit utilisable comme nom de répertoire"""
    return _DIR_UNSAFE.sub('_', name)


def sanitize_resource_name(name: str) -> str:
    """Nettoie un nom pour qu'il soit valide comme nom de ressource Terraform"""
    cleaned = _RESOURCE_UNSAFE.sub('_', name)
    # S'assurer que le nom commence par une lettre ou un underscore
    if cleaned and not (cleaned[0].isalpha() or cleaned[0] == '_'):
        cleaned = 'r_' + cleaned
    return cleaned


def resource_name(identifier: Optional[str], kind: str, index: int) -> str:
    """Nom de ressource d'une entrée, avec repli numérique si l'identifiant est absent"""
    if identifier:
        cleaned = sanitize_resource_name(identifier)
        if cleaned.strip('_'):
            return cleaned
    return f'{kind}_{index}'


class UniqueNames:
    """Attribue des noms de ressource uniques au sein d'un même type de ressource"""

    def __init__(self):
        self.taken = set()

    def claim(self, identifier: Optional[str], kind: str, index: int) -> str:
        base = resource_name(identifier, kind, index)
        name = base
        suffix = 2
        while name in self.taken:
            name = f'{base}_{suffix}'
            suffix += 1
        self.taken.add(name)
        return name


def realm_display_name(realm: Any, file_name: str) -> str:
    """Nom du realm, ou nom du fichier d'origine si la valeur n'est pas exploitable"""
    if isinstance(realm, str) and realm.strip():
        return realm
    if isinstance(realm, (int, float)) and not isinstance(realm, bool):
        return str(realm)
    return PurePosixPath(file_name).stem or 'realm'


def root_dir(realm_name: str) -> str:
    """Répertoire racine des fichiers générés pour un realm"""
    return sanitize_dir_name(realm_name)


def module_path(root: str, module_slug: str, file_kind: str) -> str:
    """Chemin relatif du fichier de câblage ou de définition d'un module"""
    if file_kind not in FILE_NAMES:
        raise ValueError(f"Type de fichier inconnu: {file_kind}")
    return f'{root}/{module_slug}/{FILE_NAMES[file_kind]}'


def root_wiring_path(root: str) -> str:
    """Chemin du fichier Terragrunt racine inclus par tous les modules"""
    return f'{root}/{FILE_NAMES[WIRING]}'
