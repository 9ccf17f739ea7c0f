"""
Petits utilitaires de rendu HCL partagés par les générateurs de modules
"""

import shlex
from typing import Any, Dict, List, Mapping, Optional

INDENT = '  '

KEYCLOAK_PROVIDER = {'source': 'keycloak/keycloak', 'version': '~> 5.0'}
NULL_PROVIDER = {'source': 'hashicorp/null', 'version': '~> 3.2'}


def hcl_escape(text: str) -> str:
    """Échappe une chaîne pour un littéral HCL entre guillemets"""
    text = (text.replace('\\', '\\\\')
                .replace('"', '\\"')
                .replace('\n', '\\n')
                .replace('\r', '\\r')
                .replace('\t', '\\t'))
    # Empêcher l'interpolation et les directives de template
    return text.replace('${', '$${').replace('%{', '%%{')


def hcl_string(value: Any) -> str:
    return f'"{hcl_escape(str(value))}"'


def hcl_value(value: Any, level: int = 1) -> str:
    """Convertit une valeur Python en expression HCL"""
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(hcl_value(item, level) for item in value) + ']'
    if isinstance(value, Mapping):
        return hcl_map(value, level)
    return hcl_string(value)


def hcl_map(mapping: Mapping[str, Any], level: int = 1) -> str:
    """Rend une map HCL multi-lignes avec des clés entre guillemets"""
    if not mapping:
        return '{}'
    inner = INDENT * (level + 1)
    lines = ['{']
    for key in sorted(mapping):
        lines.append(f'{inner}{hcl_string(key)} = {hcl_value(mapping[key], level + 1)}')
    lines.append(INDENT * level + '}')
    return '\n'.join(lines)


def reference_map(references: Mapping[str, str], level: int = 1) -> str:
    """Map HCL dont les valeurs sont des expressions (références de ressources)"""
    if not references:
        return '{}'
    inner = INDENT * (level + 1)
    lines = ['{']
    for key, expression in references.items():
        lines.append(f'{inner}{hcl_string(key)} = {expression}')
    lines.append(INDENT * level + '}')
    return '\n'.join(lines)


def attr(name: str, value: Any, level: int = 1) -> str:
    """Ligne d'attribut indentée dont la valeur est convertie en HCL"""
    return f'{INDENT * level}{name} = {hcl_value(value, level)}'


def raw_attr(name: str, expression: str, level: int = 1) -> str:
    """Ligne d'attribut dont la valeur est déjà une expression HCL (référence, variable...)"""
    return f'{INDENT * level}{name} = {expression}'


def comment(text: str, level: int = 1) -> List[str]:
    return [f'{INDENT * level}# {line}'.rstrip() for line in text.splitlines()]


def comment_block(text: str) -> str:
    """Commentaire de premier niveau, chaque ligne du texte source restant commentée"""
    return '\n'.join(comment(text, 0)) + '\n'


def nested_block(name: str, body: List[str], level: int = 1) -> List[str]:
    """Bloc imbriqué ; le corps doit déjà être indenté au niveau level + 1"""
    return [f'{INDENT * level}{name} {{'] + body + [f'{INDENT * level}}}']


def block(header: str, body: List[str]) -> str:
    return header + ' {\n' + '\n'.join(body) + '\n}\n'


def resource(resource_type: str, name: str, body: List[str]) -> str:
    return block(f'resource "{resource_type}" "{name}"', body)


def commented_out(text: str) -> str:
    """Met en commentaire un bloc complet"""
    return '\n'.join(f'# {line}'.rstrip() for line in text.rstrip('\n').splitlines()) + '\n'


def variable(name: str, description: str, var_type: str = 'string',
             default: Any = None, sensitive: bool = False, has_default: bool = False) -> str:
    body = [attr('description', description), raw_attr('type', var_type)]
    if has_default:
        body.append(attr('default', default))
    if sensitive:
        body.append(attr('sensitive', True))
    return block(f'variable "{name}"', body)


def output(name: str, expression: str, description: Optional[str] = None) -> str:
    body = []
    if description:
        body.append(attr('description', description))
    body.append(raw_attr('value', expression))
    return block(f'output "{name}"', body)


def terraform_requirements(use_null_provider: bool = False) -> str:
    """Bloc terraform { required_providers } en tête des fichiers de définition"""
    providers: Dict[str, Dict[str, str]] = {'keycloak': KEYCLOAK_PROVIDER}
    if use_null_provider:
        providers['null'] = NULL_PROVIDER
    lines = []
    for provider_name, settings in providers.items():
        lines.append(f'{INDENT * 2}{provider_name} = {{')
        lines.append(f'{INDENT * 3}source  = {hcl_string(settings["source"])}')
        lines.append(f'{INDENT * 3}version = {hcl_string(settings["version"])}')
        lines.append(f'{INDENT * 2}}}')
    return block('terraform', nested_block('required_providers', lines))


def notice_stub(name: str, triggers: Mapping[str, Any], message: str) -> str:
    """
    Ressource purement informative pour une fonctionnalité sans équivalent déclaratif.
    Elle n'effectue aucune modification, elle affiche seulement un message.
    """
    body = [raw_attr('triggers', hcl_map({k: str(v) for k, v in triggers.items()})), '']
    body += nested_block('provisioner "local-exec"', [
        attr('command', 'echo ' + shlex.quote(message), 2),
    ])
    return resource('null_resource', name, body)
