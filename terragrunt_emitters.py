"""
Générateurs de fichiers Terragrunt/Terraform

Chaque module produit un fichier de définition (main.tf) à partir de la vue typée
de l'export. Le fichier de câblage (terragrunt.hcl) est commun à tous les modules
et rendu par render_wiring.
"""

import hashlib
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

from hcl_format import (attr, block, comment, comment_block, commented_out, hcl_string,
                        nested_block, notice_stub, output, raw_attr, reference_map, resource,
                        terraform_requirements, variable)
from realm_model import (AuthenticationFlowEntry, AuthenticatorConfigEntry, ClientEntry,
                         ClientScopeEntry, ComponentEntry, ExecutionEntry, GroupEntry,
                         IdentityProviderEntry, IdentityProviderMapperEntry, ProtocolMapperEntry,
                         RealmExport, RequiredActionEntry, RoleEntry, UserEntry)
from terragrunt_paths import UniqueNames, resource_name

logger = logging.getLogger(__name__)

REALM_ID = 'var.realm_id'

USER_STORAGE_PROVIDER = 'org.keycloak.storage.UserStorageProvider'
KEY_PROVIDER = 'org.keycloak.keys.KeyProvider'


class ModuleDescriptor(NamedTuple):
    slug: str
    title: str
    trigger: Callable[[Mapping[str, Any]], bool]
    emitter: Callable[[RealmExport], str]
    outputs: Tuple[str, ...]
    # Option de conversion capable de désactiver le module
    option: Optional[str] = None


def _optional(lines: List[str], name: str, value: Any, level: int = 1):
    """Ajoute un attribut seulement s'il porte une valeur"""
    if value is None or value == '' or value == [] or value == {}:
        return
    lines.append(attr(name, value, level))


def _seconds(value: int) -> str:
    return f'{value}s'


def _joined(attributes: Mapping[str, List[str]]) -> Dict[str, str]:
    # Le provider représente les attributs multi-valués avec le séparateur "##"
    return {key: '##'.join(values) for key, values in attributes.items()}


def render_definition(export: RealmExport, title: str, blocks: List[str],
                      outputs: Optional[List[str]] = None, variables: Optional[List[str]] = None,
                      use_null_provider: bool = False, realm_core: bool = False) -> str:
    """Assemble un fichier de définition : providers, variables, ressources puis sorties"""
    logger.debug("%s du realm %s: %d bloc(s)", title, export.realm_name, len(blocks))
    parts = [comment_block(f'{title} du realm {export.realm_name}'),
             terraform_requirements(use_null_provider)]
    if not realm_core:
        parts.append(variable('realm_id', 'Identifiant du realm (sortie du module realm)'))
    parts.extend(variables or [])
    parts.extend(blocks)
    parts.extend(outputs or [])
    return '\n'.join(parts)


# ---------------------------------------------------------------------------
# Realm
# ---------------------------------------------------------------------------

SECURITY_HEADERS = {
    'contentSecurityPolicy': 'content_security_policy',
    'contentSecurityPolicyReportOnly': 'content_security_policy_report_only',
    'xContentTypeOptions': 'x_content_type_options',
    'xFrameOptions': 'x_frame_options',
    'xRobotsTag': 'x_robots_tag',
    'xXSSProtection': 'x_xss_protection',
    'strictTransportSecurity': 'strict_transport_security',
    'referrerPolicy': 'referrer_policy',
}


def realm_resource_name(export: RealmExport) -> str:
    return resource_name(export.realm_name, 'realm', 0)


def _smtp_block(smtp: Mapping[str, str]) -> Tuple[List[str], bool]:
    body = [attr('host', smtp['host'], 2)]
    _optional(body, 'port', smtp.get('port'), 2)
    _optional(body, 'from', smtp.get('from'), 2)
    _optional(body, 'from_display_name', smtp.get('fromDisplayName'), 2)
    _optional(body, 'reply_to', smtp.get('replyTo'), 2)
    _optional(body, 'reply_to_display_name', smtp.get('replyToDisplayName'), 2)
    _optional(body, 'envelope_from', smtp.get('envelopeFrom'), 2)
    body.append(attr('starttls', smtp.get('starttls') == 'true', 2))
    body.append(attr('ssl', smtp.get('ssl') == 'true', 2))
    has_auth = smtp.get('auth') == 'true'
    if has_auth:
        body += nested_block('auth', [
            attr('username', smtp.get('user', ''), 3),
            raw_attr('password', 'var.smtp_password', 3),
        ], 2)
    return nested_block('smtp_server', body), has_auth


def emit_realm(export: RealmExport) -> str:
    """Génère la ressource keycloak_realm et ses blocs imbriqués"""
    settings = export.settings
    security = export.security
    name = realm_resource_name(export)

    body = [
        attr('realm', settings.realm),
        attr('enabled', settings.enabled),
        attr('display_name', settings.display_name or settings.realm),
    ]
    _optional(body, 'display_name_html', settings.display_name_html)
    body += [
        attr('ssl_required', settings.ssl_required),
        '',
        attr('registration_allowed', settings.registration_allowed),
        attr('registration_email_as_username', settings.registration_email_as_username),
        attr('remember_me', settings.remember_me),
        attr('verify_email', settings.verify_email),
        attr('login_with_email_allowed', settings.login_with_email_allowed),
        attr('duplicate_emails_allowed', settings.duplicate_emails_allowed),
        attr('reset_password_allowed', settings.reset_password_allowed),
        attr('edit_username_allowed', settings.edit_username_allowed),
        '',
    ]
    for kind, theme in settings.themes.items():
        body.append(attr(f'{kind}_theme', theme))

    body += comment('Durées de vie des jetons et des sessions')
    body += [
        attr('access_token_lifespan', _seconds(settings.access_token_lifespan)),
        attr('access_token_lifespan_for_implicit_flow',
             _seconds(settings.access_token_lifespan_for_implicit_flow)),
        attr('sso_session_idle_timeout', _seconds(settings.sso_session_idle_timeout)),
        attr('sso_session_max_lifespan', _seconds(settings.sso_session_max_lifespan)),
        attr('offline_session_idle_timeout', _seconds(settings.offline_session_idle_timeout)),
        attr('offline_session_max_lifespan_enabled', settings.offline_session_max_lifespan_enabled),
        attr('offline_session_max_lifespan', _seconds(settings.offline_session_max_lifespan)),
        attr('access_code_lifespan', _seconds(settings.access_code_lifespan)),
        attr('access_code_lifespan_user_action', _seconds(settings.access_code_lifespan_user_action)),
        attr('access_code_lifespan_login', _seconds(settings.access_code_lifespan_login)),
        attr('action_token_generated_by_admin_lifespan',
             _seconds(settings.action_token_generated_by_admin_lifespan)),
        attr('action_token_generated_by_user_lifespan',
             _seconds(settings.action_token_generated_by_user_lifespan)),
        attr('revoke_refresh_token', settings.revoke_refresh_token),
        attr('refresh_token_max_reuse', settings.refresh_token_max_reuse),
    ]
    _optional(body, 'password_policy', settings.password_policy)

    if settings.internationalization_enabled and settings.supported_locales:
        body.append('')
        body += nested_block('internationalization', [
            attr('supported_locales', settings.supported_locales, 2),
            attr('default_locale', settings.default_locale or settings.supported_locales[0], 2),
        ])

    variables = []
    if settings.smtp_server.get('host'):
        smtp_lines, has_auth = _smtp_block(settings.smtp_server)
        body.append('')
        body += smtp_lines
        if has_auth:
            variables.append(variable('smtp_password', 'Mot de passe du serveur SMTP',
                                      default='', has_default=True, sensitive=True))

    body.append('')
    body += nested_block('otp_policy', [
        attr('type', security.otp_policy_type, 2),
        attr('algorithm', security.otp_policy_algorithm, 2),
        attr('digits', security.otp_policy_digits, 2),
        attr('initial_counter', security.otp_policy_initial_counter, 2),
        attr('look_ahead_window', security.otp_policy_look_ahead_window, 2),
        attr('period', security.otp_policy_period, 2),
    ])

    defenses = []
    headers = [attr(SECURITY_HEADERS[key], value, 3)
               for key, value in security.browser_security_headers.items()
               if key in SECURITY_HEADERS]
    if headers:
        defenses += nested_block('headers', headers, 2)
    if security.brute_force_protected:
        defenses += nested_block('brute_force_detection', [
            attr('permanent_lockout', security.permanent_lockout, 3),
            attr('max_login_failures', security.failure_factor, 3),
            attr('wait_increment_seconds', security.wait_increment_seconds, 3),
            attr('quick_login_check_milli_seconds', security.quick_login_check_milli_seconds, 3),
            attr('minimum_quick_login_wait_seconds', security.minimum_quick_login_wait_seconds, 3),
            attr('max_failure_wait_seconds', security.max_failure_wait_seconds, 3),
            attr('failure_reset_time_seconds', security.max_delta_time_seconds, 3),
        ], 2)
    if defenses:
        body.append('')
        body += nested_block('security_defenses', defenses)

    outputs = [
        output('realm_id', f'keycloak_realm.{name}.id', 'Identifiant du realm'),
        output('realm_name', f'keycloak_realm.{name}.realm', 'Nom du realm'),
    ]
    return render_definition(export, 'Realm', [resource('keycloak_realm', name, body)],
                             outputs, variables, realm_core=True)


# ---------------------------------------------------------------------------
# Utilisateurs
# ---------------------------------------------------------------------------

def emit_users(export: RealmExport) -> str:
    """Génère les utilisateurs et les placeholders d'appartenance aux groupes et rôles"""
    names = UniqueNames()
    blocks = []
    user_ids = {}

    for index, user in export.parse_list('users', 'user', export.section('users'), UserEntry):
        if export.exclude_builtin and user.service_account_client_id:
            export.record('users', 'user', index, user.username,
                          'compte de service créé automatiquement par Keycloak')
            continue

        name = names.claim(user.username, 'user', index)
        body = [
            raw_attr('realm_id', REALM_ID),
            attr('username', user.username),
            attr('enabled', user.enabled),
        ]
        _optional(body, 'email', user.email)
        body.append(attr('email_verified', user.email_verified))
        _optional(body, 'first_name', user.first_name)
        _optional(body, 'last_name', user.last_name)
        _optional(body, 'required_actions', user.required_actions)
        if user.attributes:
            body.append(attr('attributes', _joined(user.attributes)))
        if user.federation_link:
            body += comment(f'Utilisateur fédéré (fournisseur {user.federation_link})')
        blocks.append(resource('keycloak_user', name, body))
        user_ids[user.username] = f'keycloak_user.{name}.id'

        if user.groups:
            membership = [
                raw_attr('realm_id', REALM_ID),
                raw_attr('user_id', f'keycloak_user.{name}.id'),
            ]
            membership += comment(f"Groupes d'origine : {', '.join(user.groups)}")
            membership += comment('À résoudre depuis la sortie group_ids du module groups')
            membership.append(raw_attr('group_ids', '[]'))
            blocks.append(resource('keycloak_user_groups', f'{name}_groups', membership))

        roles = list(user.realm_roles)
        for client_id, client_roles in user.client_roles.items():
            roles += [f'{client_id}/{role}' for role in client_roles]
        if roles:
            grants = [
                raw_attr('realm_id', REALM_ID),
                raw_attr('user_id', f'keycloak_user.{name}.id'),
            ]
            grants += comment(f"Rôles d'origine : {', '.join(roles)}")
            grants += comment('À résoudre depuis la sortie role_ids du module roles')
            grants.append(raw_attr('role_ids', '[]'))
            blocks.append(resource('keycloak_user_roles', f'{name}_roles', grants))

    outputs = [output('user_ids', reference_map(user_ids), 'Identifiants des utilisateurs par username')]
    return render_definition(export, 'Utilisateurs', blocks, outputs)


# ---------------------------------------------------------------------------
# Clients et protocol mappers
# ---------------------------------------------------------------------------

def _token_flags(mapper: ProtocolMapperEntry, userinfo: bool = True) -> List[str]:
    lines = [
        attr('add_to_id_token', mapper.flag('id.token.claim', True)),
        attr('add_to_access_token', mapper.flag('access.token.claim', True)),
    ]
    if userinfo:
        lines.append(attr('add_to_userinfo', mapper.flag('userinfo.token.claim', True)))
    return lines


def _mapper_attribute(mapper: ProtocolMapperEntry) -> List[str]:
    body = [
        attr('user_attribute', mapper.config.get('user.attribute', '')),
        attr('claim_name', mapper.config.get('claim.name', '')),
    ]
    _optional(body, 'claim_value_type', mapper.config.get('jsonType.label'))
    body.append(attr('multivalued', mapper.flag('multivalued')))
    return body + _token_flags(mapper)


def _mapper_property(mapper: ProtocolMapperEntry) -> List[str]:
    body = [
        attr('user_property', mapper.config.get('user.attribute', '')),
        attr('claim_name', mapper.config.get('claim.name', '')),
    ]
    _optional(body, 'claim_value_type', mapper.config.get('jsonType.label'))
    return body + _token_flags(mapper)


def _mapper_group_membership(mapper: ProtocolMapperEntry) -> List[str]:
    body = [
        attr('claim_name', mapper.config.get('claim.name', 'groups')),
        attr('full_path', mapper.flag('full.path', True)),
    ]
    return body + _token_flags(mapper)


def _mapper_audience(mapper: ProtocolMapperEntry) -> List[str]:
    body = []
    if mapper.config.get('included.client.audience'):
        body.append(attr('included_client_audience', mapper.config['included.client.audience']))
    else:
        body.append(attr('included_custom_audience', mapper.config.get('included.custom.audience', '')))
    return body + _token_flags(mapper, userinfo=False)


def _mapper_hardcoded_claim(mapper: ProtocolMapperEntry) -> List[str]:
    body = [
        attr('claim_name', mapper.config.get('claim.name', '')),
        attr('claim_value', mapper.config.get('claim.value', '')),
    ]
    _optional(body, 'claim_value_type', mapper.config.get('jsonType.label'))
    return body + _token_flags(mapper)


def _mapper_realm_role(mapper: ProtocolMapperEntry) -> List[str]:
    body = [attr('claim_name', mapper.config.get('claim.name', 'realm_access.roles'))]
    _optional(body, 'claim_value_type', mapper.config.get('jsonType.label'))
    body.append(attr('multivalued', mapper.flag('multivalued', True)))
    return body + _token_flags(mapper)


def _mapper_client_role(mapper: ProtocolMapperEntry) -> List[str]:
    body = [attr('claim_name', mapper.config.get('claim.name', ''))]
    _optional(body, 'client_id_for_role_mappings', mapper.config.get('usermodel.clientRoleMapping.clientId'))
    _optional(body, 'claim_value_type', mapper.config.get('jsonType.label'))
    body.append(attr('multivalued', mapper.flag('multivalued', True)))
    return body + _token_flags(mapper)


def _mapper_full_name(mapper: ProtocolMapperEntry) -> List[str]:
    return _token_flags(mapper)


# Types de mappers avec une ressource dédiée : (type de ressource, attributs spécifiques)
PROTOCOL_MAPPERS = {
    'oidc-usermodel-attribute-mapper': ('keycloak_openid_user_attribute_protocol_mapper', _mapper_attribute),
    'oidc-usermodel-property-mapper': ('keycloak_openid_user_property_protocol_mapper', _mapper_property),
    'oidc-group-membership-mapper': ('keycloak_openid_group_membership_protocol_mapper', _mapper_group_membership),
    'oidc-audience-mapper': ('keycloak_openid_audience_protocol_mapper', _mapper_audience),
    'oidc-hardcoded-claim-mapper': ('keycloak_openid_hardcoded_claim_protocol_mapper', _mapper_hardcoded_claim),
    'oidc-usermodel-realm-role-mapper': ('keycloak_openid_user_realm_role_protocol_mapper', _mapper_realm_role),
    'oidc-usermodel-client-role-mapper': ('keycloak_openid_user_client_role_protocol_mapper', _mapper_client_role),
    'oidc-full-name-mapper': ('keycloak_openid_full_name_protocol_mapper', _mapper_full_name),
}


def emit_protocol_mapper(export: RealmExport, owner_resource: str, owner_ref: str,
                         index: int, mapper: ProtocolMapperEntry, names: UniqueNames,
                         module: str = 'clients', owner_attribute: str = 'client_id') -> str:
    """
    Génère un protocol mapper rattaché à un client (client_id) ou à un client scope
    (client_scope_id). Les types non reconnus sont rendus en commentaire.
    """
    mapper_name = mapper.name or f'mapper_{index}'
    name = names.claim(f'{owner_resource}_{resource_name(mapper.name, "mapper", index)}', 'mapper', index)
    head = [
        raw_attr('realm_id', REALM_ID),
        raw_attr(owner_attribute, owner_ref),
        attr('name', mapper_name),
    ]

    known = PROTOCOL_MAPPERS.get(mapper.protocol_mapper or '')
    if known:
        resource_type, layout = known
        return resource(resource_type, name, head + layout(mapper))

    export.record(module, 'protocol mapper', index, mapper_name,
                  f"type de mapper non pris en charge: {mapper.protocol_mapper}", skipped=False)
    generic = head + [
        attr('protocol', mapper.protocol),
        attr('protocol_mapper', mapper.protocol_mapper or ''),
        attr('config', dict(mapper.config)),
    ]
    note = comment_block(f"Mapper '{mapper_name}' de type {mapper.protocol_mapper} : à vérifier avant activation")
    return note + commented_out(resource('keycloak_generic_protocol_mapper', name, generic))


def _openid_client_body(client: ClientEntry) -> List[str]:
    access_type = client.access_type
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('client_id', client.client_id),
        attr('name', client.name or client.client_id),
    ]
    _optional(body, 'description', client.description)
    body += [
        attr('enabled', client.enabled),
        attr('access_type', access_type),
    ]

    flows_enabled = client.standard_flow_enabled or client.implicit_flow_enabled
    if access_type != 'BEARER-ONLY':
        body += [
            attr('standard_flow_enabled', client.standard_flow_enabled),
            attr('implicit_flow_enabled', client.implicit_flow_enabled),
            attr('direct_access_grants_enabled', client.direct_access_grants_enabled),
            attr('service_accounts_enabled',
                 client.service_accounts_enabled and access_type == 'CONFIDENTIAL'),
        ]
    body += [
        attr('consent_required', client.consent_required),
        attr('full_scope_allowed', client.full_scope_allowed),
        attr('frontchannel_logout_enabled', client.frontchannel_logout),
    ]
    _optional(body, 'root_url', client.root_url)
    _optional(body, 'base_url', client.base_url)
    _optional(body, 'admin_url', client.admin_url)

    # Les URIs de redirection n'ont de sens qu'avec le flow standard ou implicite
    if flows_enabled and access_type != 'BEARER-ONLY':
        _optional(body, 'valid_redirect_uris', client.redirect_uris)
        _optional(body, 'web_origins', client.web_origins)

    _optional(body, 'pkce_code_challenge_method', client.attributes.get('pkce.code.challenge.method'))

    acr = {key: value for key, value in client.attributes.items()
           if key.startswith('acr.loa.') or key == 'minimum.acr.value'}
    if acr:
        body.append('')
        body += comment('Correspondance ACR / niveau d\'authentification')
        body.append(attr('extra_config', acr))

    if client.authentication_flow_binding_overrides:
        overrides = ', '.join(f'{key}={value}' for key, value
                              in client.authentication_flow_binding_overrides.items())
        body.append('')
        body += comment(f'Surcharges de flows d\'origine : {overrides}')
        body += comment('authentication_flow_binding_overrides à compléter avec la sortie flow_ids du module auth_flows')
    return body


def _saml_client_body(client: ClientEntry) -> List[str]:
    attributes = client.attributes
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('client_id', client.client_id),
        attr('name', client.name or client.client_id),
        attr('enabled', client.enabled),
    ]
    _optional(body, 'description', client.description)
    _optional(body, 'root_url', client.root_url)
    _optional(body, 'base_url', client.base_url)
    _optional(body, 'valid_redirect_uris', client.redirect_uris)
    body += [
        attr('sign_documents', attributes.get('saml.server.signature', 'true') == 'true'),
        attr('sign_assertions', attributes.get('saml.assertion.signature', 'false') == 'true'),
        attr('client_signature_required', attributes.get('saml.client.signature', 'true') == 'true'),
        attr('force_post_binding', attributes.get('saml.force.post.binding', 'true') == 'true'),
        attr('full_scope_allowed', client.full_scope_allowed),
    ]
    _optional(body, 'name_id_format', attributes.get('saml_name_id_format'))
    return body


def emit_clients(export: RealmExport) -> str:
    """Génère les clients OpenID Connect et SAML avec leurs scopes et mappers"""
    names = UniqueNames()
    mapper_names = UniqueNames()
    blocks = []
    client_ids = {}

    for index, client in export.parse_list('clients', 'client', export.section('clients'), ClientEntry):
        if export.is_builtin('client', client.client_id):
            export.record('clients', 'client', index, client.client_id,
                          'client créé automatiquement par Keycloak')
            continue

        name = names.claim(client.client_id, 'client', index)
        if client.protocol == 'saml':
            resource_type = 'keycloak_saml_client'
            blocks.append(resource(resource_type, name, _saml_client_body(client)))
        else:
            resource_type = 'keycloak_openid_client'
            blocks.append(resource(resource_type, name, _openid_client_body(client)))
        client_ref = f'{resource_type}.{name}.id'
        client_ids[client.client_id] = client_ref

        if resource_type == 'keycloak_openid_client':
            for scope_kind, scopes in (('default', client.default_client_scopes),
                                       ('optional', client.optional_client_scopes)):
                if not scopes:
                    continue
                blocks.append(resource(f'keycloak_openid_client_{scope_kind}_scopes', f'{name}_{scope_kind}_scopes', [
                    raw_attr('realm_id', REALM_ID),
                    raw_attr('client_id', client_ref),
                    attr(f'{scope_kind}_scopes', scopes),
                ]))

        for mapper_index, raw_mapper in enumerate(client.protocol_mappers):
            mapper = export.parse('clients', 'protocol mapper', mapper_index, raw_mapper, ProtocolMapperEntry)
            if mapper is not None:
                blocks.append(emit_protocol_mapper(export, name, client_ref, mapper_index, mapper, mapper_names))

    outputs = [output('client_ids', reference_map(client_ids), 'Identifiants des clients par clientId')]
    return render_definition(export, 'Clients', blocks, outputs)


# ---------------------------------------------------------------------------
# Client scopes
# ---------------------------------------------------------------------------

CLIENT_SCOPE_RESOURCES = {
    'openid-connect': 'keycloak_openid_client_scope',
    'saml': 'keycloak_saml_client_scope',
}


def _client_scope_body(scope: ClientScopeEntry) -> List[str]:
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('name', scope.name),
    ]
    _optional(body, 'description', scope.description)
    _optional(body, 'consent_screen_text', scope.attributes.get('consent.screen.text'))
    if scope.protocol == 'openid-connect':
        body.append(attr('include_in_token_scope', scope.flag('include.in.token.scope', True)))
    gui_order = scope.attributes.get('gui.order', '')
    if gui_order.isdigit():
        body.append(attr('gui_order', int(gui_order)))
    return body


def emit_client_scopes(export: RealmExport) -> str:
    """Génère les client scopes du realm (OpenID Connect et SAML) et leurs mappers"""
    names = UniqueNames()
    mapper_names = UniqueNames()
    blocks = []
    scope_ids = {}

    for index, scope in export.parse_list('client_scopes', 'client scope',
                                          export.section('clientScopes'), ClientScopeEntry):
        if export.is_builtin('scope', scope.name):
            export.record('client_scopes', 'client scope', index, scope.name,
                          'client scope créé automatiquement par Keycloak')
            continue
        resource_type = CLIENT_SCOPE_RESOURCES.get(scope.protocol)
        if resource_type is None:
            export.record('client_scopes', 'client scope', index, scope.name,
                          f"protocole non pris en charge: {scope.protocol}")
            continue

        name = names.claim(scope.name, 'scope', index)
        blocks.append(resource(resource_type, name, _client_scope_body(scope)))
        scope_ref = f'{resource_type}.{name}.id'
        scope_ids[scope.name] = scope_ref

        for mapper_index, raw_mapper in enumerate(scope.protocol_mappers):
            mapper = export.parse('client_scopes', 'protocol mapper', mapper_index, raw_mapper,
                                  ProtocolMapperEntry)
            if mapper is not None:
                blocks.append(emit_protocol_mapper(export, name, scope_ref, mapper_index, mapper, mapper_names,
                                                   module='client_scopes', owner_attribute='client_scope_id'))

    outputs = [output('client_scope_ids', reference_map(scope_ids), 'Identifiants des client scopes par nom')]
    return render_definition(export, 'Client scopes', blocks, outputs)


# ---------------------------------------------------------------------------
# Rôles
# ---------------------------------------------------------------------------

def _role_body(export: RealmExport, kind: str, index: int, role: RoleEntry) -> List[str]:
    body = [attr('name', role.name)]
    _optional(body, 'description', role.description)
    if role.attributes:
        body.append(attr('attributes', _joined(role.attributes)))
    if role.composite:
        composites = []
        for key, value in role.composites.items():
            if isinstance(value, list):
                composites.append(f"{key}: {', '.join(str(v) for v in value)}")
                continue
            if not isinstance(value, Mapping):
                export.record('roles', kind, index, role.name,
                              f"composition '{key}' ignorée: liste ou objet attendu", skipped=False)
                continue
            for client_id, roles in value.items():
                if roles is not None and not isinstance(roles, list):
                    export.record('roles', kind, index, role.name,
                                  f"composition '{key}/{client_id}' ignorée: liste attendue", skipped=False)
                    continue
                composites.append(f"{key}/{client_id}: {', '.join(str(r) for r in roles or [])}")
        body += comment(f"Rôle composite d'origine ({'; '.join(composites) or 'composition non exportée'})")
        body += comment('À résoudre depuis la sortie role_ids une fois les rôles créés')
        body.append(raw_attr('composite_roles', '[]'))
    return body


def emit_roles(export: RealmExport) -> str:
    """Génère les rôles de realm puis les rôles de clients"""
    names = UniqueNames()
    blocks = []
    role_ids = {}
    roles = export.roles_section()

    for index, role in export.parse_list('roles', 'realm role', roles.get('realm'), RoleEntry):
        if export.is_builtin('role', role.name):
            export.record('roles', 'realm role', index, role.name, 'rôle créé automatiquement par Keycloak')
            continue
        name = names.claim(role.name, 'role', index)
        body = [raw_attr('realm_id', REALM_ID)] + _role_body(export, 'realm role', index, role)
        blocks.append(resource('keycloak_role', name, body))
        role_ids[role.name] = f'keycloak_role.{name}.id'

    client_roles = roles.get('client')
    variables = []
    if isinstance(client_roles, Mapping) and client_roles:
        variables.append(variable('client_ids', 'Identifiants des clients (clientId => id), sortie client_ids du module clients',
                                  var_type='map(string)', default={}, has_default=True))
        for client_id, entries in client_roles.items():
            if export.is_builtin('client', client_id):
                continue
            for index, role in export.parse_list('roles', 'client role', entries, RoleEntry):
                name = names.claim(f'{client_id}_{role.name}', 'role', index)
                body = [
                    raw_attr('realm_id', REALM_ID),
                    raw_attr('client_id', f'lookup(var.client_ids, {hcl_string(client_id)}, null)'),
                ] + _role_body(export, 'client role', index, role)
                blocks.append(resource('keycloak_role', name, body))
                role_ids[f'{client_id}/{role.name}'] = f'keycloak_role.{name}.id'

    outputs = [output('role_ids', reference_map(role_ids), 'Identifiants des rôles (realm et clientId/rôle)')]
    return render_definition(export, 'Rôles', blocks, outputs, variables)


# ---------------------------------------------------------------------------
# Groupes
# ---------------------------------------------------------------------------

def emit_groups(export: RealmExport) -> str:
    """Génère les groupes et leurs sous-groupes, reliés par parent_id"""
    names = UniqueNames()
    blocks = []
    group_ids = {}

    def process_group(index: int, raw_group: Any, parent: Optional[str], parent_path: str):
        group = export.parse('groups', 'group', index, raw_group, GroupEntry)
        if group is None:
            return
        group_name = group.name or f'group_{index}'
        path = f'{parent_path}/{group_name}'
        name = names.claim(group.name if parent is None else f'{parent}_{group_name}', 'group', index)

        body = [raw_attr('realm_id', REALM_ID)]
        if parent:
            body.append(raw_attr('parent_id', f'keycloak_group.{parent}.id'))
        body.append(attr('name', group_name))
        if group.attributes:
            body.append(attr('attributes', _joined(group.attributes)))
        blocks.append(resource('keycloak_group', name, body))
        group_ids[path] = f'keycloak_group.{name}.id'

        roles = list(group.realm_roles)
        for client_id, client_roles in group.client_roles.items():
            roles += [f'{client_id}/{role}' for role in client_roles]
        if roles:
            grants = [
                raw_attr('realm_id', REALM_ID),
                raw_attr('group_id', f'keycloak_group.{name}.id'),
            ]
            grants += comment(f"Rôles d'origine : {', '.join(roles)}")
            grants += comment('À résoudre depuis la sortie role_ids du module roles')
            grants.append(raw_attr('role_ids', '[]'))
            blocks.append(resource('keycloak_group_roles', f'{name}_roles', grants))

        for sub_index, sub_group in enumerate(group.sub_groups):
            process_group(sub_index, sub_group, name, path)

    groups = export.section('groups')
    for index, raw_group in enumerate(groups if isinstance(groups, list) else []):
        process_group(index, raw_group, None, '')

    outputs = [output('group_ids', reference_map(group_ids), 'Identifiants des groupes par chemin')]
    return render_definition(export, 'Groupes', blocks, outputs)


# ---------------------------------------------------------------------------
# Fournisseurs d'identité
# ---------------------------------------------------------------------------

OIDC_CONFIG = {
    'authorizationUrl': 'authorization_url',
    'tokenUrl': 'token_url',
    'userInfoUrl': 'user_info_url',
    'jwksUrl': 'jwks_url',
    'logoutUrl': 'logout_url',
    'issuer': 'issuer',
    'clientId': 'client_id',
    'defaultScope': 'default_scopes',
    'syncMode': 'sync_mode',
}

SAML_CONFIG = {
    'entityId': 'entity_id',
    'singleSignOnServiceUrl': 'single_sign_on_service_url',
    'singleLogoutServiceUrl': 'single_logout_service_url',
    'nameIDPolicyFormat': 'name_id_policy_format',
    'signingCertificate': 'signing_certificate',
    'syncMode': 'sync_mode',
}

SAML_FLAGS = {
    'postBindingResponse': 'post_binding_response',
    'postBindingAuthnRequest': 'post_binding_authn_request',
    'wantAssertionsSigned': 'want_assertions_signed',
    'validateSignature': 'validate_signature',
}

# Clés de configuration jamais recopiées dans extra_config
IGNORED_IDP_CONFIG = {'clientSecret', 'hideOnLoginPage', 'validateSignature', 'useJwksUrl'}


def _idp_common(idp: IdentityProviderEntry) -> List[str]:
    body = [
        raw_attr('realm', REALM_ID),
        attr('alias', idp.alias),
    ]
    _optional(body, 'display_name', idp.display_name)
    body += [
        attr('enabled', idp.enabled),
        attr('store_token', idp.store_token),
        attr('trust_email', idp.trust_email),
        attr('link_only', idp.link_only),
        attr('hide_on_login_page', idp.hide_on_login or idp.config.get('hideOnLoginPage') == 'true'),
        attr('first_broker_login_flow_alias', idp.first_broker_login_flow_alias),
    ]
    _optional(body, 'post_broker_login_flow_alias', idp.post_broker_login_flow_alias)
    return body


def _extra_config(config: Mapping[str, str], consumed: Mapping[str, str]) -> List[str]:
    extra = {key: value for key, value in config.items()
             if key not in consumed and key not in IGNORED_IDP_CONFIG}
    return [attr('extra_config', extra)] if extra else []


def emit_identity_providers(export: RealmExport) -> str:
    """Génère les fournisseurs d'identité OIDC/SAML et leurs mappers"""
    names = UniqueNames()
    blocks = []
    aliases = {}
    idp_refs = {}
    needs_secrets = False

    for index, idp in export.parse_list('identity_providers', 'identity provider',
                                        export.section('identityProviders'), IdentityProviderEntry):
        name = names.claim(idp.alias, 'idp', index)
        body = _idp_common(idp)
        if idp.provider_id == 'saml':
            resource_type = 'keycloak_saml_identity_provider'
            for key, field in SAML_CONFIG.items():
                _optional(body, field, idp.config.get(key))
            for key, field in SAML_FLAGS.items():
                if key in idp.config:
                    body.append(attr(field, idp.config[key] == 'true'))
            body += _extra_config(idp.config, {**SAML_CONFIG, **SAML_FLAGS})
        else:
            resource_type = 'keycloak_oidc_identity_provider'
            body.append(attr('provider_id', idp.provider_id))
            for key, field in OIDC_CONFIG.items():
                _optional(body, field, idp.config.get(key))
            body.append(raw_attr('client_secret',
                                 f'lookup(var.identity_provider_secrets, {hcl_string(idp.alias)}, "")'))
            needs_secrets = True
            if 'validateSignature' in idp.config:
                body.append(attr('validate_signature', idp.config['validateSignature'] == 'true'))
            body += _extra_config(idp.config, OIDC_CONFIG)
        blocks.append(resource(resource_type, name, body))
        idp_refs[idp.alias] = f'{resource_type}.{name}'
        aliases[idp.alias] = f'{resource_type}.{name}.alias'

    mapper_names = UniqueNames()
    for index, mapper in export.parse_list('identity_providers', 'identity provider mapper',
                                           export.section('identityProviderMappers'),
                                           IdentityProviderMapperEntry):
        parent = idp_refs.get(mapper.identity_provider_alias)
        alias_expr = f'{parent}.alias' if parent else hcl_string(mapper.identity_provider_alias)
        name = mapper_names.claim(f'{mapper.identity_provider_alias}_{mapper.name}', 'idp_mapper', index)
        body = [
            raw_attr('realm', REALM_ID),
            attr('name', mapper.name),
            raw_attr('identity_provider_alias', alias_expr),
            attr('identity_provider_mapper', mapper.identity_provider_mapper),
        ]
        if mapper.config:
            body.append(attr('extra_config', dict(mapper.config)))
        blocks.append(resource('keycloak_custom_identity_provider_mapper', name, body))

    variables = []
    if needs_secrets:
        variables.append(variable('identity_provider_secrets', 'Secrets clients des fournisseurs OIDC (alias => secret)',
                                  var_type='map(string)', default={}, has_default=True, sensitive=True))
    outputs = [output('identity_provider_aliases', reference_map(aliases), "Alias des fournisseurs d'identité")]
    return render_definition(export, "Fournisseurs d'identité", blocks, outputs, variables)


# ---------------------------------------------------------------------------
# Flows d'authentification
# ---------------------------------------------------------------------------

FLOW_BINDINGS = (
    ('browser_flow', 'browser_flow'),
    ('registration_flow', 'registration_flow'),
    ('direct_grant_flow', 'direct_grant_flow'),
    ('reset_credentials_flow', 'reset_credentials_flow'),
    ('client_authentication_flow', 'client_authentication_flow'),
    ('docker_authentication_flow', 'docker_authentication_flow'),
)


class _FlowContext:
    """État partagé pendant l'expansion récursive des flows"""

    def __init__(self, export: RealmExport):
        self.export = export
        self.names = UniqueNames()
        self.blocks: List[str] = []
        self.flows: Dict[str, AuthenticationFlowEntry] = {}
        self.configs: Dict[str, AuthenticatorConfigEntry] = {}


def _expand_executions(ctx: _FlowContext, flow: AuthenticationFlowEntry, flow_resource: str,
                       parent_alias_expr: str, visited: Tuple[str, ...]):
    parsed = []
    for index, raw_execution in enumerate(flow.authentication_executions):
        execution = ctx.export.parse('auth_flows', 'execution', index, raw_execution, ExecutionEntry,
                                     label=f'{flow.alias}#{index}')
        if execution is not None:
            parsed.append((index, execution))
    parsed.sort(key=lambda item: (item[1].priority, item[0]))

    previous = None
    for index, execution in parsed:
        depends = [raw_attr('depends_on', f'[{previous}]')] if previous else []

        if execution.authenticator_flow:
            if not execution.flow_alias:
                ctx.export.record('auth_flows', 'execution', index, flow.alias, 'sous-flow sans flowAlias')
                continue
            if execution.flow_alias in visited:
                ctx.export.record('auth_flows', 'execution', index, execution.flow_alias,
                                  'référence circulaire entre flows')
                continue
            sub_flow = ctx.flows.get(execution.flow_alias)
            name = ctx.names.claim(f'{flow_resource}_{execution.flow_alias}', 'execution', index)
            body = [
                raw_attr('realm_id', REALM_ID),
                raw_attr('parent_flow_alias', parent_alias_expr),
                attr('alias', execution.flow_alias),
                attr('provider_id', sub_flow.provider_id if sub_flow else 'basic-flow'),
            ]
            if sub_flow and sub_flow.description:
                body.append(attr('description', sub_flow.description))
            body.append(attr('requirement', execution.requirement))
            body += depends
            ctx.blocks.append(resource('keycloak_authentication_subflow', name, body))
            previous = f'keycloak_authentication_subflow.{name}'
            if sub_flow is None:
                ctx.export.record('auth_flows', 'flow', None, execution.flow_alias,
                                  'sous-flow absent de authenticationFlows, créé vide', skipped=False)
            else:
                _expand_executions(ctx, sub_flow, name, f'{previous}.alias',
                                   visited + (execution.flow_alias,))
            continue

        if not execution.authenticator:
            ctx.export.record('auth_flows', 'execution', index, flow.alias, 'authenticator manquant')
            continue
        name = ctx.names.claim(f'{flow_resource}_{execution.authenticator}', 'execution', index)
        body = [
            raw_attr('realm_id', REALM_ID),
            raw_attr('parent_flow_alias', parent_alias_expr),
            attr('authenticator', execution.authenticator),
            attr('requirement', execution.requirement),
        ] + depends
        ctx.blocks.append(resource('keycloak_authentication_execution', name, body))
        previous = f'keycloak_authentication_execution.{name}'

        if execution.authenticator_config:
            config = ctx.configs.get(execution.authenticator_config)
            if config is None:
                ctx.export.record('auth_flows', 'authenticator config', None, execution.authenticator_config,
                                  'configuration absente de authenticatorConfig')
                continue
            ctx.blocks.append(resource('keycloak_authentication_execution_config', f'{name}_config', [
                raw_attr('realm_id', REALM_ID),
                raw_attr('execution_id', f'{previous}.id'),
                attr('alias', config.alias),
                attr('config', dict(config.config)),
            ]))


def emit_auth_flows(export: RealmExport) -> str:
    """Génère les flows personnalisés, leurs sous-flows, exécutions et liaisons"""
    ctx = _FlowContext(export)
    flows = export.parse_list('auth_flows', 'flow', export.section('authenticationFlows'),
                              AuthenticationFlowEntry)
    for _, flow in flows:
        ctx.flows.setdefault(flow.alias, flow)
    for _, config in export.parse_list('auth_flows', 'authenticator config',
                                       export.section('authenticatorConfig'), AuthenticatorConfigEntry):
        ctx.configs.setdefault(config.alias, config)

    referenced = set()
    for _, flow in flows:
        for raw_execution in flow.authentication_executions:
            if isinstance(raw_execution, Mapping) and isinstance(raw_execution.get('flowAlias'), str):
                referenced.add(raw_execution['flowAlias'])

    flow_ids = {}
    flow_resources = {}
    for index, flow in flows:
        if not flow.top_level:
            if flow.alias not in referenced:
                export.record('auth_flows', 'flow', index, flow.alias,
                              "sous-flow référencé par aucune exécution")
            continue
        if flow.built_in or export.is_builtin('flow', flow.alias):
            export.record('auth_flows', 'flow', index, flow.alias, 'flow intégré à Keycloak')
            continue
        name = ctx.names.claim(flow.alias, 'flow', index)
        body = [
            raw_attr('realm_id', REALM_ID),
            attr('alias', flow.alias),
            attr('provider_id', flow.provider_id),
        ]
        _optional(body, 'description', flow.description)
        ctx.blocks.append(resource('keycloak_authentication_flow', name, body))
        flow_ids[flow.alias] = f'keycloak_authentication_flow.{name}.id'
        flow_resources[flow.alias] = name
        _expand_executions(ctx, flow, name, f'keycloak_authentication_flow.{name}.alias', (flow.alias,))

    settings = export.settings
    bindings = []
    for field, argument in FLOW_BINDINGS:
        alias = getattr(settings, field)
        if alias and alias in flow_resources:
            bindings.append(raw_attr(argument, f'keycloak_authentication_flow.{flow_resources[alias]}.alias'))
    if bindings:
        ctx.blocks.append(resource('keycloak_authentication_bindings', 'bindings',
                                   [raw_attr('realm_id', REALM_ID)] + bindings))

    outputs = [output('flow_ids', reference_map(flow_ids), 'Identifiants des flows personnalisés')]
    return render_definition(export, "Flows d'authentification", ctx.blocks, outputs)


def emit_required_actions(export: RealmExport) -> str:
    """Génère les actions requises (activation, action par défaut, priorité)"""
    names = UniqueNames()
    blocks = []
    action_ids = {}
    for index, action in export.parse_list('required_actions', 'required action',
                                           export.section('requiredActions'), RequiredActionEntry):
        name = names.claim(action.alias, 'required_action', index)
        body = [
            raw_attr('realm_id', REALM_ID),
            attr('alias', action.alias),
            attr('name', action.name or action.alias),
            attr('enabled', action.enabled),
            attr('default_action', action.default_action),
            attr('priority', action.priority),
        ]
        if action.config:
            body.append(attr('config', dict(action.config)))
        blocks.append(resource('keycloak_required_action', name, body))
        action_ids[action.alias] = f'keycloak_required_action.{name}.id'

    outputs = [output('required_action_ids', reference_map(action_ids), 'Identifiants des actions requises par alias')]
    return render_definition(export, 'Actions requises', blocks, outputs)


# ---------------------------------------------------------------------------
# Fédération d'utilisateurs
# ---------------------------------------------------------------------------

# Mappers d'attributs LDAP toujours générés : (suffixe, attribut Keycloak, attribut LDAP)
LDAP_ATTRIBUTE_MAPPERS = (
    ('username', 'username', 'uid'),
    ('first_name', 'firstName', 'cn'),
    ('last_name', 'lastName', 'sn'),
    ('email', 'email', 'mail'),
)

SEARCH_SCOPES = {'1': 'ONE_LEVEL', '2': 'SUBTREE'}


def _ldap_body(component: ComponentEntry, display_name: str) -> List[str]:
    object_classes = component.first('userObjectClasses', 'inetOrgPerson, organizationalPerson')
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('name', display_name),
        attr('enabled', component.flag('enabled', True)),
        attr('vendor', (component.first('vendor') or 'other').upper()),
        attr('connection_url', component.first('connectionUrl', '')),
        attr('users_dn', component.first('usersDn', '')),
        attr('username_ldap_attribute', component.first('usernameLDAPAttribute', 'uid')),
        attr('rdn_ldap_attribute', component.first('rdnLDAPAttribute', 'uid')),
        attr('uuid_ldap_attribute', component.first('uuidLDAPAttribute', 'entryUUID')),
        attr('user_object_classes', [c.strip() for c in object_classes.split(',') if c.strip()]),
    ]
    bind_dn = component.first('bindDn')
    if bind_dn:
        body += [
            attr('bind_dn', bind_dn),
            raw_attr('bind_credential', f'lookup(var.ldap_bind_credentials, {hcl_string(display_name)}, "")'),
        ]
    _optional(body, 'custom_user_search_filter', component.first('customUserSearchFilter'))
    body += [
        attr('edit_mode', component.first('editMode', 'READ_ONLY')),
        attr('search_scope', SEARCH_SCOPES.get(component.first('searchScope', '1'), 'ONE_LEVEL')),
        attr('import_enabled', component.flag('importEnabled', True)),
        attr('sync_registrations', component.flag('syncRegistrations')),
        attr('trust_email', component.flag('trustEmail')),
        attr('pagination', component.flag('pagination', True)),
        attr('batch_size_for_sync', component.number('batchSizeForSync', 1000)),
        attr('full_sync_period', component.number('fullSyncPeriod', -1)),
        attr('changed_sync_period', component.number('changedSyncPeriod', -1)),
    ]
    return body


def emit_user_federation(export: RealmExport) -> str:
    """Génère les fournisseurs LDAP (avec leurs mappers standards) et les fédérations personnalisées"""
    names = UniqueNames()
    blocks = []
    federation_ids = {}
    has_ldap = False

    entries = export.parse_list('user_federation', 'federation provider',
                                export.components(USER_STORAGE_PROVIDER), ComponentEntry)
    for index, component in entries:
        display_name = component.name or f'{component.provider_id}_{index}'
        name = names.claim(display_name, component.provider_id, index)
        if component.provider_id == 'ldap':
            has_ldap = True
            resource_type = 'keycloak_ldap_user_federation'
            blocks.append(resource(resource_type, name, _ldap_body(component, display_name)))
            for suffix, user_attribute, ldap_attribute in LDAP_ATTRIBUTE_MAPPERS:
                blocks.append(resource('keycloak_ldap_user_attribute_mapper', f'{name}_{suffix}', [
                    raw_attr('realm_id', REALM_ID),
                    raw_attr('ldap_user_federation_id', f'{resource_type}.{name}.id'),
                    attr('name', suffix.replace('_', ' ')),
                    attr('user_model_attribute', user_attribute),
                    attr('ldap_attribute', ldap_attribute),
                ]))
        else:
            resource_type = 'keycloak_custom_user_federation'
            config = {key: '##'.join(values) for key, values in component.config.items()
                      if key not in ('enabled', 'priority', 'cachePolicy')}
            body = [
                raw_attr('realm_id', REALM_ID),
                attr('name', display_name),
                attr('provider_id', component.provider_id),
                attr('enabled', component.flag('enabled', True)),
                attr('priority', component.number('priority', 0)),
            ]
            _optional(body, 'cache_policy', component.first('cachePolicy'))
            if config:
                body.append(attr('config', config))
            blocks.append(resource(resource_type, name, body))
        federation_ids[display_name] = f'{resource_type}.{name}.id'

    variables = []
    if has_ldap:
        variables.append(variable('ldap_bind_credentials', 'Mots de passe de liaison LDAP (nom => secret)',
                                  var_type='map(string)', default={}, has_default=True, sensitive=True))
    outputs = [output('federation_ids', reference_map(federation_ids), 'Identifiants des fédérations')]
    return render_definition(export, "Fédération d'utilisateurs", blocks, outputs, variables)


# ---------------------------------------------------------------------------
# Thèmes, politiques de sécurité, événements, identifiants requis
# ---------------------------------------------------------------------------

def emit_themes(export: RealmExport) -> str:
    """Un stub informatif par thème : les thèmes se déploient sur le serveur, pas via l'API"""
    blocks = []
    for kind, theme in export.settings.themes.items():
        blocks.append(notice_stub(
            f'{kind}_theme',
            {'realm': export.realm_name, 'type': kind, 'theme': theme},
            f"Thème {kind} '{theme}' : à déployer sur le serveur Keycloak (appliqué par le module realm)",
        ))
    return render_definition(export, 'Thèmes', blocks, use_null_provider=True)


KEYSTORES = {
    'rsa-generated': 'keycloak_realm_keystore_rsa_generated',
    'rsa-enc-generated': 'keycloak_realm_keystore_rsa_generated',
    'hmac-generated': 'keycloak_realm_keystore_hmac_generated',
    'aes-generated': 'keycloak_realm_keystore_aes_generated',
    'ecdsa-generated': 'keycloak_realm_keystore_ecdsa_generated',
}


def _keystore_body(component: ComponentEntry, display_name: str) -> List[str]:
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('name', display_name),
        attr('active', component.flag('active', True)),
        attr('enabled', component.flag('enabled', True)),
        attr('priority', component.number('priority', 0)),
    ]
    if component.provider_id in ('rsa-generated', 'rsa-enc-generated'):
        default_algorithm = 'RSA-OAEP' if component.provider_id == 'rsa-enc-generated' else 'RS256'
        body.append(attr('algorithm', component.first('algorithm', default_algorithm)))
        body.append(attr('key_size', component.number('keySize', 2048)))
    elif component.provider_id == 'hmac-generated':
        body.append(attr('algorithm', component.first('algorithm', 'HS256')))
        body.append(attr('secret_size', component.number('secretSize', 64)))
    elif component.provider_id == 'aes-generated':
        body.append(attr('secret_size', component.number('secretSize', 16)))
    elif component.provider_id == 'ecdsa-generated':
        body.append(attr('elliptic_curve_key', component.first('ecdsaEllipticCurveKey', 'P-256')))
    return body


def emit_security_policies(export: RealmExport) -> str:
    """Résumé des politiques de sécurité du realm et magasins de clés générés"""
    security = export.security
    brute_force = {
        'enabled': security.brute_force_protected,
        'permanent_lockout': security.permanent_lockout,
        'max_login_failures': security.failure_factor,
        'wait_increment_seconds': security.wait_increment_seconds,
        'quick_login_check_milli_seconds': security.quick_login_check_milli_seconds,
        'minimum_quick_login_wait_seconds': security.minimum_quick_login_wait_seconds,
        'max_failure_wait_seconds': security.max_failure_wait_seconds,
        'failure_reset_time_seconds': security.max_delta_time_seconds,
    }
    otp = {
        'type': security.otp_policy_type,
        'algorithm': security.otp_policy_algorithm,
        'digits': security.otp_policy_digits,
        'initial_counter': security.otp_policy_initial_counter,
        'look_ahead_window': security.otp_policy_look_ahead_window,
        'period': security.otp_policy_period,
    }
    locals_body = comment('Ces politiques sont appliquées par la ressource keycloak_realm du module realm')
    locals_body += [
        attr('brute_force_detection', brute_force),
        attr('password_policy', security.password_policy or ''),
        attr('otp_policy', otp),
        attr('browser_security_headers', dict(security.browser_security_headers)),
    ]
    blocks = [block('locals', locals_body)]

    names = UniqueNames()
    for index, component in export.parse_list('security_policies', 'key provider',
                                              export.components(KEY_PROVIDER), ComponentEntry):
        display_name = component.name or f'{component.provider_id}_{index}'
        name = names.claim(display_name, component.provider_id, index)
        resource_type = KEYSTORES.get(component.provider_id)
        if resource_type:
            blocks.append(resource(resource_type, name, _keystore_body(component, display_name)))
        else:
            # Les clés importées ne sont pas exportées par Keycloak
            note = comment_block(f"Fournisseur de clés '{display_name}' ({component.provider_id}) : "
                                 "matériel de clé non exporté")
            generic = [
                raw_attr('realm_id', REALM_ID),
                attr('name', display_name),
                attr('provider_id', component.provider_id),
            ]
            blocks.append(note + commented_out(resource('keycloak_realm_keystore_java_keystore', name, generic)))

    outputs = [
        output('brute_force_detection', 'local.brute_force_detection', 'Protection contre la force brute'),
        output('password_policy', 'local.password_policy', 'Politique de mot de passe'),
        output('otp_policy', 'local.otp_policy', 'Politique OTP'),
    ]
    return render_definition(export, 'Politiques de sécurité', blocks, outputs)


BUILTIN_EVENT_LISTENERS = ('jboss-logging', 'email')


def emit_events(export: RealmExport) -> str:
    """Configuration des événements du realm"""
    events = export.events
    body = [
        raw_attr('realm_id', REALM_ID),
        attr('events_enabled', events.events_enabled),
    ]
    _optional(body, 'events_expiration', events.events_expiration)
    body += [
        attr('admin_events_enabled', events.admin_events_enabled),
        attr('admin_events_details_enabled', events.admin_events_details_enabled),
    ]
    _optional(body, 'enabled_event_types', events.enabled_event_types)
    body.append(attr('events_listeners', events.events_listeners))
    blocks = [resource('keycloak_realm_events', 'events', body)]

    custom = [listener for listener in events.events_listeners if listener not in BUILTIN_EVENT_LISTENERS]
    names = UniqueNames()
    for index, listener in enumerate(custom):
        blocks.append(notice_stub(
            names.claim(f'listener_{listener}', 'listener', index),
            {'realm': export.realm_name, 'listener': listener},
            f"Listener d'événements '{listener}' : extension à installer sur le serveur Keycloak",
        ))

    outputs = [
        output('events_enabled', 'keycloak_realm_events.events.events_enabled'),
        output('admin_events_enabled', 'keycloak_realm_events.events.admin_events_enabled'),
    ]
    return render_definition(export, 'Événements', blocks, outputs, use_null_provider=bool(custom))


def emit_required_credentials(export: RealmExport) -> str:
    """Un stub informatif par type d'identifiant requis"""
    names = UniqueNames()
    blocks = []
    credentials = export.section('requiredCredentials')
    for index, credential in enumerate(credentials if isinstance(credentials, list) else []):
        if isinstance(credential, Mapping):
            credential = credential.get('type')
        credential_type = credential if isinstance(credential, str) and credential.strip() else None
        label = credential_type or f'credential_{index}'
        blocks.append(notice_stub(
            names.claim(credential_type, 'credential', index),
            {'realm': export.realm_name, 'credential': label},
            f"Identifiant requis '{label}' : géré par Keycloak, aucune ressource Terraform équivalente",
        ))
    return render_definition(export, 'Identifiants requis', blocks, use_null_provider=True)


# ---------------------------------------------------------------------------
# Câblage Terragrunt
# ---------------------------------------------------------------------------

def _has_list(key: str) -> Callable[[Mapping[str, Any]], bool]:
    def trigger(document: Mapping[str, Any]) -> bool:
        value = document.get(key)
        return isinstance(value, list) and len(value) > 0
    return trigger


def _has_roles(document: Mapping[str, Any]) -> bool:
    roles = document.get('roles')
    return isinstance(roles, Mapping) and bool(roles.get('realm') or roles.get('client'))


def _has_components(document: Mapping[str, Any]) -> bool:
    components = document.get('components')
    return isinstance(components, Mapping) and len(components) > 0


def _has_themes(document: Mapping[str, Any]) -> bool:
    return any(document.get(key) for key in ('loginTheme', 'accountTheme', 'adminTheme', 'emailTheme'))


def _always(document: Mapping[str, Any]) -> bool:
    return True


MODULES = (
    ModuleDescriptor('realm', 'Realm', _always, emit_realm, ('realm_id', 'realm_name')),
    ModuleDescriptor('users', 'Utilisateurs', _has_list('users'), emit_users, ('user_ids',), 'include_users'),
    ModuleDescriptor('clients', 'Clients', _has_list('clients'), emit_clients, ('client_ids',), 'include_clients'),
    ModuleDescriptor('client_scopes', 'Client scopes', _has_list('clientScopes'), emit_client_scopes,
                     ('client_scope_ids',)),
    ModuleDescriptor('roles', 'Rôles', _has_roles, emit_roles, ('role_ids',), 'include_roles'),
    ModuleDescriptor('groups', 'Groupes', _has_list('groups'), emit_groups, ('group_ids',), 'include_groups'),
    ModuleDescriptor('identity_providers', "Fournisseurs d'identité", _has_list('identityProviders'),
                     emit_identity_providers, ('identity_provider_aliases',)),
    ModuleDescriptor('auth_flows', "Flows d'authentification", _has_list('authenticationFlows'),
                     emit_auth_flows, ('flow_ids',)),
    ModuleDescriptor('required_actions', 'Actions requises', _has_list('requiredActions'),
                     emit_required_actions, ('required_action_ids',)),
    ModuleDescriptor('user_federation', "Fédération d'utilisateurs", _has_components,
                     emit_user_federation, ('federation_ids',)),
    ModuleDescriptor('themes', 'Thèmes', _has_themes, emit_themes, ()),
    ModuleDescriptor('security_policies', 'Politiques de sécurité', _always, emit_security_policies,
                     ('brute_force_detection', 'password_policy', 'otp_policy')),
    ModuleDescriptor('events', 'Événements', _always, emit_events, ('events_enabled', 'admin_events_enabled')),
    ModuleDescriptor('required_credentials', 'Identifiants requis', _has_list('requiredCredentials'),
                     emit_required_credentials, ()),
)


def render_wiring(descriptor: ModuleDescriptor, realm_name: str) -> str:
    """Fichier terragrunt.hcl d'un module ; tous dépendent uniquement du module realm"""
    config = comment_block(f'Module {descriptor.title} du realm {realm_name}') + '''include "root" {
  path = find_in_parent_folders()
}

terraform {
  source = "."
}
'''
    if descriptor.slug != 'realm':
        config += '''
dependency "realm" {
  config_path = "../realm"

  mock_outputs = {
    realm_id = "mock-realm-id"
  }
  mock_outputs_allowed_terraform_commands = ["validate", "plan"]
}

inputs = {
  realm_id = dependency.realm.outputs.realm_id
}
'''
    config += '\n' + block('locals', [attr('module_outputs', list(descriptor.outputs))])
    return config


def document_digest(document: Mapping[str, Any]) -> str:
    """Empreinte SHA-256 de la forme canonique du document source"""
    canonical = json.dumps(document, sort_keys=True, ensure_ascii=False, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def render_root_wiring(export: RealmExport) -> str:
    """Fichier terragrunt.hcl racine : état local et génération du provider keycloak"""
    header = comment_block(f'Configuration Terragrunt racine du realm {export.realm_name}\n'
                           f"Empreinte de l'export source (sha256): {document_digest(export.document)}")
    return header + f'''
remote_state {{
  backend = "local"
  generate = {{
    path      = "backend.tf"
    if_exists = "overwrite_terragrunt"
  }}
  config = {{
    path = "${{get_terragrunt_dir()}}/terraform.tfstate"
  }}
}}

generate "provider" {{
  path      = "provider.tf"
  if_exists = "overwrite_terragrunt"
  contents  = <<EOF
provider "keycloak" {{
  client_id = "${{get_env("KEYCLOAK_CLIENT_ID", "admin-cli")}}"
  username  = "${{get_env("KEYCLOAK_USERNAME", "admin")}}"
  password  = "${{get_env("KEYCLOAK_PASSWORD", "")}}"
  url       = "${{get_env("KEYCLOAK_URL", "http://localhost:8080")}}"
  realm     = "master"
}}
EOF
}}
'''
