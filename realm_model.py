"""
Représentation typée d'un export de realm Keycloak

Chaque type d'entité est validé une seule fois par un modèle pydantic dont les
valeurs par défaut sont celles de Keycloak. Les générateurs de modules ne lisent
que ces modèles, jamais le JSON brut.
"""

import logging
from functools import cached_property
from typing import Annotated, Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import (AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field,
                      ValidationError)

from terragrunt_paths import realm_display_name

logger = logging.getLogger(__name__)


class InvalidRealmError(ValueError):
    """Le document n'est pas un export de realm Keycloak"""


class EntityError(ValueError):
    """Une entrée de l'export ne peut pas être convertie"""


def is_valid_realm(document: Any) -> bool:
    """Vérifie qu'un document JSON a la forme minimale d'un export de realm"""
    return isinstance(document, Mapping) and bool(document.get('realm'))


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError('valeur vide')
    return value


def _normalize_attributes(value: Any) -> Any:
    # Keycloak exporte les attributs sous forme de listes, mais accepte aussi des valeurs simples
    if not isinstance(value, Mapping):
        return value
    normalized = {}
    for key, values in value.items():
        if values is None:
            continue
        if not isinstance(values, (list, tuple)):
            values = [values]
        normalized[str(key)] = [_stringify(v) for v in values if v is not None]
    return normalized


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _stringify_map(value: Any) -> Any:
    if not isinstance(value, Mapping):
        return value
    return {str(k): _stringify(v) for k, v in value.items() if v is not None}


Identifier = Annotated[str, AfterValidator(_require_text)]
AttributeMap = Annotated[Dict[str, List[str]], BeforeValidator(_normalize_attributes)]
StringMap = Annotated[Dict[str, str], BeforeValidator(_stringify_map)]


class KeycloakModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class RealmSettings(KeycloakModel):
    """Attributs de premier niveau du realm"""

    realm: Identifier
    display_name: Optional[str] = Field(None, alias='displayName')
    display_name_html: Optional[str] = Field(None, alias='displayNameHtml')
    enabled: bool = True
    ssl_required: str = Field('external', alias='sslRequired')

    # Connexion et inscription
    registration_allowed: bool = Field(False, alias='registrationAllowed')
    registration_email_as_username: bool = Field(False, alias='registrationEmailAsUsername')
    remember_me: bool = Field(False, alias='rememberMe')
    verify_email: bool = Field(False, alias='verifyEmail')
    login_with_email_allowed: bool = Field(True, alias='loginWithEmailAllowed')
    duplicate_emails_allowed: bool = Field(False, alias='duplicateEmailsAllowed')
    reset_password_allowed: bool = Field(False, alias='resetPasswordAllowed')
    edit_username_allowed: bool = Field(False, alias='editUsernameAllowed')

    # Durées de vie des jetons et des sessions (secondes)
    access_token_lifespan: int = Field(300, alias='accessTokenLifespan')
    access_token_lifespan_for_implicit_flow: int = Field(900, alias='accessTokenLifespanForImplicitFlow')
    sso_session_idle_timeout: int = Field(1800, alias='ssoSessionIdleTimeout')
    sso_session_max_lifespan: int = Field(36000, alias='ssoSessionMaxLifespan')
    offline_session_idle_timeout: int = Field(2592000, alias='offlineSessionIdleTimeout')
    offline_session_max_lifespan_enabled: bool = Field(False, alias='offlineSessionMaxLifespanEnabled')
    offline_session_max_lifespan: int = Field(5184000, alias='offlineSessionMaxLifespan')
    access_code_lifespan: int = Field(60, alias='accessCodeLifespan')
    access_code_lifespan_user_action: int = Field(300, alias='accessCodeLifespanUserAction')
    access_code_lifespan_login: int = Field(1800, alias='accessCodeLifespanLogin')
    action_token_generated_by_admin_lifespan: int = Field(43200, alias='actionTokenGeneratedByAdminLifespan')
    action_token_generated_by_user_lifespan: int = Field(300, alias='actionTokenGeneratedByUserLifespan')
    revoke_refresh_token: bool = Field(False, alias='revokeRefreshToken')
    refresh_token_max_reuse: int = Field(0, alias='refreshTokenMaxReuse')

    password_policy: Optional[str] = Field(None, alias='passwordPolicy')

    internationalization_enabled: bool = Field(False, alias='internationalizationEnabled')
    supported_locales: List[str] = Field(default_factory=list, alias='supportedLocales')
    default_locale: Optional[str] = Field(None, alias='defaultLocale')

    login_theme: Optional[str] = Field(None, alias='loginTheme')
    account_theme: Optional[str] = Field(None, alias='accountTheme')
    admin_theme: Optional[str] = Field(None, alias='adminTheme')
    email_theme: Optional[str] = Field(None, alias='emailTheme')

    smtp_server: StringMap = Field(default_factory=dict, alias='smtpServer')

    # Liaisons des flows d'authentification
    browser_flow: Optional[str] = Field(None, alias='browserFlow')
    registration_flow: Optional[str] = Field(None, alias='registrationFlow')
    direct_grant_flow: Optional[str] = Field(None, alias='directGrantFlow')
    reset_credentials_flow: Optional[str] = Field(None, alias='resetCredentialsFlow')
    client_authentication_flow: Optional[str] = Field(None, alias='clientAuthenticationFlow')
    docker_authentication_flow: Optional[str] = Field(None, alias='dockerAuthenticationFlow')

    @property
    def themes(self) -> Dict[str, str]:
        """Thèmes configurés, indexés par type (login, account, admin, email)"""
        candidates = {
            'login': self.login_theme,
            'account': self.account_theme,
            'admin': self.admin_theme,
            'email': self.email_theme,
        }
        return {kind: theme for kind, theme in candidates.items() if theme}


class SecuritySettings(KeycloakModel):
    """Protection contre la force brute, en-têtes HTTP, politiques de mot de passe et OTP"""

    brute_force_protected: bool = Field(False, alias='bruteForceProtected')
    permanent_lockout: bool = Field(False, alias='permanentLockout')
    failure_factor: int = Field(30, alias='failureFactor')
    wait_increment_seconds: int = Field(60, alias='waitIncrementSeconds')
    quick_login_check_milli_seconds: int = Field(1000, alias='quickLoginCheckMilliSeconds')
    minimum_quick_login_wait_seconds: int = Field(60, alias='minimumQuickLoginWaitSeconds')
    max_failure_wait_seconds: int = Field(900, alias='maxFailureWaitSeconds')
    max_delta_time_seconds: int = Field(43200, alias='maxDeltaTimeSeconds')

    browser_security_headers: StringMap = Field(default_factory=dict, alias='browserSecurityHeaders')
    password_policy: Optional[str] = Field(None, alias='passwordPolicy')

    otp_policy_type: str = Field('totp', alias='otpPolicyType')
    otp_policy_algorithm: str = Field('HmacSHA1', alias='otpPolicyAlgorithm')
    otp_policy_digits: int = Field(6, alias='otpPolicyDigits')
    otp_policy_initial_counter: int = Field(0, alias='otpPolicyInitialCounter')
    otp_policy_look_ahead_window: int = Field(1, alias='otpPolicyLookAheadWindow')
    otp_policy_period: int = Field(30, alias='otpPolicyPeriod')


class EventSettings(KeycloakModel):
    events_enabled: bool = Field(False, alias='eventsEnabled')
    events_expiration: Optional[int] = Field(None, alias='eventsExpiration')
    events_listeners: List[str] = Field(default_factory=lambda: ['jboss-logging'], alias='eventsListeners')
    enabled_event_types: List[str] = Field(default_factory=list, alias='enabledEventTypes')
    admin_events_enabled: bool = Field(False, alias='adminEventsEnabled')
    admin_events_details_enabled: bool = Field(False, alias='adminEventsDetailsEnabled')


class UserEntry(KeycloakModel):
    username: Identifier
    enabled: bool = True
    email: Optional[str] = None
    email_verified: bool = Field(False, alias='emailVerified')
    first_name: Optional[str] = Field(None, alias='firstName')
    last_name: Optional[str] = Field(None, alias='lastName')
    attributes: AttributeMap = Field(default_factory=dict)
    groups: List[str] = Field(default_factory=list)
    realm_roles: List[str] = Field(default_factory=list, alias='realmRoles')
    client_roles: Dict[str, List[str]] = Field(default_factory=dict, alias='clientRoles')
    required_actions: List[str] = Field(default_factory=list, alias='requiredActions')
    federation_link: Optional[str] = Field(None, alias='federationLink')
    service_account_client_id: Optional[str] = Field(None, alias='serviceAccountClientId')


class ProtocolMapperEntry(KeycloakModel):
    name: Optional[str] = None
    protocol: str = 'openid-connect'
    protocol_mapper: Optional[str] = Field(None, alias='protocolMapper')
    config: StringMap = Field(default_factory=dict)

    def flag(self, key: str, default: bool = False) -> bool:
        """Lit un booléen de la configuration du mapper ("true"/"false")"""
        value = self.config.get(key)
        if value is None:
            return default
        return value.strip().lower() == 'true'


class ClientEntry(KeycloakModel):
    client_id: Identifier = Field(..., alias='clientId')
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    protocol: str = 'openid-connect'
    public_client: bool = Field(False, alias='publicClient')
    bearer_only: bool = Field(False, alias='bearerOnly')
    standard_flow_enabled: bool = Field(True, alias='standardFlowEnabled')
    implicit_flow_enabled: bool = Field(False, alias='implicitFlowEnabled')
    direct_access_grants_enabled: bool = Field(False, alias='directAccessGrantsEnabled')
    service_accounts_enabled: bool = Field(False, alias='serviceAccountsEnabled')
    consent_required: bool = Field(False, alias='consentRequired')
    full_scope_allowed: bool = Field(True, alias='fullScopeAllowed')
    frontchannel_logout: bool = Field(False, alias='frontchannelLogout')
    root_url: Optional[str] = Field(None, alias='rootUrl')
    base_url: Optional[str] = Field(None, alias='baseUrl')
    admin_url: Optional[str] = Field(None, alias='adminUrl')
    redirect_uris: List[str] = Field(default_factory=list, alias='redirectUris')
    web_origins: List[str] = Field(default_factory=list, alias='webOrigins')
    attributes: StringMap = Field(default_factory=dict)
    default_client_scopes: List[str] = Field(default_factory=list, alias='defaultClientScopes')
    optional_client_scopes: List[str] = Field(default_factory=list, alias='optionalClientScopes')
    protocol_mappers: List[Any] = Field(default_factory=list, alias='protocolMappers')
    authentication_flow_binding_overrides: StringMap = Field(
        default_factory=dict, alias='authenticationFlowBindingOverrides')

    @property
    def access_type(self) -> str:
        """Type d'accès du provider Terraform déduit des attributs du client"""
        if self.bearer_only:
            return 'BEARER-ONLY'
        if self.public_client:
            return 'PUBLIC'
        return 'CONFIDENTIAL'


class ClientScopeEntry(KeycloakModel):
    name: Identifier
    description: Optional[str] = None
    protocol: str = 'openid-connect'
    attributes: StringMap = Field(default_factory=dict)
    protocol_mappers: List[Any] = Field(default_factory=list, alias='protocolMappers')

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.attributes.get(key)
        if value is None:
            return default
        return value.strip().lower() == 'true'


class RequiredActionEntry(KeycloakModel):
    alias: Identifier
    name: Optional[str] = None
    provider_id: Optional[str] = Field(None, alias='providerId')
    enabled: bool = True
    default_action: bool = Field(False, alias='defaultAction')
    priority: int = 0
    config: StringMap = Field(default_factory=dict)


class RoleEntry(KeycloakModel):
    name: Identifier
    description: Optional[str] = None
    composite: bool = False
    composites: Dict[str, Any] = Field(default_factory=dict)
    attributes: AttributeMap = Field(default_factory=dict)


class GroupEntry(KeycloakModel):
    name: Optional[str] = None
    path: Optional[str] = None
    attributes: AttributeMap = Field(default_factory=dict)
    realm_roles: List[str] = Field(default_factory=list, alias='realmRoles')
    client_roles: Dict[str, List[str]] = Field(default_factory=dict, alias='clientRoles')
    sub_groups: List[Any] = Field(default_factory=list, alias='subGroups')


class IdentityProviderEntry(KeycloakModel):
    alias: Identifier
    display_name: Optional[str] = Field(None, alias='displayName')
    provider_id: str = Field('oidc', alias='providerId')
    enabled: bool = True
    store_token: bool = Field(False, alias='storeToken')
    trust_email: bool = Field(False, alias='trustEmail')
    link_only: bool = Field(False, alias='linkOnly')
    hide_on_login: bool = Field(False, alias='hideOnLogin')
    first_broker_login_flow_alias: str = Field('first broker login', alias='firstBrokerLoginFlowAlias')
    post_broker_login_flow_alias: Optional[str] = Field(None, alias='postBrokerLoginFlowAlias')
    config: StringMap = Field(default_factory=dict)


class IdentityProviderMapperEntry(KeycloakModel):
    name: Identifier
    identity_provider_alias: Identifier = Field(..., alias='identityProviderAlias')
    identity_provider_mapper: Identifier = Field(..., alias='identityProviderMapper')
    config: StringMap = Field(default_factory=dict)


class ExecutionEntry(KeycloakModel):
    authenticator: Optional[str] = None
    authenticator_config: Optional[str] = Field(None, alias='authenticatorConfig')
    authenticator_flow: bool = Field(False, alias='authenticatorFlow')
    flow_alias: Optional[str] = Field(None, alias='flowAlias')
    requirement: str = 'REQUIRED'
    priority: int = 0


class AuthenticationFlowEntry(KeycloakModel):
    alias: Identifier
    description: str = ''
    provider_id: str = Field('basic-flow', alias='providerId')
    top_level: bool = Field(True, alias='topLevel')
    built_in: bool = Field(False, alias='builtIn')
    authentication_executions: List[Any] = Field(default_factory=list, alias='authenticationExecutions')


class AuthenticatorConfigEntry(KeycloakModel):
    alias: Identifier
    config: StringMap = Field(default_factory=dict)


class ComponentEntry(KeycloakModel):
    """Composant Keycloak (fournisseur de fédération, de clés...)"""

    name: Optional[str] = None
    provider_id: Identifier = Field(..., alias='providerId')
    sub_type: Optional[str] = Field(None, alias='subType')
    config: AttributeMap = Field(default_factory=dict)

    def first(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Première valeur d'une clé de configuration (les valeurs sont exportées en listes)"""
        values = self.config.get(key)
        if values:
            return values[0]
        return default

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.first(key)
        if value is None:
            return default
        return value.strip().lower() == 'true'

    def number(self, key: str, default: int) -> int:
        value = self.first(key)
        try:
            return int(value) if value is not None else default
        except ValueError:
            return default


# Objets automatiquement créés par Keycloak (ne pas recréer pour éviter les erreurs 409)
BUILTIN_OBJECTS = {
    'client': [
        'account', 'account-console', 'admin-cli', 'broker',
        'realm-management', 'security-admin-console',
    ],
    'role': ['offline_access', 'uma_authorization'],
    'scope': [
        'roles', 'acr', 'offline_access', 'email', 'microprofile-jwt',
        'address', 'service_account', 'phone', 'web-origins',
        'organization', 'profile', 'basic', 'saml_organization', 'role_list',
    ],
    'flow': [
        'browser', 'clients', 'direct grant', 'docker auth',
        'first broker login', 'registration', 'reset credentials', 'saml ecp',
        'http challenge', 'registration form', 'forms',
    ],
}

ModelT = TypeVar('ModelT', bound=KeycloakModel)


class Diagnostic(BaseModel):
    """Perte de données silencieuse relevée pendant une conversion"""

    model_config = ConfigDict(populate_by_name=True)

    module: str
    kind: str
    index: Optional[int] = None
    identifier: Optional[str] = None
    reason: str
    skipped: bool = Field(True, description="L'entrée entière a été ignorée")


class GeneratedFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_path: str = Field(..., alias='filePath')
    content: str


class ConversionOptions(KeycloakModel):
    """Options de conversion, compatibles avec le contrat du backend de conversion"""

    include_users: bool = Field(True, alias='includeUsers')
    include_groups: bool = Field(True, alias='includeGroups')
    include_clients: bool = Field(True, alias='includeClients')
    include_roles: bool = Field(True, alias='includeRoles')
    generate_terragrunt: bool = Field(True, alias='generateTerragrunt')
    output_format: str = Field('terragrunt', alias='outputFormat')
    validate_output: bool = Field(False, alias='validateOutput')
    exclude_builtin: bool = Field(False, alias='excludeBuiltin')


class ConversionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    realm: str
    files: List[GeneratedFile] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    issues: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def skipped(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.skipped]

    def file(self, file_path: str) -> Optional[GeneratedFile]:
        for generated in self.files:
            if generated.file_path == file_path:
                return generated
        return None


def validate_lenient(model_cls: Type[ModelT], data: Any) -> Tuple[ModelT, List[str]]:
    """
    Valide une entrée en écartant les attributs mal typés (ils reprennent leur valeur
    par défaut). Lève EntityError si l'entrée n'est pas un objet ou si un champ requis
    manque ou reste invalide.
    """
    if not isinstance(data, Mapping):
        raise EntityError(f"entrée de type {type(data).__name__} au lieu d'un objet")

    payload = dict(data)
    dropped: List[str] = []
    while True:
        try:
            return model_cls.model_validate(payload), dropped
        except ValidationError as exc:
            bad_keys = []
            for error in exc.errors():
                loc = error.get('loc') or ()
                key = loc[0] if loc else None
                if not isinstance(key, str) or key not in payload:
                    raise EntityError(f"champ requis manquant ou invalide: {key}") from exc
                bad_keys.append(key)
            for key in bad_keys:
                payload.pop(key, None)
                if key not in dropped:
                    dropped.append(key)


class RealmExport:
    """
    Vue typée d'un export de realm, construite une fois par conversion.
    Elle collecte aussi les diagnostics des entrées ignorées.
    """

    def __init__(self, document: Mapping[str, Any], file_name: str = 'realm.json',
                 exclude_builtin: bool = False):
        if not is_valid_realm(document):
            raise InvalidRealmError("Export Keycloak invalide: propriété \"realm\" manquante")
        self.document = document
        self.realm_name = realm_display_name(document.get('realm'), file_name)
        self.exclude_builtin = exclude_builtin
        self.diagnostics: List[Diagnostic] = []

    def record(self, module: str, kind: str, index: Optional[int], identifier: Optional[str],
               reason: str, skipped: bool = True):
        self.diagnostics.append(Diagnostic(module=module, kind=kind, index=index,
                                           identifier=identifier, reason=reason, skipped=skipped))
        what = 'ignoré(e)' if skipped else 'partiellement converti(e)'
        logger.warning("[%s] %s #%s (%s) %s: %s", module, kind, index, identifier or '-', what, reason)

    def parse(self, module: str, kind: str, index: Optional[int], data: Any,
              model_cls: Type[ModelT], label: Optional[str] = None) -> Optional[ModelT]:
        """Valide une entrée ; renvoie None (et enregistre un diagnostic) si elle est ignorée"""
        identifier = label
        if identifier is None and isinstance(data, Mapping):
            for key in ('username', 'clientId', 'alias', 'name', 'providerId'):
                if isinstance(data.get(key), str):
                    identifier = data[key]
                    break
        try:
            entry, dropped = validate_lenient(model_cls, data)
        except EntityError as exc:
            self.record(module, kind, index, identifier, str(exc))
            return None
        if dropped:
            self.record(module, kind, index, identifier,
                        f"attributs mal typés ignorés: {', '.join(dropped)}", skipped=False)
        return entry

    def parse_list(self, module: str, kind: str, raw: Any,
                   model_cls: Type[ModelT]) -> List[Tuple[int, ModelT]]:
        """Valide une liste d'entrées en conservant leur position d'origine"""
        if not isinstance(raw, list):
            return []
        entries = []
        for index, data in enumerate(raw):
            entry = self.parse(module, kind, index, data, model_cls)
            if entry is not None:
                entries.append((index, entry))
        return entries

    def is_builtin(self, kind: str, name: str) -> bool:
        """Vérifie si un objet est automatiquement créé par Keycloak"""
        if not self.exclude_builtin or not name:
            return False
        clean_name = name.lower().strip()
        if kind == 'role' and clean_name == f'default-roles-{self.realm_name.lower()}':
            return True
        return clean_name in [n.lower() for n in BUILTIN_OBJECTS.get(kind, [])]

    @cached_property
    def settings(self) -> RealmSettings:
        payload = dict(self.document)
        payload['realm'] = self.realm_name
        entry = self.parse('realm', 'realm', None, payload, RealmSettings, label=self.realm_name)
        # realm est toujours une chaîne non vide ici, la validation ne peut pas l'écarter
        return entry if entry is not None else RealmSettings(realm=self.realm_name)

    @cached_property
    def security(self) -> SecuritySettings:
        entry = self.parse('security_policies', 'security', None, self.document, SecuritySettings,
                           label=self.realm_name)
        return entry if entry is not None else SecuritySettings()

    @cached_property
    def events(self) -> EventSettings:
        entry = self.parse('events', 'events', None, self.document, EventSettings,
                           label=self.realm_name)
        return entry if entry is not None else EventSettings()

    def section(self, key: str) -> Any:
        return self.document.get(key)

    def roles_section(self) -> Mapping[str, Any]:
        roles = self.document.get('roles')
        return roles if isinstance(roles, Mapping) else {}

    def components(self, component_type: str) -> List[Any]:
        components = self.document.get('components')
        if not isinstance(components, Mapping):
            return []
        entries = components.get(component_type)
        return entries if isinstance(entries, list) else []
