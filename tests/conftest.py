"""Exports de realm partagés par les tests."""

import pytest

from keycloak_to_terragrunt import KeycloakToTerragrunt
from realm_model import ConversionOptions


def build_rich_realm():
    return {
        "realm": "acme",
        "displayName": "ACME",
        "enabled": True,
        "loginTheme": "acme-theme",
        "bruteForceProtected": True,
        "passwordPolicy": "length(12) and digits(1)",
        "browserFlow": "acme browser",
        "smtpServer": {
            "host": "smtp.acme.test",
            "port": "587",
            "from": "noreply@acme.test",
            "auth": "true",
            "user": "mailer",
            "starttls": "true",
        },
        "eventsEnabled": True,
        "eventsListeners": ["jboss-logging", "audit-listener"],
        "users": [
            {
                "username": "alice",
                "email": "alice@acme.test",
                "firstName": "Alice",
                "groups": ["/staff"],
                "realmRoles": ["editor"],
                "attributes": {"dept": ["R&D"]},
            },
            {"username": "service-account-backend", "serviceAccountClientId": "backend"},
        ],
        "clients": [
            {
                "clientId": "web",
                "publicClient": True,
                "redirectUris": ["https://acme.test/*"],
                "webOrigins": ["https://acme.test"],
                "attributes": {"pkce.code.challenge.method": "S256"},
                "defaultClientScopes": ["profile", "email"],
                "protocolMappers": [
                    {
                        "name": "department",
                        "protocol": "openid-connect",
                        "protocolMapper": "oidc-usermodel-attribute-mapper",
                        "config": {
                            "user.attribute": "dept",
                            "claim.name": "department",
                            "jsonType.label": "String",
                            "id.token.claim": "true",
                            "access.token.claim": "true",
                            "userinfo.token.claim": "false",
                        },
                    },
                    {"name": "legacy", "protocolMapper": "oidc-script-mapper", "config": {}},
                ],
            },
            {
                "clientId": "backend",
                "serviceAccountsEnabled": True,
                "standardFlowEnabled": False,
                "redirectUris": ["https://ignored.test/*"],
            },
            {"clientId": "api", "bearerOnly": True},
            {"clientId": "saml-app", "protocol": "saml", "redirectUris": ["https://sp.test/acs"]},
            {"clientId": "account"},
        ],
        "clientScopes": [
            {
                "name": "acme-api",
                "description": "Accès à l'API ACME",
                "protocol": "openid-connect",
                "attributes": {
                    "consent.screen.text": "API ACME",
                    "include.in.token.scope": "true",
                    "gui.order": "5",
                },
                "protocolMappers": [
                    {
                        "name": "audience",
                        "protocol": "openid-connect",
                        "protocolMapper": "oidc-audience-mapper",
                        "config": {"included.client.audience": "api", "access.token.claim": "true"},
                    }
                ],
            },
            {"name": "profile", "protocol": "openid-connect"},
            {"name": "acme-saml", "protocol": "saml"},
        ],
        "roles": {
            "realm": [
                {"name": "editor", "description": "Éditeur"},
                {"name": "manager", "composite": True, "composites": {"realm": ["editor"]}},
                {"name": "offline_access"},
            ],
            "client": {"web": [{"name": "admin"}]},
        },
        "groups": [
            {
                "name": "staff",
                "path": "/staff",
                "realmRoles": ["editor"],
                "subGroups": [{"name": "engineering", "path": "/staff/engineering"}],
            }
        ],
        "identityProviders": [
            {
                "alias": "corp",
                "providerId": "oidc",
                "config": {
                    "authorizationUrl": "https://idp.test/auth",
                    "tokenUrl": "https://idp.test/token",
                    "clientId": "acme",
                    "clientSecret": "**********",
                    "guiOrder": "1",
                },
            }
        ],
        "identityProviderMappers": [
            {
                "name": "email",
                "identityProviderAlias": "corp",
                "identityProviderMapper": "oidc-user-attribute-idp-mapper",
                "config": {"claim": "email", "user.attribute": "email"},
            }
        ],
        "authenticationFlows": [
            {
                "alias": "browser",
                "providerId": "basic-flow",
                "topLevel": True,
                "builtIn": True,
                "authenticationExecutions": [],
            },
            {
                "alias": "acme browser",
                "providerId": "basic-flow",
                "topLevel": True,
                "builtIn": False,
                "authenticationExecutions": [
                    {"authenticatorFlow": True, "flowAlias": "acme forms",
                     "requirement": "ALTERNATIVE", "priority": 20},
                    {"authenticator": "auth-cookie", "authenticatorFlow": False,
                     "requirement": "ALTERNATIVE", "priority": 10},
                ],
            },
            {
                "alias": "acme forms",
                "providerId": "basic-flow",
                "topLevel": False,
                "builtIn": False,
                "authenticationExecutions": [
                    {"authenticator": "auth-username-password-form", "requirement": "REQUIRED", "priority": 10},
                    {"authenticator": "auth-otp-form", "authenticatorConfig": "otp-config",
                     "requirement": "CONDITIONAL", "priority": 20},
                ],
            },
        ],
        "authenticatorConfig": [{"alias": "otp-config", "config": {"otp.length": "6"}}],
        "requiredActions": [
            {"alias": "CONFIGURE_TOTP", "name": "Configure OTP", "providerId": "CONFIGURE_TOTP",
             "enabled": True, "defaultAction": False, "priority": 10, "config": {}},
            {"alias": "TERMS_AND_CONDITIONS", "name": "Terms and Conditions", "enabled": False, "priority": 20},
        ],
        "components": {
            "org.keycloak.storage.UserStorageProvider": [
                {
                    "name": "corp-ldap",
                    "providerId": "ldap",
                    "config": {
                        "connectionUrl": ["ldaps://ldap.acme.test"],
                        "usersDn": ["ou=people,dc=acme"],
                        "bindDn": ["cn=admin"],
                        "vendor": ["ad"],
                        "editMode": ["WRITABLE"],
                    },
                },
                {"name": "kerberos", "providerId": "kerberos", "config": {"kerberosRealm": ["ACME.TEST"]}},
            ],
            "org.keycloak.storage.ldap.mappers.LDAPStorageMapper": [
                {"name": "custom phone", "providerId": "user-attribute-ldap-mapper",
                 "config": {"ldap.attribute": ["telephoneNumber"]}},
            ],
            "org.keycloak.keys.KeyProvider": [
                {"name": "rsa-generated", "providerId": "rsa-generated",
                 "config": {"priority": ["100"], "keySize": ["2048"]}},
                {"name": "imported", "providerId": "java-keystore", "config": {}},
            ],
        },
        "requiredCredentials": ["password"],
    }


@pytest.fixture
def demo_realm():
    return {
        "realm": "demo",
        "users": [{"username": "alice", "email": "a@x.com"}],
        "clients": [{"clientId": "app1", "publicClient": True}],
    }


@pytest.fixture
def bare_realm():
    return {"realm": "bare"}


@pytest.fixture
def rich_realm():
    return build_rich_realm()


@pytest.fixture
def converter():
    return KeycloakToTerragrunt()


@pytest.fixture
def rich_result(rich_realm):
    return KeycloakToTerragrunt(ConversionOptions(validate_output=True)).convert(rich_realm, "acme.json")


@pytest.fixture
def content_of():
    """Contenu d'un fichier généré, en échouant clairement s'il est absent"""

    def read(result, path):
        generated = result.file(path)
        assert generated is not None, f"{path} absent de {[f.file_path for f in result.files]}"
        return generated.content

    return read
