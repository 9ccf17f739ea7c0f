"""Tests de la représentation typée de l'export."""

import pytest

from realm_model import (ClientEntry, ComponentEntry, ConversionOptions, EntityError,
                         GeneratedFile, InvalidRealmError, RealmExport, UserEntry,
                         is_valid_realm, validate_lenient)


class TestIsValidRealm:
    """Seule la présence d'un realm non vide est vérifiée."""

    @pytest.mark.parametrize("document", [{"realm": "demo"}, {"realm": "x", "users": "garbage"}, {"realm": 7}])
    def test_accepts(self, document):
        assert is_valid_realm(document) is True

    @pytest.mark.parametrize("document", [{}, {"realm": ""}, {"realm": None}, {"realm": 0}, [], "realm", None])
    def test_rejects(self, document):
        assert is_valid_realm(document) is False

    def test_realm_export_rejects_invalid_document(self):
        with pytest.raises(InvalidRealmError):
            RealmExport({"users": []})


class TestLenientValidation:
    """Les attributs mal typés reprennent leur valeur par défaut."""

    def test_drops_bad_attributes(self):
        user, dropped = validate_lenient(UserEntry, {"username": "bob", "enabled": [1], "email": 42})
        assert user.username == "bob"
        assert user.enabled is True
        assert user.email is None
        assert set(dropped) == {"enabled", "email"}

    def test_missing_identifier(self):
        with pytest.raises(EntityError):
            validate_lenient(UserEntry, {"email": "x@y.z"})

    def test_blank_identifier(self):
        with pytest.raises(EntityError):
            validate_lenient(UserEntry, {"username": "   "})

    def test_non_mapping_entry(self):
        with pytest.raises(EntityError):
            validate_lenient(UserEntry, "alice")

    def test_attribute_values_are_normalized(self):
        user, _ = validate_lenient(UserEntry, {"username": "bob", "attributes": {"dept": "R&D", "n": [1, True]}})
        assert user.attributes == {"dept": ["R&D"], "n": ["1", "true"]}


class TestEntries:
    def test_client_defaults(self):
        client = ClientEntry.model_validate({"clientId": "app"})
        assert client.enabled is True
        assert client.protocol == "openid-connect"
        assert client.standard_flow_enabled is True
        assert client.full_scope_allowed is True
        assert client.access_type == "CONFIDENTIAL"

    @pytest.mark.parametrize("flags,expected", [
        ({"publicClient": True}, "PUBLIC"),
        ({"bearerOnly": True}, "BEARER-ONLY"),
        ({"bearerOnly": True, "publicClient": True}, "BEARER-ONLY"),
    ])
    def test_client_access_type(self, flags, expected):
        assert ClientEntry.model_validate({"clientId": "app", **flags}).access_type == expected

    def test_component_config_helpers(self):
        component = ComponentEntry.model_validate({
            "providerId": "ldap",
            "config": {"connectionUrl": ["ldap://a", "ldap://b"], "importEnabled": ["false"], "batchSizeForSync": ["x"]},
        })
        assert component.first("connectionUrl") == "ldap://a"
        assert component.first("missing", "d") == "d"
        assert component.flag("importEnabled", True) is False
        assert component.number("batchSizeForSync", 1000) == 1000


class TestRealmExport:
    """Vue typée et diagnostics."""

    def test_settings_defaults(self):
        export = RealmExport({"realm": "demo"})
        settings = export.settings
        assert settings.display_name is None
        assert settings.ssl_required == "external"
        assert settings.access_token_lifespan == 300
        assert settings.sso_session_max_lifespan == 36000
        assert settings.login_with_email_allowed is True
        assert export.security.failure_factor == 30
        assert export.security.otp_policy_algorithm == "HmacSHA1"
        assert export.events.events_listeners == ["jboss-logging"]

    def test_numeric_realm_name(self):
        assert RealmExport({"realm": 42}).realm_name == "42"

    def test_bad_realm_attribute_is_reported_not_fatal(self):
        export = RealmExport({"realm": "demo", "accessTokenLifespan": "soon"})
        assert export.settings.access_token_lifespan == 300
        assert len(export.diagnostics) == 1
        assert export.diagnostics[0].skipped is False

    def test_parse_list_skips_and_records(self):
        export = RealmExport({"realm": "demo"})
        entries = export.parse_list("users", "user", [{"username": "alice"}, {"email": "x"}, "bob"], UserEntry)
        assert [index for index, _ in entries] == [0]
        assert [(d.index, d.skipped) for d in export.diagnostics] == [(1, True), (2, True)]

    def test_builtin_detection_requires_option(self):
        assert RealmExport({"realm": "demo"}).is_builtin("client", "account") is False
        export = RealmExport({"realm": "demo"}, exclude_builtin=True)
        assert export.is_builtin("client", "account") is True
        assert export.is_builtin("role", "default-roles-demo") is True
        assert export.is_builtin("client", "app1") is False


class TestWireModels:
    def test_options_accept_both_spellings(self):
        assert ConversionOptions.model_validate({"includeUsers": False}).include_users is False
        assert ConversionOptions(include_users=False).include_users is False
        assert ConversionOptions().generate_terragrunt is True

    def test_generated_file_aliases(self):
        generated = GeneratedFile.model_validate({"filePath": "demo/main.tf", "content": "x"})
        assert generated.file_path == "demo/main.tf"
        assert generated.model_dump(by_alias=True) == {"filePath": "demo/main.tf", "content": "x"}
