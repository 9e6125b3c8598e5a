"""Unit tests for the JSON template store."""
import json

import pytest

from kcfixtures.core.templates import (
    CLIENTS,
    IDENTITY_PROVIDERS,
    PROFILES,
    REALMS,
    USERS,
    TemplateNotFoundError,
    TemplateSourceError,
    TemplateStore,
)


def _write(path, document):
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_load_collection_keeps_document_order(template_store):
    users = template_store.load_collection("users.json", USERS)
    assert [t.key for t in users] == ["testuser1", "testuser2", "unverified"]
    assert all(t.source_id == "users.json" for t in users)


def test_find_by_key_returns_matching_entry(template_store):
    template = template_store.find_by_key("idp-configs.json", "uaepass", IDENTITY_PROVIDERS)
    assert template.key == "uaepass"
    assert template.raw_body["providerId"] == "oidc"


def test_find_by_key_with_alternate_field(template_store):
    template = template_store.find_by_key("client-configs.json", "Medad SPA", CLIENTS, field="name")
    assert template.key == "medad-spa"


def test_find_by_key_missing_raises_not_found(template_store):
    with pytest.raises(TemplateNotFoundError):
        template_store.find_by_key("users.json", "nobody", USERS)


def test_missing_source_raises_source_error(template_store):
    with pytest.raises(TemplateSourceError):
        template_store.load_collection("does-not-exist.json", USERS)


def test_invalid_json_raises_source_error(tmp_path):
    (tmp_path / "broken.json").write_text("{ not json", encoding="utf-8")
    store = TemplateStore(tmp_path)
    with pytest.raises(TemplateSourceError):
        store.load_collection("broken.json", REALMS)


def test_absolute_source_path_is_accepted(tmp_path):
    path = _write(tmp_path / "realms.json", {"realms": [{"realm": "alpha"}]})
    store = TemplateStore()
    assert store.find_by_key(str(path), "alpha", REALMS).key == "alpha"


def test_realm_document_may_be_bare_array(tmp_path):
    _write(tmp_path / "realms.json", [{"realm": "alpha"}, {"realm": "beta"}])
    store = TemplateStore(tmp_path)
    assert [t.key for t in store.load_collection("realms.json", REALMS)] == ["alpha", "beta"]


def test_realm_document_may_be_single_object(tmp_path):
    _write(tmp_path / "realm.json", {"realm": "solo", "enabled": True})
    store = TemplateStore(tmp_path)
    assert store.find_by_key("realm.json", "solo", REALMS).raw_body["enabled"] is True


def test_document_without_array_yields_empty_collection(tmp_path):
    _write(tmp_path / "empty.json", {"somethingElse": []})
    assert TemplateStore(tmp_path).load_collection("empty.json", USERS) == []


def test_duplicate_keys_are_rejected(tmp_path):
    _write(tmp_path / "users.json", {"users": [{"username": "a"}, {"username": "a"}]})
    with pytest.raises(TemplateSourceError, match="Duplicate"):
        TemplateStore(tmp_path).load_collection("users.json", USERS)


def test_entry_without_key_field_is_rejected(tmp_path):
    _write(tmp_path / "users.json", {"users": [{"email": "a@b.c"}]})
    with pytest.raises(TemplateSourceError, match="username"):
        TemplateStore(tmp_path).load_collection("users.json", USERS)


def test_non_array_collection_is_rejected(tmp_path):
    _write(tmp_path / "users.json", {"users": {"username": "a"}})
    with pytest.raises(TemplateSourceError):
        TemplateStore(tmp_path).load_collection("users.json", USERS)


def test_load_mapping_returns_shortcuts(template_store):
    mapping = template_store.load_mapping("idp-configs.json", "idProviderMappings")
    assert mapping == {"idP1": "uaepass", "idP2": "uaepassManualPath", "idP3": "autoLinkingLevel2"}


def test_load_mapping_absent_field_is_empty(tmp_path):
    _write(tmp_path / "users.json", {"users": [{"username": "a"}]})
    assert TemplateStore(tmp_path).load_mapping("users.json", "userMappings") == {}


def test_load_mapping_must_be_object(tmp_path):
    _write(tmp_path / "users.json", {"users": [], "userMappings": ["a"]})
    with pytest.raises(TemplateSourceError):
        TemplateStore(tmp_path).load_mapping("users.json", "userMappings")


def test_find_by_mapping_key(template_store):
    template = template_store.find_by_mapping_key("realm-configs.json", "link", REALMS)
    assert template.key == "medad-allow"


def test_find_by_unknown_mapping_key(template_store):
    with pytest.raises(TemplateNotFoundError, match="realmMapping"):
        template_store.find_by_mapping_key("realm-configs.json", "nope", REALMS)


def test_profile_for_realm(template_store):
    profile = template_store.profile_for_realm("user-profile-configs.json", "medad")
    assert [a["name"] for a in profile["attributes"]] == ["mobile", "idn"]


def test_profile_for_realm_without_user_profile(tmp_path):
    _write(tmp_path / "profiles.json", {"profiles": [{"realmName": "medad"}]})
    with pytest.raises(TemplateNotFoundError):
        TemplateStore(tmp_path).profile_for_realm("profiles.json", "medad")


def test_profile_mapping_lookup(template_store):
    template = template_store.find_by_mapping_key("user-profile-configs.json", "linking", PROFILES)
    assert template.key == "medad-allow"


def test_documents_are_reparsed_on_each_lookup(tmp_path):
    path = _write(tmp_path / "users.json", {"users": [{"username": "a"}]})
    store = TemplateStore(tmp_path)
    assert store.find_by_key("users.json", "a", USERS)

    _write(path, {"users": [{"username": "b"}]})
    assert store.find_by_key("users.json", "b", USERS).key == "b"
    with pytest.raises(TemplateNotFoundError):
        store.find_by_key("users.json", "a", USERS)
