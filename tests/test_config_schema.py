import pytest

from jupytutor.domain.errors import ConfigValidationError
from jupytutor.domain.models.config import PluginConfig, Rule, parse_plugin_config


def test_missing_document_gives_defaults():
    config = parse_plugin_config(None)

    assert config.plugin_enabled is False
    assert str(config.api.base_url) == "http://localhost:3000/"
    assert len(config.rules) == 4
    assert config.remote_context_gathering.enabled is True
    assert config.remote_context_gathering.whitelist == ["inferentialthinking.com"]
    assert config.remote_context_gathering.blacklist == ["data8.org", "berkeley.edu", "gradescope.com"]
    assert config.remote_context_gathering.jupyterbook.urls == ["inferentialthinking.com"]
    assert config.remote_context_gathering.jupyterbook.link_expansion is True
    assert config.preferences.proactive_enabled is True


def test_partial_document_is_filled_from_defaults():
    config = parse_plugin_config({
        "pluginEnabled": True,
        "remoteContextGathering": {"whitelist": None, "jupyterbook": {"linkExpansion": False}},
    })

    assert config.plugin_enabled is True
    assert config.remote_context_gathering.whitelist is None
    assert config.remote_context_gathering.jupyterbook.link_expansion is False
    assert config.remote_context_gathering.jupyterbook.urls == ["inferentialthinking.com"]


def test_explicit_rules_replace_the_defaults():
    config = parse_plugin_config({"rules": [{"_comment": "only", "config": {"chatEnabled": True}}]})

    assert len(config.rules) == 1
    assert config.rules[0].comment == "only"
    assert config.rules[0].when is None


@pytest.mark.parametrize("document", [
    {"pluginEnabled": "yes"},
    {"api": {"baseURL": "not a url"}},
    {"rules": [{"when": {"cellType": 3}}]},
    {"rules": {"config": {}}},
    {"remoteContextGathering": {"blacklist": "data8.org"}},
    {"preferences": {"proactiveEnabled": None}},
    ["pluginEnabled"],
])
def test_malformed_documents_fail_as_a_whole(document):
    with pytest.raises(ConfigValidationError) as exc_info:
        parse_plugin_config(document)

    assert exc_info.value.errors


def test_unknown_fields_are_ignored():
    config = parse_plugin_config({"pluginEnabled": True, "somethingNew": 1})
    assert config.plugin_enabled is True


def test_metadata_round_trip_keeps_camel_case_keys():
    document = {
        "pluginEnabled": True,
        "rules": [
            {
                "_comment": "errors",
                "when": {"AND": [{"cellType": {"is": "code"}}, {"hasError": True}]},
                "config": {"chatProactive": True},
            },
            {
                "when": {"nearbyCell": {"relativePosition": -1, "matches": {"tags": {"any": "q"}}}},
                "config": {"instructorNote": "{{prior_notes}}!"},
            },
        ],
    }
    metadata = parse_plugin_config(document).to_metadata()

    assert metadata["pluginEnabled"] is True
    assert metadata["api"] == {"baseURL": "http://localhost:3000/"}
    assert metadata["remoteContextGathering"]["jupyterbook"]["linkExpansion"] is True
    assert metadata["rules"] == document["rules"]
    assert parse_plugin_config(metadata) == parse_plugin_config(document)


def test_rule_metadata_omits_unset_fields():
    rule = Rule.model_validate({"config": {"chatEnabled": False}})
    assert rule.to_metadata() == {"config": {"chatEnabled": False}}


def test_config_equality_is_structural():
    assert PluginConfig() == PluginConfig()
    assert PluginConfig(plugin_enabled=True) != PluginConfig()
