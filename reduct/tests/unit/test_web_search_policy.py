from __future__ import annotations

from reduct.services.ai.web_search import DEFAULT_ENABLED_PROVIDERS, WebSearchPolicy, normalize_policy


def test_empty_input_yields_defaults() -> None:
    assert normalize_policy(None) == WebSearchPolicy()


def test_numeric_fields_are_clamped_and_typed() -> None:
    policy = normalize_policy(
        {
            "max_search_calls": 99,
            "max_total_snippet_tokens": 10,
            "timeout_ms": "5000",
            "retry_max": True,
            "retry_base_delay_ms": 150.7,
        }
    )
    assert policy.max_search_calls == 10
    assert policy.max_total_snippet_tokens == 200
    assert policy.timeout_ms == 10000
    assert policy.retry_max == 2
    assert policy.retry_base_delay_ms == 150


def test_providers_are_deduplicated_and_lowercased() -> None:
    policy = normalize_policy({"enabled_providers": [" OpenAI", "openai", 3, "Google"], "provider": " serper "})
    assert policy.enabled_providers == ["openai", "google"]
    assert policy.provider == "serper"
    assert normalize_policy({"enabled_providers": []}).enabled_providers == DEFAULT_ENABLED_PROVIDERS


def test_boolean_flags_only_accept_booleans() -> None:
    policy = normalize_policy({"enabled": "false", "default_allowed": True})
    assert policy.enabled is True
    assert policy.default_allowed is True


def test_default_provider_is_trimmed_but_keeps_case() -> None:
    assert normalize_policy({"provider": "  Serper  "}).provider == "Serper"
    assert normalize_policy({"provider": "   "}).provider == "serper"
