import pytest
import structlog
from structlog.testing import capture_logs

from procurement_ai import DEFAULT_REGISTRY, ProviderConfig, ProviderFormat, ProviderRegistry, providers, select_provider


def test_registry_has_the_five_providers_with_gemini_default():
    assert sorted(DEFAULT_REGISTRY.keys()) == ["gemini", "groq", "huggingface", "openrouter", "together"]
    assert DEFAULT_REGISTRY.default.key == "gemini"


@pytest.mark.parametrize("name", ["GROQ", "Groq", " groq "])
def test_selection_is_case_insensitive(name):
    assert select_provider(name).key == "groq"


def test_unknown_name_falls_back_to_default():
    assert select_provider("nonsense").key == "gemini"


def test_unknown_name_logs_a_warning(monkeypatch):
    with capture_logs() as logs:
        # A fresh proxy binds to the capturing configuration.
        monkeypatch.setattr(providers, "log", structlog.get_logger())
        assert select_provider("Nonsense").key == "gemini"
    assert logs == [
        {"event": "llm_provider_unknown", "log_level": "warning", "requested": "nonsense", "fallback": "gemini"}
    ]


@pytest.mark.parametrize("name", [None, ""])
def test_absent_name_selects_default(name):
    assert select_provider(name).key == "gemini"


def test_formats_are_declared_per_entry():
    assert DEFAULT_REGISTRY.select("gemini").format is ProviderFormat.GENERATIVE_CONTENT
    assert DEFAULT_REGISTRY.select("huggingface").format is ProviderFormat.RAW_INFERENCE
    for key in ("groq", "together", "openrouter"):
        assert DEFAULT_REGISTRY.select(key).format is ProviderFormat.CHAT_COMPLETION


def test_custom_registry_with_synthetic_entry():
    fake = ProviderConfig(
        key="fake",
        name="Fake",
        base_url="https://fake.test/v1/chat/completions",
        model_id="m",
        key_env_name="FAKE_KEY",
        format=ProviderFormat.CHAT_COMPLETION,
    )
    registry = ProviderRegistry([fake], default_key="fake")
    assert registry.select("anything") is fake
    assert "FAKE" in registry
    assert len(registry) == 1


def test_registry_rejects_unknown_default():
    with pytest.raises(ValueError):
        ProviderRegistry([], default_key="gemini")


def test_provider_config_is_immutable():
    provider = DEFAULT_REGISTRY.select("groq")
    with pytest.raises(AttributeError):
        provider.model_id = "other"  # type: ignore[misc]
    assert provider.with_model("other").model_id == "other"
    assert provider.model_id == "llama-3.1-8b-instant"


def test_provider_config_is_hashable_and_budget_mapping_is_read_only():
    provider = DEFAULT_REGISTRY.select("groq")
    assert hash(provider) == hash(DEFAULT_REGISTRY.select("groq"))
    with pytest.raises(TypeError):
        provider.model_max_tokens["llama-3.1-8b-instant"] = 1  # type: ignore[index]
    assert DEFAULT_REGISTRY.select("groq").output_budget() == 4000


def test_budget_mapping_is_copied_from_the_caller():
    budgets = {"big": 9000}
    provider = ProviderConfig(
        key="fake",
        name="Fake",
        base_url="https://fake.test/v1/chat/completions",
        model_id="big",
        key_env_name="FAKE_KEY",
        format=ProviderFormat.CHAT_COMPLETION,
        model_max_tokens=budgets,
    )
    budgets["big"] = 1
    assert provider.output_budget() == 9000
    assert provider.with_model("small").output_budget() == 2000


@pytest.mark.parametrize(
    "model,budget",
    [
        ("llama-3.1-8b-instant", 4000),
        ("llama-3.1-70b-versatile", 8000),
        ("llama-3.3-70b-versatile", 8000),
        ("llama3-70b-8192", 8000),
        ("mixtral-8x7b-32768", 4000),
    ],
)
def test_groq_budget_follows_the_70b_family(model, budget):
    assert DEFAULT_REGISTRY.select("groq").with_model(model).output_budget() == budget
