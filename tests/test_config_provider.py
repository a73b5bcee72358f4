import pytest

from product_match.config import AdminConfig, boot_admin_config
from product_match.config_provider import ConfigProvider
from product_match.errors import ConfigValidationError, ErrorCode


def test_defaults():
    config = ConfigProvider(AdminConfig()).get_config()
    assert config.weights.text == 0.35
    assert config.match_bands.high == 0.70
    assert config.candidate_top_n == 60
    assert config.llm_rerank_top_m == 20
    assert config.enable_llm_rerank is True
    assert config.timeouts_ms.total == 30_000


def test_partial_update_is_deep_merged():
    provider = ConfigProvider(AdminConfig())
    updated = provider.update_config({"weights": {"text": 0.5}, "enable_llm_rerank": False})

    assert updated.weights.text == 0.5
    assert updated.weights.category == 0.15
    assert updated.enable_llm_rerank is False
    assert provider.get_config() == updated


@pytest.mark.parametrize(
    "patch",
    [
        {"unknown": 1},
        {"weights": {"colour": 0.1}},
        {"weights": {"text": 1.5}},
        {"candidate_top_n": 0},
        {"match_bands": {"high": 0.3, "medium": 0.6}},
        {"timeouts_ms": {"rerank": 10}},
        {"weights": 0.5},
    ],
)
def test_invalid_updates_are_rejected_atomically(patch):
    provider = ConfigProvider(AdminConfig())
    before = provider.get_config()

    with pytest.raises(ConfigValidationError) as info:
        provider.update_config(patch)

    assert info.value.code == ErrorCode.VALIDATION_ERROR
    assert provider.get_config() == before


def test_get_config_returns_a_copy():
    provider = ConfigProvider(AdminConfig())
    config = provider.get_config()
    config.candidate_top_n = 5
    config.weights.text = 0.0
    assert provider.get_config().candidate_top_n == 60
    assert provider.get_config().weights.text == 0.35


def test_reset_restores_boot_defaults():
    provider = ConfigProvider(AdminConfig())
    provider.update_config({"llm_rerank_top_m": 5})
    assert provider.reset_to_defaults().llm_rerank_top_m == 20
    assert provider.get_config().llm_rerank_top_m == 20


def test_boot_defaults_read_stage_timeouts_from_env(monkeypatch):
    monkeypatch.setenv("PM_RERANK_TIMEOUT_MS", "8000")
    monkeypatch.setenv("PM_VISION_TIMEOUT_MS", "not-a-number")

    config = boot_admin_config()
    assert config.timeouts_ms.rerank == 8000
    assert config.timeouts_ms.vision == 15_000

    provider = ConfigProvider()
    provider.update_config({"timeouts_ms": {"rerank": 500}})
    assert provider.reset_to_defaults().timeouts_ms.rerank == 8000
