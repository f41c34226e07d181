from pathlib import Path

import pytest

from payee_vetting import config


def test_rules_path_env_override(store_path: Path) -> None:
    assert config.vetted_rules_path() == store_path.resolve()


def test_rules_path_defaults_to_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PAYEE_VETTING_RULES_PATH")
    monkeypatch.chdir(tmp_path)
    assert config.vetted_rules_path() == (tmp_path / "vetted-rules.json").resolve()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, 5), ("8", 8), ("0", 5), ("-3", 5), ("lots", 5), ("500", 32)],
)
def test_llm_concurrency(raw, expected, monkeypatch: pytest.MonkeyPatch) -> None:
    if raw is None:
        monkeypatch.delenv("PAYEE_VETTING_LLM_CONCURRENCY", raising=False)
    else:
        monkeypatch.setenv("PAYEE_VETTING_LLM_CONCURRENCY", raw)
    assert config.llm_concurrency() == expected


def test_model_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAYEE_VETTING_MODEL", "  ")
    monkeypatch.setenv("PAYEE_VETTING_REVIEW_MODEL", "big-model")
    assert config.model_name() == config.DEFAULT_MODEL
    assert config.review_model_name() == "big-model"
