"""Tests for consult/cli.py."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from config.config_loader import AppConfig, DefaultsConfig, InboxConfig
from consult import cli
from consult.cli import _effective_settings, _provider_factory, _select_doctors
from tests.conftest import make_doctor


@pytest.fixture
def sample_app_config(sample_settings, sample_prompts_config) -> AppConfig:
    return AppConfig(
        settings=sample_settings,
        prompts=sample_prompts_config,
        defaults=DefaultsConfig(output_dir=Path("./output")),
        inbox=InboxConfig(dir=Path("./inbox"), archive_dir=Path("./inbox/archive")),
        doctors=[make_doctor("doc-1"), make_doctor("doc-2"), make_doctor("doc-3")],
    )


def test_select_doctors_default_is_full_roster(sample_app_config):
    assert [d.id for d in _select_doctors(sample_app_config, None)] == ["doc-1", "doc-2", "doc-3"]


def test_select_doctors_respects_argument_order(sample_app_config):
    selected = _select_doctors(sample_app_config, "doc-3, doc-1")
    assert [d.id for d in selected] == ["doc-3", "doc-1"]


def test_select_doctors_skips_unknown(sample_app_config):
    selected = _select_doctors(sample_app_config, "doc-2,doc-9,,")
    assert [d.id for d in selected] == ["doc-2"]


def test_effective_settings_defaults(sample_settings):
    settings = _effective_settings(sample_settings, None, None)
    assert settings == sample_settings
    assert settings is not sample_settings


def test_effective_settings_frontmatter_over_config(sample_settings):
    settings = _effective_settings(
        sample_settings, None, None, {"turn_order": "random", "max_rounds_without_elimination": 5}
    )
    assert settings.turn_order == "random"
    assert settings.max_rounds_without_elimination == 5


def test_effective_settings_flags_win(sample_settings):
    settings = _effective_settings(
        sample_settings, "custom", 1, {"turn_order": "random", "max_rounds_without_elimination": 5}
    )
    assert settings.turn_order == "custom"
    assert settings.max_rounds_without_elimination == 1


def test_provider_factory_carries_request_limits(sample_app_config):
    sample_app_config.defaults.max_tokens = 512
    sample_app_config.defaults.request_timeout_sec = 30.0

    provider = _provider_factory(sample_app_config)(make_doctor("doc-1"))

    assert provider._max_tokens == 512
    assert provider._timeout_sec == 30.0


def test_bad_frontmatter_turn_order_exits_cleanly(sample_app_config, monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "load_config", lambda: sample_app_config)
    case_file = tmp_path / "case.md"
    case_file.write_text(
        "---\nname: Jane Doe\nage: 54\nturn_order: sideways\n---\nChest tightness on exertion.\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        cli.main, [str(case_file), "--skip-health-check", "--output", str(tmp_path / "out")]
    )

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "turn_order" in result.output
    assert not (tmp_path / "out").exists()
