from __future__ import annotations

from pathlib import Path

import pytest

from shopmirror import config as config_module
from shopmirror.config import DEFAULT_STATIC_ENDPOINTS, MirrorConfig, load_config


def test_load_config_without_file_returns_defaults() -> None:
    cfg = load_config(None)

    assert cfg.regions == ["US"]
    assert cfg.languages == ["en"]
    assert cfg.endpoints == list(DEFAULT_STATIC_ENDPOINTS)
    assert cfg.services.shop_id == 1
    assert cfg.services.cert is None
    assert cfg.fetch.retry_delay_seconds == 10.0
    assert cfg.fetch.document_max_attempts is None
    assert cfg.fetch.resource_max_attempts == 6


def test_load_config_reads_all_tables(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        """
[mirror]
regions = ["us", " de "]
languages = ["EN", "de"]
endpoints = ["news", "genres"]
output_dir = "archive"
fetch_videos = true

[services]
shop_id = 2
omit_ninja = true

[fetch]
retry_delay_seconds = 2.5
resource_max_attempts = 3
min_interval_seconds = 0.5
""",
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.regions == ["US", "DE"]
    assert cfg.languages == ["en", "de"]
    assert cfg.endpoints == ["news", "genres"]
    assert cfg.output_dir == Path("archive")
    assert cfg.fetch_videos is True
    assert cfg.services.shop_id == 2
    assert cfg.services.omit_ninja is True
    assert cfg.fetch.retry_delay_seconds == 2.5
    assert cfg.fetch.resource_max_attempts == 3
    assert cfg.fetch.min_interval_seconds == 0.5
    assert cfg.config_path == path


def test_load_config_missing_file_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    lines: list[str] = []
    monkeypatch.setattr(config_module.console, "print", lambda msg, *_a, **_k: lines.append(str(msg)))

    with pytest.raises(SystemExit) as exc_info:
        load_config(tmp_path / "nope.toml")

    assert exc_info.value.code == 1
    assert any("Configuration file not found" in line for line in lines)


def test_load_config_rejects_unknown_endpoint(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.toml"
    path.write_text('[mirror]\nendpoints = ["news", "weather"]\n', encoding="utf-8")
    lines: list[str] = []
    monkeypatch.setattr(config_module.console, "print", lambda msg, *_a, **_k: lines.append(str(msg)))

    with pytest.raises(SystemExit):
        load_config(path)

    assert any("weather" in line for line in lines)


def test_attempt_budgets_must_be_positive() -> None:
    with pytest.raises(ValueError):
        config_module.FetchConfig(resource_max_attempts=0)


def test_mirror_config_drops_blank_locale_codes() -> None:
    cfg = MirrorConfig(regions=["jp", ""], languages=["  ", "JA"])

    assert cfg.regions == ["JP"]
    assert cfg.languages == ["ja"]
