"""数据模型与画格状态机"""

import pytest
from pydantic import ValidationError

from aimanga.core.state_machine import can_transition, validate_transition
from aimanga.exceptions import InvalidStateTransitionError
from aimanga.models import (
    UNKNOWN_CHARACTER_NAME,
    Character,
    CharacterReference,
    GenerationStatus,
    Manga,
    MangaStyle,
    Panel,
)
from aimanga.services.providers.prompts import compose_panel_prompt

S = GenerationStatus


def test_failed_requires_reason():
    with pytest.raises(ValidationError):
        GenerationStatus.failed("")
    with pytest.raises(ValidationError):
        GenerationStatus.failed("   ")
    status = GenerationStatus.failed("HTTP 500")
    assert status.reason == "HTTP 500"
    assert str(status) == "failed(HTTP 500)"


def test_status_serialization():
    panel = Panel(generation_status=S.failed("timeout"))
    data = panel.model_dump(mode="json")
    assert data["generation_status"] == {"type": "failed", "payload": "timeout"}
    assert Panel.model_validate(data).generation_status == S.failed("timeout")


@pytest.mark.parametrize(
    "current, target",
    [
        (S.pending(), S.generating()),
        (S.generating(), S.completed()),
        (S.generating(), S.failed("x")),
        (S.failed("x"), S.generating()),
        (S.completed(), S.generating()),
        (S.cached(), S.generating()),
        (S.pending(), S.cached()),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    validate_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (S.generating(), S.generating()),
        (S.pending(), S.completed()),
        (S.cached(), S.failed("x")),
    ],
)
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidStateTransitionError):
        validate_transition(current, target)


def test_new_manga_uses_style_genre_and_pages():
    style = MangaStyle.by_name("shoujo")
    manga = Manga.new("Demo", style=style)
    assert manga.metadata.genre == style.genre
    assert manga.metadata.style.name == "Shoujo"
    manga.panels = [Panel() for _ in range(5)]
    manga.resequence()
    assert [p.order for p in manga.panels] == [0, 1, 2, 3, 4]
    assert manga.total_pages == 2


def test_dangling_character_reference_composes_as_unknown():
    hero = Character(name="Ken")
    ghost = CharacterReference(character_id=Character(name="gone").id, action="waves")
    panel = Panel(
        prompt="hero landing",
        character_guide=[CharacterReference(character_id=hero.id, action="lands", expression="angry"), ghost],
        sound_effect="BOOM",
    )
    manga = Manga.new("Demo")
    manga.characters.append(hero)

    prompt = compose_panel_prompt(panel, manga)
    lines = prompt.splitlines()
    assert lines[0] == "hero landing"
    assert lines[1] == "Ken: lands, angry, center"
    assert lines[2] == f"{UNKNOWN_CHARACTER_NAME}: waves, center"
    assert "massive explosion" in lines[3]


def test_settings_reload_reads_environment(monkeypatch, tmp_path):
    from aimanga.core import config

    monkeypatch.setenv("DEFAULT_PROVIDER", " Gemini ")
    monkeypatch.setenv("LOGGING_LEVEL", "debug")
    monkeypatch.setenv("AIMANGA_STORAGE_DIR", str(tmp_path))
    try:
        reloaded = config.reload_settings()
        assert config.settings is reloaded
        assert reloaded.default_provider == "gemini"
        assert reloaded.logging_level == "DEBUG"
        assert reloaded.image_cache_dir == tmp_path / "cache" / "AIMangaCreator"
        assert reloaded.projects_root == tmp_path / "projects"
    finally:
        monkeypatch.undo()
        config.reload_settings()


def test_logging_config_keeps_stdout_for_cli_output():
    from aimanga.core.logging_config import QUIET_LOGGERS, get_logging_config

    cfg = get_logging_config("DEBUG")
    assert cfg["handlers"]["console"]["stream"] == "ext://sys.stderr"
    assert cfg["handlers"]["console"]["level"] == "DEBUG"
    assert cfg["handlers"]["file"]["class"] == "logging.handlers.RotatingFileHandler"
    assert cfg["loggers"]["aimanga"]["propagate"] is False
    for name in QUIET_LOGGERS:
        assert cfg["loggers"][name]["level"] == "WARNING"
