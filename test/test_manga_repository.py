"""本地项目存储：往返、幂等、排序与错误"""

import asyncio
import json
from datetime import timedelta

import pytest

from aimanga.exceptions import ProjectNotFoundError
from aimanga.models import (
    Character,
    CharacterReference,
    DialogueBox,
    DialogueStyle,
    GenerationStatus,
    GenerationStatusType,
    Manga,
    MangaStyle,
    Panel,
    PanelLayout,
)

from aimanga.core.credentials import DictCredentialStore
from aimanga.services.manga_editor import MangaEditorService
from aimanga.services.queue import RequestQueue

from conftest import STUB_IMAGE


def build_project():
    manga = Manga.new("Demo", style=MangaStyle.by_name("Shoujo"), creator="tester")
    hero = Character(name="Ken", description="lead")
    deleted = Character(name="Ghost")
    manga.characters.append(hero)
    manga.panels = [
        Panel(
            prompt="hero landing",
            panel_type=PanelLayout.FULL_PAGE,
            character_guide=[
                CharacterReference(character_id=hero.id, action="lands"),
                CharacterReference(character_id=deleted.id, action="watches"),
            ],
            dialogue_box=DialogueBox(character="Ken", text="Here I am", style=DialogueStyle.THINK_BUBBLE),
            sound_effect="ドン",
        ),
        Panel(prompt="crowd cheers", generation_status=GenerationStatus.failed("HTTP 500")),
        Panel(prompt="quiet night"),
    ]
    manga.metadata.tags = ["action", "demo"]
    manga.resequence()
    return manga, deleted


def test_round_trip_preserves_fields(repository):
    manga, deleted = build_project()

    async def main():
        await repository.save(manga)
        return await repository.load(str(manga.id))

    loaded = asyncio.run(main())
    assert loaded == manga
    assert loaded.panels[1].generation_status.reason == "HTTP 500"
    assert loaded.find_character(deleted.id) is None
    assert loaded.character_name(loaded.panels[0].character_guide[1].character_id) == "未知角色"


def test_save_twice_is_byte_identical(repository, projects_dir):
    manga, _ = build_project()

    def read_all():
        root = projects_dir / str(manga.id)
        return {str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}

    asyncio.run(repository.save(manga))
    first = read_all()
    asyncio.run(repository.save(manga))
    assert read_all() == first

    metadata = json.loads(first["metadata.json"])
    assert "panels" not in metadata
    assert first["metadata.json"].decode("utf-8").startswith("{\n  \"characters\"")


def test_image_copied_and_loaded_as_cached(repository, image_cache, projects_dir):
    manga, _ = build_project()

    async def main():
        key = await image_cache.store_new(STUB_IMAGE)
        panel = manga.panels[0]
        panel.generation_status = GenerationStatus.generating()
        panel.generation_status = GenerationStatus.completed()
        panel.generated_image_url = key
        await repository.save(manga)
        loaded = await repository.load(manga.id)
        return loaded, await image_cache.resolve(loaded.panels[0].generated_image_url)

    loaded, data = asyncio.run(main())
    image_path = projects_dir / str(manga.id) / "panels" / "0" / "image.png"
    assert image_path.read_bytes() == STUB_IMAGE
    assert loaded.panels[0].generated_image_url == manga.panels[0].id.hex
    assert loaded.panels[0].generation_status.type == GenerationStatusType.CACHED
    assert data == STUB_IMAGE
    assert loaded.panels[2].generation_status.type == GenerationStatusType.PENDING


def test_removed_panels_are_deleted_on_save(repository, projects_dir):
    manga, _ = build_project()
    asyncio.run(repository.save(manga))
    manga.panels.pop()
    asyncio.run(repository.save(manga))
    panels_dir = projects_dir / str(manga.id) / "panels"
    assert sorted(p.name for p in panels_dir.iterdir()) == ["0", "1"]
    assert len(asyncio.run(repository.load(manga.id)).panels) == 2


def open_editor(manga, repository, image_cache, provider):
    return MangaEditorService(
        manga,
        repository,
        provider=provider,
        credential_lookup=DictCredentialStore(),
        image_cache=image_cache,
        image_queue=RequestQueue("repo", max_concurrent=1),
    )


async def generate_two_panels(repository, image_cache, provider):
    """生成两个图片不同的画格 a、b 并保存"""
    manga = Manga.new("Demo")
    editor = open_editor(manga, repository, image_cache, provider)
    a = editor.add_panel(prompt="a")
    b = editor.add_panel(prompt="b")
    provider.payload = b"AAAA"
    await editor.generate_panel(a.id)
    provider.payload = b"BBBB"
    await editor.generate_panel(b.id)
    assert await editor.save()
    return manga


async def images_by_prompt(repository, image_cache, project_id):
    loaded = await repository.load(project_id)
    return [(p.prompt, await image_cache.resolve(p.generated_image_url)) for p in loaded.panels]


def test_reorder_after_load_keeps_images_with_panels(repository, image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0)

    async def main():
        manga = await generate_two_panels(repository, image_cache, provider)
        editor = open_editor(await repository.load(manga.id), repository, image_cache, provider)
        editor.reorder_panels([1], 0)
        assert await editor.save()
        first = await images_by_prompt(repository, image_cache, manga.id)

        # 重新加载后再次保存，引用不能指向已移动的槽位
        editor = open_editor(await repository.load(manga.id), repository, image_cache, provider)
        assert await editor.panel_image(editor.manga.panels[1].id) == b"AAAA"
        assert await editor.save()
        return first, await images_by_prompt(repository, image_cache, manga.id)

    first, second = asyncio.run(main())
    assert first == [("b", b"BBBB"), ("a", b"AAAA")]
    assert second == first


def test_remove_after_load_keeps_remaining_image(repository, image_cache, stub_provider_cls, projects_dir):
    provider = stub_provider_cls(image_cache, delay=0)

    async def main():
        manga = await generate_two_panels(repository, image_cache, provider)
        editor = open_editor(await repository.load(manga.id), repository, image_cache, provider)
        editor.remove_panel(editor.manga.panels[0].id)
        assert await editor.save()
        return manga, await images_by_prompt(repository, image_cache, manga.id)

    manga, images = asyncio.run(main())
    assert images == [("b", b"BBBB")]
    assert sorted(p.name for p in (projects_dir / str(manga.id) / "panels").iterdir()) == ["0"]


def test_wiped_cache_falls_back_to_saved_image_by_panel(repository, image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0)

    async def main():
        manga = await generate_two_panels(repository, image_cache, provider)
        loaded = await repository.load(manga.id)
        await image_cache.clear_cache()
        loaded.panels.reverse()
        loaded.resequence()
        await repository.save(loaded)
        return await images_by_prompt(repository, image_cache, manga.id)

    assert asyncio.run(main()) == [("b", b"BBBB"), ("a", b"AAAA")]


def test_non_numeric_panel_dirs_skipped(repository, projects_dir):
    manga, _ = build_project()
    asyncio.run(repository.save(manga))
    (projects_dir / str(manga.id) / "panels" / "notes").mkdir()
    loaded = asyncio.run(repository.load(manga.id))
    assert [p.order for p in loaded.panels] == [0, 1, 2]


def test_list_all_sorted_by_modified_desc(repository, projects_dir):
    older = Manga.new("older")
    newer = Manga.new("newer")
    newer.modified_date = older.modified_date + timedelta(hours=1)

    async def main():
        await repository.save(older)
        await repository.save(newer)
        (projects_dir / "broken").mkdir()
        return await repository.list_all()

    assert [m.title for m in asyncio.run(main())] == ["newer", "older"]


def test_load_and_delete_missing(repository):
    manga = Manga.new("gone")
    with pytest.raises(ProjectNotFoundError):
        asyncio.run(repository.load(manga.id))
    with pytest.raises(ProjectNotFoundError):
        asyncio.run(repository.load("../etc"))
    with pytest.raises(ProjectNotFoundError):
        asyncio.run(repository.delete(manga.id))


def test_delete_removes_all_state(repository, projects_dir):
    manga, _ = build_project()
    asyncio.run(repository.save(manga))
    asyncio.run(repository.delete(manga.id))
    assert not (projects_dir / str(manga.id)).exists()
    with pytest.raises(ProjectNotFoundError):
        asyncio.run(repository.load(manga.id))
