"""编辑编排：生成生命周期、批量生成、结构编辑与撤销/重做、保存"""

import asyncio

import pytest

from aimanga.core.credentials import DictCredentialStore
from aimanga.exceptions import AppError, FileWriteFailedError, InvalidInputError, UnauthorizedError
from aimanga.models import CharacterReference, GenerationStatus, GenerationStatusType, Manga, MangaStyle, Panel
from aimanga.repositories import MangaRepository
from aimanga.services.manga_editor import EditorEventKind, MangaEditorService
from aimanga.services.queue import RequestQueue


class MemoryRepository(MangaRepository):
    def __init__(self, fail=False):
        self.fail = fail
        self.saved = []

    async def save(self, manga):
        await asyncio.sleep(0.01)
        if self.fail:
            raise FileWriteFailedError("disk full")
        self.saved.append(manga)

    async def load(self, project_id):
        raise NotImplementedError

    async def list_all(self):
        return list(self.saved)

    async def delete(self, project_id):
        pass


def make_editor(provider=None, repository=None, **kwargs):
    manga = Manga.new("Demo", style=MangaStyle.by_name("Shounen"))
    return MangaEditorService(
        manga,
        repository or MemoryRepository(),
        provider=provider,
        credential_lookup=DictCredentialStore(),
        image_queue=RequestQueue("test", max_concurrent=4),
        **kwargs,
    )


def orders(editor):
    return [p.order for p in editor.manga.panels]


def ids(editor):
    return [p.id for p in editor.manga.panels]


# ============================================================
# 结构编辑
# ============================================================

def test_add_panel_positions_and_dense_order():
    editor = make_editor()
    a = editor.add_panel(prompt="a")
    c = editor.add_panel(prompt="c")
    b = editor.add_panel(after_id=a.id, prompt="b")
    d = editor.add_panel(after_id=Panel().id, prompt="d")
    assert ids(editor) == [a.id, b.id, c.id, d.id]
    assert orders(editor) == [0, 1, 2, 3]
    assert all(p.generation_status.type == GenerationStatusType.PENDING for p in editor.manga.panels)


def test_remove_and_reorder_keep_dense_order():
    editor = make_editor()
    panels = [editor.add_panel(prompt=str(i)) for i in range(5)]
    editor.remove_panel(panels[1].id)
    assert orders(editor) == [0, 1, 2, 3]
    assert not editor.remove_panel(panels[1].id)

    # [0, 2, 3, 4] -> 把 0 和 3 移到末尾
    editor.reorder_panels([0, 2], 4)
    assert ids(editor) == [panels[2].id, panels[4].id, panels[0].id, panels[3].id]
    assert orders(editor) == [0, 1, 2, 3]

    with pytest.raises(InvalidInputError):
        editor.reorder_panels([9], 0)


def test_undo_add_restores_exact_prior_state():
    editor = make_editor()
    editor.add_panel(prompt="a")
    editor.add_panel(prompt="b")
    before = editor.snapshot().panels

    editor.add_panel(after_id=before[0].id, prompt="new")
    assert editor.undo()
    assert editor.manga.panels == before

    assert editor.redo()
    assert [p.prompt for p in editor.manga.panels] == ["a", "new", "b"]
    assert orders(editor) == [0, 1, 2]


def test_undo_remove_reinserts_at_original_index():
    editor = make_editor()
    panels = [editor.add_panel(prompt=str(i)) for i in range(3)]
    removed = editor.snapshot().panels[1]

    editor.remove_panel(panels[1].id)
    assert editor.undo()
    assert editor.manga.panels[1] == removed
    assert orders(editor) == [0, 1, 2]

    assert editor.redo()
    assert ids(editor) == [panels[0].id, panels[2].id]


def test_undo_reorder_and_update():
    editor = make_editor()
    panels = [editor.add_panel(prompt=str(i)) for i in range(3)]
    original = ids(editor)

    editor.reorder_panels([2], 0)
    assert editor.undo()
    assert ids(editor) == original

    edited = editor.manga.panels[0].model_copy(deep=True)
    edited.prompt = "changed"
    assert editor.update_panel(edited)
    assert editor.manga.panels[0].prompt == "changed"
    assert editor.undo()
    assert editor.manga.panels[0].prompt == "0"
    assert editor.redo()
    assert editor.manga.panels[0].prompt == "changed"
    assert panels[0].id == editor.manga.panels[0].id


def test_new_edit_clears_redo():
    editor = make_editor()
    editor.add_panel()
    editor.undo()
    assert editor.can_redo
    editor.add_panel()
    assert not editor.can_redo
    assert editor.can_undo


def test_restore_panel_clamps_index():
    editor = make_editor()
    editor.add_panel(prompt="a")
    restored = Panel(prompt="restored")
    editor.restore_panel(restored, 99)
    assert editor.manga.panels[-1].id == restored.id
    with pytest.raises(InvalidInputError):
        editor.restore_panel(restored, 0)


def test_remove_character_keeps_panel_references():
    editor = make_editor()
    hero = editor.add_character("Ken")
    panel = editor.add_panel(prompt="hero landing")
    edited = panel.model_copy(deep=True)
    edited.character_guide = [CharacterReference(character_id=hero.id, action="lands")]
    editor.update_panel(edited)

    assert editor.remove_character(hero.id)
    assert editor.resolve_character(hero.id) is None
    assert editor.manga.panels[0].character_guide[0].character_id == hero.id
    with pytest.raises(InvalidInputError):
        editor.add_character("  ")


# ============================================================
# 生成
# ============================================================

def test_generate_panel_success(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache)

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        panel = editor.add_panel(prompt="hero landing")
        events = []
        editor.subscribe(lambda e: events.append(e.kind))
        await editor.generate_panel(panel.id)
        return editor, panel, events

    editor, panel, events = asyncio.run(main())
    current = editor.manga.find_panel(panel.id)
    assert current.generation_status.type == GenerationStatusType.COMPLETED
    assert current.generation_progress == 1.0
    assert image_cache.path_for(current.generated_image_url).read_bytes() == b"0123456789"
    assert events == [EditorEventKind.PANEL_UPDATED, EditorEventKind.PANEL_UPDATED]


def test_duplicate_generate_is_noop(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0.05)

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        panel = editor.add_panel(prompt="hero")
        await asyncio.gather(editor.generate_panel(panel.id), editor.generate_panel(panel.id))
        return editor.manga.find_panel(panel.id)

    panel = asyncio.run(main())
    assert len(provider.prompts) == 1
    assert panel.generation_status.type == GenerationStatusType.COMPLETED


def test_undo_remove_after_generation_finished(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0.05)

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        panel = editor.add_panel(prompt="hero")
        task = asyncio.create_task(editor.generate_panel(panel.id))
        await asyncio.sleep(0.01)
        assert editor.remove_panel(panel.id)
        await task

        assert editor.undo()
        restored = editor.manga.find_panel(panel.id)
        assert restored.generation_status.type == GenerationStatusType.COMPLETED
        assert await editor.panel_image(panel.id) == b"0123456789"

        await editor.generate_panel(panel.id)
        return editor.manga.find_panel(panel.id)

    panel = asyncio.run(main())
    assert len(provider.prompts) == 2
    assert panel.generation_status.type == GenerationStatusType.COMPLETED


def test_undo_remove_while_generation_in_flight(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0.05)

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        panel = editor.add_panel(prompt="hero")
        task = asyncio.create_task(editor.generate_panel(panel.id))
        await asyncio.sleep(0.01)
        editor.remove_panel(panel.id)
        editor.undo()
        assert editor.manga.find_panel(panel.id).generation_status.is_generating
        await task
        return editor.manga.find_panel(panel.id)

    panel = asyncio.run(main())
    assert len(provider.prompts) == 1
    assert panel.generation_status.type == GenerationStatusType.COMPLETED
    assert panel.generated_image_url


def test_restored_generating_copy_becomes_pending(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0)
    editor = make_editor(provider=provider, image_cache=image_cache)
    stale = Panel(prompt="stale")
    stale.generation_status = GenerationStatus.generating()
    editor.restore_panel(stale, 0)
    assert editor.manga.panels[0].generation_status.type == GenerationStatusType.PENDING

    asyncio.run(editor.generate_panel(stale.id))
    assert editor.manga.panels[0].generation_status.type == GenerationStatusType.COMPLETED


def test_unknown_panel_is_noop(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache)
    editor = make_editor(provider=provider, image_cache=image_cache)
    asyncio.run(editor.generate_panel(Panel().id))
    assert provider.prompts == []


def test_batch_partial_failure(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0.01, fail_markers=("panel b",))
    errors = []

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        editor.subscribe_errors(errors.append)
        a = editor.add_panel(prompt="panel a")
        b = editor.add_panel(prompt="panel b")
        c = editor.add_panel(prompt="panel c")
        await editor.generate_batch([a.id, b.id, c.id])
        return editor

    editor = asyncio.run(main())
    statuses = [p.generation_status for p in editor.manga.panels]
    assert [s.type for s in statuses] == [
        GenerationStatusType.COMPLETED,
        GenerationStatusType.FAILED,
        GenerationStatusType.COMPLETED,
    ]
    assert statuses[1].reason
    assert [p.split("\n")[0] for p in provider.prompts] == ["panel a", "panel b", "panel c"]
    assert len(errors) == 1
    assert isinstance(editor.error, AppError)


def test_retry_failed_regenerates(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache, delay=0, fail_markers=("flaky",))

    async def main():
        editor = make_editor(provider=provider, image_cache=image_cache)
        panel = editor.add_panel(prompt="flaky")
        await editor.generate_panel(panel.id)
        assert editor.manga.panels[0].generation_status.type == GenerationStatusType.FAILED
        provider.fail_markers = ()
        await editor.retry_failed()
        return editor.manga.panels[0]

    panel = asyncio.run(main())
    assert panel.generation_status.type == GenerationStatusType.COMPLETED


def test_missing_credentials_recorded_as_failure(image_cache):
    async def main():
        editor = make_editor(image_cache=image_cache)
        panel = editor.add_panel(prompt="hero")
        await editor.generate_panel(panel.id)
        return editor

    editor = asyncio.run(main())
    status = editor.manga.panels[0].generation_status
    assert status.type == GenerationStatusType.FAILED
    assert "API Key" in status.reason
    assert isinstance(editor.error, UnauthorizedError)


def test_set_provider_failure_keeps_previous(image_cache, stub_provider_cls):
    provider = stub_provider_cls(image_cache)
    editor = make_editor(provider=provider, image_cache=image_cache)
    assert not editor.set_provider("gemini")
    assert isinstance(editor.error, UnauthorizedError)
    assert editor.selected_provider_type == "stub"
    editor.clear_error()
    assert editor.error is None

    editor.credential_lookup = DictCredentialStore({"gemini_api_key": "g"})
    assert editor.set_provider("gemini")
    assert editor.selected_provider_type == "gemini"


# ============================================================
# 保存
# ============================================================

def test_save_sets_flag_and_skips_concurrent():
    repository = MemoryRepository()

    async def main():
        editor = make_editor(repository=repository)
        before = editor.manga.modified_date
        first = asyncio.ensure_future(editor.save())
        await asyncio.sleep(0)
        assert editor.is_saving
        second = await editor.save()
        assert await first
        assert not editor.is_saving
        return editor, before, second

    editor, before, second = asyncio.run(main())
    assert second is False
    assert len(repository.saved) == 1
    assert editor.manga.modified_date >= before
    assert repository.saved[0] is not editor.manga


def test_save_failure_recorded_and_project_kept():
    repository = MemoryRepository(fail=True)
    events = []

    async def main():
        editor = make_editor(repository=repository)
        editor.subscribe(lambda e: events.append(e.kind))
        editor.add_panel(prompt="keep me")
        before = editor.manga.modified_date
        ok = await editor.save()
        return editor, before, ok

    editor, before, ok = asyncio.run(main())
    assert not ok
    assert isinstance(editor.error, FileWriteFailedError)
    assert editor.manga.panels[0].prompt == "keep me"
    assert editor.manga.modified_date == before
    assert events[-1] == EditorEventKind.SAVE_FAILED


def test_auto_save_runs_and_stops():
    repository = MemoryRepository()

    async def main():
        editor = make_editor(repository=repository)
        assert editor.start_auto_save(interval=0.02)
        await asyncio.sleep(0.1)
        await editor.close()
        count = len(repository.saved)
        await asyncio.sleep(0.05)
        return count

    count = asyncio.run(main())
    assert count >= 1
    assert len(repository.saved) == count
