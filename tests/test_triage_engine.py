"""Tests for TriageEngine: commands, counts, undo, moves and session resume."""

from datetime import datetime, timedelta
import json
from pathlib import Path

import pytest

from app.viewmodels.triage_vm import TriageEngine
from core.models import Decision, GalleryFilter
from core.services.interfaces import CacheTier, MediaMetadata
from infrastructure.scanner import MediaScanner
from infrastructure.session_store import SessionStore, load_session, session_path

NAMES = ("a.jpg", "b.jpg", "c.jpg", "d.jpg", "e.jpg")


def _dated(path):
    """Capture date derived from the file name so a..e sort in order."""
    return MediaMetadata(datetime(2020, 1, 1) + timedelta(days=ord(Path(path).name[0])))


def _touch(path, content=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _engine(root, cache, debounce_ms=60_000):
    engine = TriageEngine(
        root,
        scanner=MediaScanner(root, max_workers=2, extractor=_dated),
        session_store=SessionStore(root, debounce_ms=debounce_ms),
        image_cache=cache,
    )
    engine.start_scan()
    return engine


def _check_counts(engine):
    decisions = [it.decision for it in engine.items]
    assert engine.kept_count == decisions.count(Decision.KEPT)
    assert engine.rejected_count == decisions.count(Decision.REJECTED)
    assert engine.kept_count + engine.rejected_count + engine.remaining_count == engine.total_count


@pytest.fixture
def shoot(media_root):
    for name in NAMES:
        _touch(media_root / name, name.encode())
    return media_root


@pytest.fixture
def engine(shoot, fake_cache):
    eng = _engine(shoot, fake_cache)
    yield eng
    eng.close()


class TestLoading:
    """Tests for scanning and initial state."""

    def test_initial_state(self, engine, fake_cache):
        assert [it.id for it in engine.items] == list(NAMES)
        assert engine.current_index == 0
        assert engine.current_item.id == "a.jpg"
        assert not engine.is_loading
        assert engine.remaining_count == 5
        assert engine.scan_progress.processed == 5
        assert fake_cache.prefetched == ["b.jpg", "c.jpg"]

    def test_scan_events(self, shoot, fake_cache):
        kinds = []
        eng = TriageEngine(
            shoot,
            scanner=MediaScanner(shoot, extractor=_dated),
            session_store=SessionStore(shoot, debounce_ms=60_000),
            image_cache=fake_cache,
        )
        eng.subscribe(lambda change: kinds.append(change.kind))
        eng.start_scan()
        assert kinds[0] == "scan_progress"
        assert kinds[-1] == "scan_finished"
        eng.close()

    def test_empty_folder(self, media_root, fake_cache):
        eng = _engine(media_root, fake_cache)
        assert eng.current_item is None
        eng.keep_current()
        eng.reject_current()
        eng.undo()
        eng.go_to_next()
        assert eng.total_count == 0
        assert eng.undo_depth == 0
        eng.close()


class TestNavigation:
    """Tests for cursor movement under filters."""

    def test_next_and_previous_clamp(self, engine):
        engine.go_to_previous()
        assert engine.current_index == 0
        engine.go_to(4)
        engine.go_to_next()
        assert engine.current_index == 4
        engine.go_to(99)
        assert engine.current_index == 4

    def test_filtered_navigation(self, engine):
        engine.keep_current()  # a kept -> b
        engine.reject_current()  # b rejected -> c
        engine.keep_current()  # c kept -> d
        engine.set_filter(GalleryFilter.KEPT)
        engine.go_to(0)
        engine.go_to_next()
        assert engine.current_index == 2
        engine.go_to_next()
        assert engine.current_index == 2
        assert engine.filter_count(GalleryFilter.KEPT) == 2
        assert [i for i, _ in engine.indices_for_filter(GalleryFilter.REJECTED)] == [1]

    def test_actions_advance_within_filter(self, engine):
        engine.go_to(1)
        engine.keep_current()  # b kept -> c
        engine.set_filter(GalleryFilter.UNDECIDED)
        engine.go_to(0)
        engine.reject_current()  # a rejected, next undecided is c
        assert engine.current_index == 2

    def test_cursor_prefetches_neighbours(self, engine, fake_cache):
        fake_cache.prefetched.clear()
        engine.go_to(2)
        assert fake_cache.prefetched == ["b.jpg", "d.jpg", "e.jpg"]

    def test_preview_cancelled_when_cursor_moves(self, engine, fake_cache):
        assert engine.request_preview(CacheTier.PREVIEW) is None
        _, tier, token = fake_cache.requests[-1]
        assert tier is CacheTier.PREVIEW
        assert not token.cancelled
        engine.go_to_next()
        assert token.cancelled
        engine.request_preview(CacheTier.GRID)
        ident, _, fresh = fake_cache.requests[-1]
        assert ident == "b.jpg"
        assert not fresh.cancelled


class TestTriageActions:
    """Tests for keep, reject and rating."""

    def test_reject_moves_into_reject_folder(self, engine, shoot):
        engine.reject_current()
        item = engine.item_by_id("a.jpg")
        assert item.decision is Decision.REJECTED
        assert Path(item.path) == shoot / "_rejected" / "a.jpg"
        assert not (shoot / "a.jpg").exists()
        assert engine.current_index == 1
        assert engine.rejected_count == 1
        assert engine.remaining_count == 4

    def test_keep_leaves_file_in_place(self, engine, shoot):
        engine.keep_current()
        item = engine.item_by_id("a.jpg")
        assert item.decision is Decision.KEPT
        assert Path(item.path) == shoot / "a.jpg"
        assert engine.kept_count == 1

    def test_keep_last_item_stays(self, engine):
        engine.go_to(4)
        engine.keep_current()
        assert engine.current_index == 4

    def test_identity_stable_across_moves(self, engine, shoot):
        engine.reject_current()
        engine.go_to(0)
        engine.keep_current()
        item = engine.items[0]
        assert item.id == "a.jpg"
        assert engine.item_by_id("a.jpg") is item
        assert Path(item.path) == shoot / "a.jpg"
        assert not item.is_in_rejected_folder
        assert item.decision is Decision.KEPT

    def test_rating_only_for_kept(self, engine):
        engine.set_rating(3)
        assert engine.current_item.star_rating == 0
        assert engine.undo_depth == 0

        engine.keep_current()
        engine.go_to(0)
        engine.set_rating(9)
        assert engine.current_item.star_rating == 5
        engine.set_rating(-2)
        assert engine.current_item.star_rating == 0

    def test_reject_collision_gets_suffix(self, engine, shoot):
        _touch(shoot / "_rejected" / "a.jpg", b"older")
        engine.reject_current()
        item = engine.item_by_id("a.jpg")
        assert Path(item.path).name == "a_1.jpg"
        assert (shoot / "_rejected" / "a.jpg").read_bytes() == b"older"

        engine.undo()
        assert Path(item.path) == shoot / "a.jpg"
        assert (shoot / "a.jpg").read_bytes() == b"a.jpg"

    def test_move_failure_keeps_decision(self, shoot, fake_cache):
        _touch(shoot / "_rejected", b"in the way")
        eng = _engine(shoot, fake_cache)
        events = []
        eng.subscribe(events.append)

        eng.reject_current()
        item = eng.item_by_id("a.jpg")
        assert item.decision is Decision.REJECTED
        assert item.move_error
        assert Path(item.path) == shoot / "a.jpg"
        assert (shoot / "a.jpg").exists()
        assert eng.rejected_count == 1
        failed = [e for e in events if e.kind == "move_failed"]
        assert len(failed) == 1
        assert failed[0].identity == "a.jpg"

        eng.undo()
        assert item.decision is Decision.UNDECIDED
        assert (shoot / "a.jpg").exists()
        eng.close()

    def test_listener_errors_do_not_break_commands(self, engine):
        def _bad(_change):
            raise RuntimeError("listener")

        engine.subscribe(_bad)
        engine.keep_current()
        assert engine.kept_count == 1
        engine.unsubscribe(_bad)


class TestUndo:
    """Tests for undo semantics."""

    def test_undo_reject_restores_file_and_decision(self, engine, shoot):
        engine.reject_current()
        engine.undo()
        item = engine.item_by_id("a.jpg")
        assert item.decision is Decision.UNDECIDED
        assert Path(item.path) == shoot / "a.jpg"
        assert (shoot / "a.jpg").exists()
        assert engine.current_index == 0
        assert engine.rejected_count == 0

    def test_undo_rating(self, engine):
        engine.keep_current()
        engine.go_to(0)
        engine.set_rating(4)
        engine.set_rating(2)
        engine.undo()
        assert engine.items[0].star_rating == 4
        engine.undo()
        assert engine.items[0].star_rating == 0
        assert engine.items[0].decision is Decision.KEPT
        engine.undo()
        assert engine.items[0].decision is Decision.UNDECIDED

    def test_undo_moves_cursor_to_item(self, engine):
        events = []
        engine.subscribe(events.append)
        engine.reject_current()
        engine.go_to(3)
        engine.undo()
        assert engine.current_index == 0
        assert any(e.kind == "undo" and e.identity == "a.jpg" for e in events)

    def test_undo_keep_from_reject_folder(self, engine, shoot):
        engine.reject_current()
        engine.go_to(0)
        engine.keep_current()
        assert (shoot / "a.jpg").exists()

        engine.undo()
        item = engine.item_by_id("a.jpg")
        assert item.decision is Decision.REJECTED
        assert Path(item.path) == shoot / "_rejected" / "a.jpg"
        assert item.is_in_rejected_folder

    def test_history_is_bounded(self, engine):
        engine.keep_current()
        engine.go_to(0)
        for n in range(50):
            engine.set_rating(n % 5 + 1)
        assert engine.undo_depth == 50

        for _ in range(51):
            engine.undo()
        item = engine.items[0]
        assert engine.undo_depth == 0
        # the oldest action (the keep) fell off the history
        assert item.decision is Decision.KEPT
        assert item.star_rating == 0

    def test_empty_undo_is_noop(self, engine):
        engine.undo()
        assert engine.current_index == 0
        assert engine.remaining_count == 5

    def test_counts_hold_through_mixed_sequence(self, engine):
        steps = [
            engine.keep_current,
            engine.reject_current,
            engine.undo,
            engine.reject_current,
            engine.keep_current,
            lambda: engine.go_to(0),
            engine.reject_current,
            engine.undo,
            engine.undo,
            engine.reject_current,
            engine.reject_current,
            engine.undo,
        ]
        for step in steps:
            step()
            _check_counts(engine)


class TestSessionResume:
    """Tests for persistence across engine instances."""

    def test_close_flushes_and_resumes(self, shoot, fake_cache):
        eng = _engine(shoot, fake_cache)
        eng.reject_current()
        eng.keep_current()
        eng.go_to(0)
        eng.go_to(3)
        eng.close()
        assert fake_cache.closed

        record = load_session(shoot)
        assert record.current_position == 3
        assert record.file_states["a.jpg"].decision is Decision.REJECTED
        assert record.file_states["b.jpg"].decision is Decision.KEPT

        again = _engine(shoot, fake_cache)
        assert again.current_index == 3
        assert again.item_by_id("a.jpg").decision is Decision.REJECTED
        assert again.item_by_id("a.jpg").is_in_rejected_folder
        assert again.kept_count == 1
        assert again.rejected_count == 1
        assert again.undo_depth == 0
        again.close()

    def test_resume_position_clamped(self, shoot, fake_cache):
        session_path(shoot).write_text(
            json.dumps({"currentPosition": 99, "fileStates": {}}), encoding="utf-8"
        )
        eng = _engine(shoot, fake_cache)
        assert eng.current_index == 4
        eng.close()

    def test_unknown_session_entries_ignored(self, shoot, fake_cache):
        session_path(shoot).write_text(
            json.dumps(
                {
                    "currentPosition": 1,
                    "fileStates": {
                        "gone.jpg": {"decision": "kept", "starRating": 2},
                        "c.jpg": {"decision": "kept", "starRating": 3},
                    },
                }
            ),
            encoding="utf-8",
        )
        eng = _engine(shoot, fake_cache)
        assert eng.kept_count == 1
        assert eng.item_by_id("c.jpg").star_rating == 3
        eng.close()


class TestSameNameInRejectFolder:
    """Tests for a root file sharing its name with a file already in `_rejected/`."""

    def test_undo_targets_the_acted_on_copy(self, shoot, fake_cache):
        _touch(shoot / "_rejected" / "a.jpg", b"older")
        eng = _engine(shoot, fake_cache)
        # ties sort by path, so the `_rejected/` copy comes first
        assert [Path(it.path).parent.name for it in eng.items[:2]] == ["_rejected", "shoot"]
        eng.go_to(1)
        eng.reject_current()
        root_copy = eng.items[1]
        assert Path(root_copy.path).name == "a_1.jpg"

        eng.undo()
        assert root_copy.decision is Decision.UNDECIDED
        assert Path(root_copy.path) == shoot / "a.jpg"
        assert (shoot / "a.jpg").read_bytes() == b"a.jpg"
        assert eng.items[0].decision is Decision.UNDECIDED
        assert Path(eng.items[0].path) == shoot / "_rejected" / "a.jpg"
        assert eng.current_index == 1
        _check_counts(eng)
        eng.close()

    def test_renamed_reject_survives_restart(self, shoot, fake_cache):
        eng = _engine(shoot, fake_cache)
        _touch(shoot / "_rejected" / "a.jpg", b"older")
        eng.reject_current()
        eng.close()

        again = _engine(shoot, fake_cache)
        renamed = again.item_by_id("a_1.jpg")
        assert renamed.decision is Decision.REJECTED
        assert renamed.is_in_rejected_folder
        again.close()

    def test_undone_rename_leaves_no_stale_entry(self, shoot, fake_cache):
        eng = _engine(shoot, fake_cache)
        _touch(shoot / "_rejected" / "a.jpg", b"older")
        eng.reject_current()
        eng.undo()
        eng.close()

        states = load_session(shoot).file_states
        assert "a_1.jpg" not in states
        assert states["a.jpg"].decision is Decision.UNDECIDED
