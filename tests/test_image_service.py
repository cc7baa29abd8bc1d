"""Tests for the derived-image cache tiers and background population."""

from datetime import datetime
import threading

from conftest import make_image
import cv2
import numpy as np
from PIL import Image

from core.models import MediaItem
from core.services.interfaces import CacheTier
from infrastructure import decoders
from infrastructure.decoders import decode_image
from infrastructure.image_service import BoundedImageStore, ImageService
from infrastructure.image_tasks import CancellationToken, ImageTaskRunner
from infrastructure.settings import JsonSettings


def _item(path, identity=None, is_video=False):
    return MediaItem(
        id=identity or path.name,
        path=str(path),
        capture_date=datetime(2020, 1, 1),
        is_video=is_video,
    )


class TestBoundedImageStore:
    """Tests for the per-tier bounded store."""

    def test_capacity_ceiling(self):
        store = BoundedImageStore(3)
        for i in range(10):
            store.put(f"k{i}", Image.new("RGB", (1, 1)))
            assert len(store) <= 3
        assert len(store) == 3
        assert "k9" in store

    def test_get_refreshes_recency(self):
        store = BoundedImageStore(2)
        store.put("a", Image.new("RGB", (1, 1)))
        store.put("b", Image.new("RGB", (1, 1)))
        assert store.get("a") is not None
        store.put("c", Image.new("RGB", (1, 1)))
        assert "a" in store
        assert "b" not in store


class TestDecodeImage:
    """Tests for Pillow decoding helpers."""

    def test_bounded_and_rgb(self, tmp_path):
        path = tmp_path / "a.png"
        Image.new("RGBA", (300, 120), (10, 20, 30, 128)).save(path)
        img = decode_image(str(path), 100)
        assert img.mode == "RGB"
        assert max(img.size) == 100

    def test_orientation_applied(self, tmp_path):
        path = make_image(tmp_path / "a.jpg", size=(200, 100), orientation=6)
        img = decode_image(str(path), 0)
        assert img.size == (100, 200)

    def test_unreadable_returns_none(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"nope")
        assert decode_image(str(path), 150) is None


class TestImageService:
    """Tests for ImageService population and tiers."""

    def _service(self, **cache):
        return ImageService(JsonSettings.from_dict({"cache": cache}))

    def test_miss_then_hit(self, tmp_path):
        service = self._service()
        item = _item(make_image(tmp_path / "a.jpg", size=(800, 600)))
        try:
            assert service.get(item, CacheTier.THUMBNAIL) is None
            assert service.drain(10)
            thumb = service.get(item, CacheTier.THUMBNAIL)
            assert thumb is not None
            assert max(thumb.size) <= 150
            assert service.peek(item.id, CacheTier.GRID) is None
        finally:
            service.close()

    def test_tier_sizes(self, tmp_path):
        service = self._service(grid_size=64, preview_size=128)
        item = _item(make_image(tmp_path / "a.png", size=(400, 200)))
        try:
            service.prefetch(item, CacheTier.GRID)
            service.prefetch(item, CacheTier.PREVIEW)
            assert service.drain(10)
            assert max(service.peek(item.id, CacheTier.GRID).size) == 64
            assert max(service.peek(item.id, CacheTier.PREVIEW).size) == 128
        finally:
            service.close()

    def test_capacity_per_tier(self, tmp_path):
        service = self._service(thumbnail_capacity=3)
        try:
            for i in range(6):
                service.prefetch(_item(make_image(tmp_path / f"{i}.png")), CacheTier.THUMBNAIL)
            assert service.drain(10)
            assert service.resident_count(CacheTier.THUMBNAIL) == 3
            assert service.resident_count(CacheTier.PREVIEW) == 0
        finally:
            service.close()

    def test_callback_delivery(self, tmp_path):
        service = self._service()
        item = _item(make_image(tmp_path / "a.jpg"))
        got = []
        done = threading.Event()

        def _cb(identity, tier, image):
            got.append((identity, tier, image.size))
            done.set()

        try:
            service.get(item, CacheTier.GRID, _cb, CancellationToken(item.id))
            assert done.wait(10)
            assert got == [("a.jpg", CacheTier.GRID, (64, 48))]
        finally:
            service.close()

    def test_cancelled_request_not_delivered(self, tmp_path):
        service = self._service()
        item = _item(make_image(tmp_path / "a.jpg"))
        token = CancellationToken(item.id)
        token.cancel()
        got = []
        try:
            service.get(item, CacheTier.PREVIEW, lambda *a: got.append(a), token)
            assert service.drain(10)
            assert got == []
            # the value itself is still cached for later lookups
            assert service.peek(item.id, CacheTier.PREVIEW) is not None
        finally:
            service.close()

    def test_undecodable_delivers_none(self, tmp_path):
        bad = tmp_path / "bad.jpg"
        bad.write_bytes(b"garbage")
        service = self._service()
        got = []
        try:
            service.get(_item(bad), CacheTier.THUMBNAIL, lambda *a: got.append(a))
            assert service.drain(10)
            assert got == [("bad.jpg", CacheTier.THUMBNAIL, None)]
            assert service.resident_count(CacheTier.THUMBNAIL) == 0
        finally:
            service.close()

    def test_zoom_is_capped_and_uncached(self, tmp_path):
        service = self._service(zoom_max_side=90)
        item = _item(make_image(tmp_path / "a.png", size=(300, 150)))
        got = []
        try:
            service.request_zoom(item, lambda identity, img: got.append((identity, img.size)))
            assert service.drain(10)
            assert got == [("a.png", (90, 45))]
            for tier in CacheTier:
                assert service.resident_count(tier) == 0
        finally:
            service.close()

    def test_zoom_skips_video(self, tmp_path):
        service = self._service()
        got = []
        try:
            service.request_zoom(_item(tmp_path / "c.mp4", is_video=True), lambda *a: got.append(a))
            assert service.drain(10)
            assert got == []
        finally:
            service.close()


class TestImageTaskRunner:
    """Tests for worker pool lifecycle."""

    def test_submit_after_shutdown_is_dropped(self):
        runner = ImageTaskRunner(1)
        runner.start()
        runner.shutdown()
        assert runner.submit(lambda: None) is None

    def test_drain_waits(self):
        runner = ImageTaskRunner(2)
        hits = []
        for i in range(5):
            runner.submit(hits.append, i)
        assert runner.drain(10)
        assert sorted(hits) == [0, 1, 2, 3, 4]
        runner.shutdown()


class _FakeCapture:
    """Stands in for cv2.VideoCapture and records property writes."""

    instances: list = []

    def __init__(self, path):
        self.path = path
        self.props = {}
        self.released = False
        _FakeCapture.instances.append(self)

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        return True, np.zeros((20, 40, 3), dtype=np.uint8)

    def release(self):
        self.released = True


class TestVideoFrame:
    """Tests for first-frame extraction."""

    def test_requests_auto_orientation(self, monkeypatch):
        _FakeCapture.instances = []
        monkeypatch.setattr(decoders.cv2, "VideoCapture", _FakeCapture)
        img = decoders.load_video_frame("clip.mov")
        cap = _FakeCapture.instances[0]
        assert cap.props == {cv2.CAP_PROP_ORIENTATION_AUTO: 1}
        assert cap.released
        assert img.size == (40, 20)
        assert img.mode == "RGB"

    def test_unreadable_video(self, monkeypatch):
        class _Empty(_FakeCapture):
            def read(self):
                return False, None

        monkeypatch.setattr(decoders.cv2, "VideoCapture", _Empty)
        assert decoders.load_video_frame("clip.mp4") is None
