"""
Unit tests for guide export.

Tests JSON export with and without inline images, ZIP bundle layout and
image naming, and the file-writing wrappers.
"""

import base64
import io
import json
import zipfile
from unittest.mock import patch

import pytest
from PIL import Image

from guideviewer.guides.models import Guide, Step
from guideviewer.interchange.exporter import (
    GuideExporter,
    bundle_image_name,
    extension_for_mime_type,
)
from guideviewer.interchange.schema import GuideNotFoundError
from guideviewer.storage.db import GuideDatabase
from guideviewer.storage.images import ImageStore


def make_image(fmt: str = "PNG", color="blue") -> bytes:
    """Create encoded image bytes with Pillow."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def stores():
    """Create a database and image store sharing one in-memory database."""
    db = GuideDatabase(":memory:")
    db.initialize()
    images = ImageStore(db)
    images.initialize()
    return db, images


@pytest.fixture
def exporter(stores):
    """Create an exporter over the test stores."""
    db, images = stores
    return GuideExporter(db, images)


class TestHelpers:
    """Tests for bundle naming helpers."""

    @pytest.mark.parametrize(
        "mime,ext",
        [
            ("image/png", ".png"),
            ("image/jpeg", ".jpg"),
            ("image/jpg", ".jpg"),
            ("image/bmp", ".bmp"),
            ("image/gif", ".gif"),
            ("IMAGE/JPEG", ".jpg"),
            ("image/webp", ".png"),
            (None, ".png"),
        ],
    )
    def test_extension_for_mime_type(self, mime, ext):
        """Test MIME type to extension mapping with .png fallback."""
        assert extension_for_mime_type(mime) == ext

    def test_bundle_image_name(self):
        """Test bundle entry naming."""
        assert bundle_image_name(2, 3, ".jpg") == "images/step_2_image_3.jpg"


class TestExportGuide:
    """Tests for single-guide JSON export."""

    def test_export_guide_without_images(self, stores, exporter):
        """Test exporting a guide with image maps omitted."""
        db, _ = stores
        guide = Guide(
            title="Network Setup",
            description="desc",
            category="Networking",
            estimated_minutes=15,
            steps=[Step(order=1, title="One", content="Do it", image_ids=["img_x"])],
        )
        db.insert_guide(guide)

        data = json.loads(exporter.export_guide(guide.id, include_images=False))

        assert data["version"] == "1.0"
        assert data["guide"]["id"] == guide.id
        assert data["guide"]["title"] == "Network Setup"
        step = data["guide"]["steps"][0]
        assert step["content"] == "Do it"
        assert "imagesBase64" not in step
        assert "imageFileNames" not in step

    def test_export_guide_inlines_images(self, stores, exporter):
        """Test that images are inlined as base64 keyed by image id."""
        db, images = stores
        png = make_image()
        image_id = images.upload(io.BytesIO(png), "a.png")
        guide = Guide(title="G", steps=[Step(order=1, image_ids=[image_id])])
        db.insert_guide(guide)

        data = json.loads(exporter.export_guide(guide.id))

        inline = data["guide"]["steps"][0]["imagesBase64"]
        assert base64.b64decode(inline[image_id]) == png

    def test_export_guide_skips_missing_images(self, stores, exporter):
        """Test that missing images are left out of the export."""
        db, _ = stores
        guide = Guide(title="G", steps=[Step(order=1, image_ids=["img_gone"])])
        db.insert_guide(guide)

        data = json.loads(exporter.export_guide(guide.id))
        assert data["guide"]["steps"][0]["imagesBase64"] == {}

    def test_export_missing_guide_raises(self, exporter):
        """Test exporting an unknown guide."""
        with pytest.raises(GuideNotFoundError):
            exporter.export_guide("missing")

    def test_export_empty_id_raises(self, exporter):
        """Test that an empty id is a caller error."""
        with pytest.raises(ValueError):
            exporter.export_guide("")


class TestExportAllGuides:
    """Tests for multiple-guide JSON export."""

    def test_export_all_guides(self, stores, exporter):
        """Test guideCount matches the guides in the store."""
        db, _ = stores
        db.insert_guide(Guide(title="A"))
        db.insert_guide(Guide(title="B"))

        data = json.loads(exporter.export_all_guides())
        assert data["guideCount"] == 2
        assert [g["title"] for g in data["guides"]] == ["A", "B"]

    def test_export_all_guides_empty_store(self, exporter):
        """Test exporting an empty store."""
        data = json.loads(exporter.export_all_guides())
        assert data["guideCount"] == 0
        assert data["guides"] == []


class TestExportToFile:
    """Tests for the file-writing wrappers."""

    def test_export_guide_to_file(self, stores, exporter, tmp_path):
        """Test writing a guide export to disk."""
        db, _ = stores
        guide_id = db.insert_guide(Guide(title="G"))
        target = tmp_path / "guide.json"

        assert exporter.export_guide_to_file(guide_id, target) is True
        assert json.loads(target.read_text(encoding="utf-8"))["guide"]["title"] == "G"

    def test_export_missing_guide_to_file_returns_false(self, exporter, tmp_path):
        """Test a missing guide yields False, not an exception."""
        target = tmp_path / "guide.json"
        assert exporter.export_guide_to_file("missing", target) is False
        assert not target.exists()

    def test_export_to_unwritable_path_returns_false(self, stores, exporter, tmp_path):
        """Test an I/O failure yields False."""
        db, _ = stores
        guide_id = db.insert_guide(Guide(title="G"))
        target = tmp_path / "no-such-dir" / "guide.json"
        assert exporter.export_guide_to_file(guide_id, target) is False

    def test_export_all_guides_to_file(self, stores, exporter, tmp_path):
        """Test writing all guides to disk."""
        db, _ = stores
        db.insert_guide(Guide(title="G"))
        target = tmp_path / "all.json"

        assert exporter.export_all_guides_to_file(target) is True
        assert json.loads(target.read_text(encoding="utf-8"))["guideCount"] == 1

    def test_export_all_guides_to_file_write_error(self, exporter, tmp_path):
        """Test a write error is reported as False."""
        with patch("pathlib.Path.write_text", side_effect=OSError("disk full")):
            assert exporter.export_all_guides_to_file(tmp_path / "all.json") is False


class TestExportGuideWithImages:
    """Tests for ZIP bundle export."""

    def test_bundle_layout_and_counter(self, stores, exporter):
        """Test entry names use a guide-wide counter and stored MIME type."""
        db, images = stores
        png_id = images.upload(io.BytesIO(make_image("PNG")), "a.png")
        jpg_id = images.upload(io.BytesIO(make_image("JPEG")), "b.jpg")
        gif_id = images.upload(io.BytesIO(make_image("GIF")), "c.gif")
        guide = Guide(
            title="Bundle",
            steps=[
                Step(order=1, image_ids=[png_id, jpg_id]),
                Step(order=2, image_ids=[gif_id]),
            ],
        )
        db.insert_guide(guide)

        with zipfile.ZipFile(io.BytesIO(exporter.export_guide_with_images(guide.id))) as z:
            names = set(z.namelist())
            document = json.loads(z.read("guide.json"))
            step_one_png = z.read("images/step_1_image_1.png")

        assert names == {
            "guide.json",
            "images/step_1_image_1.png",
            "images/step_1_image_2.jpg",
            "images/step_2_image_3.gif",
        }
        steps = document["guide"]["steps"]
        assert steps[0]["imageFileNames"] == {
            png_id: "images/step_1_image_1.png",
            jpg_id: "images/step_1_image_2.jpg",
        }
        assert steps[1]["imageFileNames"] == {gif_id: "images/step_2_image_3.gif"}
        assert "imagesBase64" not in steps[0]
        assert step_one_png == images.get(png_id).read()

    def test_missing_image_still_consumes_counter(self, stores, exporter):
        """Test a missing image is skipped but keeps later numbering stable."""
        db, images = stores
        kept_id = images.upload(io.BytesIO(make_image()), "a.png")
        guide = Guide(
            title="Gaps", steps=[Step(order=1, image_ids=["img_gone", kept_id])]
        )
        db.insert_guide(guide)

        with zipfile.ZipFile(io.BytesIO(exporter.export_guide_with_images(guide.id))) as z:
            names = z.namelist()
            document = json.loads(z.read("guide.json"))

        assert "images/step_1_image_2.png" in names
        assert not any("image_1" in name for name in names)
        assert document["guide"]["steps"][0]["imageFileNames"] == {
            kept_id: "images/step_1_image_2.png"
        }

    def test_bundle_for_guide_without_images(self, stores, exporter):
        """Test a bundle with no images holds only guide.json."""
        db, _ = stores
        guide_id = db.insert_guide(Guide(title="Plain", steps=[Step(order=1)]))

        with zipfile.ZipFile(io.BytesIO(exporter.export_guide_with_images(guide_id))) as z:
            assert z.namelist() == ["guide.json"]

    def test_bundle_missing_guide_raises(self, exporter):
        """Test exporting an unknown guide as a bundle."""
        with pytest.raises(GuideNotFoundError):
            exporter.export_guide_with_images("missing")

    def test_export_guide_with_images_to_file(self, stores, exporter, tmp_path):
        """Test writing a bundle to disk."""
        db, _ = stores
        guide_id = db.insert_guide(Guide(title="G"))
        target = tmp_path / "guide.zip"

        assert exporter.export_guide_with_images_to_file(guide_id, target) is True
        assert zipfile.is_zipfile(target)
        assert exporter.export_guide_with_images_to_file("missing", target) is False
