"""
Unit tests for guide import.

Tests format detection, duplicate handling, category provisioning, inline
and bundled image remapping, and file-based import and validation.
"""

import base64
import io
import json
import zipfile

import pytest
from PIL import Image

from guideviewer.guides.models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    Category,
    Guide,
    Step,
)
from guideviewer.interchange.exporter import GuideExporter
from guideviewer.interchange.importer import IMPORTED_BY, GuideImporter
from guideviewer.interchange.results import DuplicateHandling
from guideviewer.storage.db import GuideDatabase, StorageError
from guideviewer.storage.images import ImageStore


def make_image(fmt: str = "PNG", color="green") -> bytes:
    """Create encoded image bytes with Pillow."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_stores() -> tuple[GuideDatabase, ImageStore]:
    """Create a database and image store sharing one in-memory database."""
    db = GuideDatabase(":memory:")
    db.initialize()
    images = ImageStore(db)
    images.initialize()
    return db, images


def guide_json(title: str = "Network Setup", **guide_fields) -> str:
    """Build a single-guide envelope as JSON text."""
    guide = {"title": title, "steps": []}
    guide.update(guide_fields)
    return json.dumps({"version": "1.0", "exportDate": "2024-01-20T10:30:00Z", "guide": guide})


@pytest.fixture
def stores():
    return make_stores()


@pytest.fixture
def importer(stores):
    db, images = stores
    return GuideImporter(db, images)


class TestImportGuideFromJson:
    """Tests for JSON import of each document shape."""

    def test_import_single_export(self, stores, importer):
        """Test importing a single-guide envelope."""
        db, _ = stores
        text = guide_json(
            description="desc",
            category="",
            estimatedMinutes=20,
            steps=[
                {"order": 1, "title": "One", "content": "first"},
                {"order": 2, "title": "Two", "content": "second"},
            ],
        )

        result = importer.import_guide_from_json(text)

        assert result.success
        assert result.guides_imported == 1
        guide = db.get_guide(result.imported_guide_ids[0])
        assert guide.title == "Network Setup"
        assert guide.estimated_minutes == 20
        assert guide.created_by == IMPORTED_BY
        assert [(s.order, s.title) for s in guide.steps] == [(1, "One"), (2, "Two")]

    def test_import_assigns_new_ids(self, stores, importer):
        """Test the document's ids are not reused."""
        text = guide_json(id="original-id", steps=[{"id": "step-id", "order": 1}])
        result = importer.import_guide_from_json(text)

        guide_id = result.imported_guide_ids[0]
        assert guide_id != "original-id"
        db, _ = stores
        assert db.get_guide(guide_id).steps[0].id != "step-id"

    def test_import_multiple_export(self, stores, importer):
        """Test importing a multiple-guides envelope."""
        db, _ = stores
        text = json.dumps(
            {"version": "1.0", "guideCount": 2, "guides": [{"title": "A"}, {"title": "B"}]}
        )

        result = importer.import_guide_from_json(text)

        assert result.success
        assert result.guides_imported == 2
        assert db.count_guides() == 2

    def test_import_bare_guide_data(self, stores, importer):
        """Test importing guide data without an envelope."""
        result = importer.import_guide_from_json('{"title": "Bare"}')
        assert result.success
        db, _ = stores
        assert db.guide_title_exists("Bare")

    def test_import_empty_text(self, importer):
        """Test empty input fails without raising."""
        result = importer.import_guide_from_json("   ")
        assert not result.success
        assert result.has_errors

    def test_import_invalid_json(self, importer):
        """Test malformed JSON gives a failed result."""
        result = importer.import_guide_from_json("{broken")
        assert not result.success
        assert "Invalid JSON" in result.errors[0]

    def test_import_unrecognized_document(self, importer):
        """Test JSON matching no shape gives a failed result."""
        result = importer.import_guide_from_json('{"foo": 1}')
        assert not result.success
        assert "Invalid JSON format" in result.errors[0]

    def test_empty_title_is_rejected(self, stores, importer):
        """Test a guide without a title is not imported."""
        result = importer.import_guide_from_json(guide_json(title="  "))
        assert not result.success
        assert result.errors == ("Guide title is required",)
        db, _ = stores
        assert db.count_guides() == 0

    def test_title_whitespace_is_kept(self, stores, importer):
        """Test the stored title is exactly the imported one."""
        result = importer.import_guide_from_json(guide_json(title="  Padded Title "))
        db, _ = stores
        assert db.get_guide(result.imported_guide_ids[0]).title == "  Padded Title "

    def test_steps_are_renumbered(self, stores, importer):
        """Test gaps in step order are closed with a warning."""
        text = guide_json(
            steps=[
                {"order": 5, "title": "Second"},
                {"order": 2, "title": "First"},
            ]
        )

        result = importer.import_guide_from_json(text)

        db, _ = stores
        guide = db.get_guide(result.imported_guide_ids[0])
        assert [(s.order, s.title) for s in guide.steps] == [(1, "First"), (2, "Second")]
        assert any("renumbered" in w for w in result.warnings)

    def test_unknown_version_warns(self, importer):
        """Test a different format version imports with a warning."""
        text = json.dumps({"version": "9.9", "guide": {"title": "Future"}})
        result = importer.import_guide_from_json(text)
        assert result.success
        assert any("9.9" in w for w in result.warnings)

    def test_multiple_export_partial_failure(self, stores, importer):
        """Test one failing guide doesn't stop the others."""
        text = json.dumps({"guides": [{"title": "Good"}, {"title": ""}]})
        result = importer.import_guide_from_json(text)

        assert result.success
        assert result.guides_imported == 1
        assert result.errors == ("Guide title is required",)

    def test_storage_failure_becomes_error(self, stores, importer, monkeypatch):
        """Test a store exception is reported in the result."""
        db, _ = stores

        def broken_insert(guide):
            raise StorageError("disk I/O error")

        monkeypatch.setattr(db, "insert_guide", broken_insert)
        result = importer.import_guide_from_json(guide_json())

        assert not result.success
        assert "disk I/O error" in result.errors[0]


class TestDuplicateHandling:
    """Tests for title conflict resolution."""

    @pytest.fixture
    def existing(self, stores):
        """Insert a guide that imports will collide with."""
        db, images = stores
        image_id = images.upload(io.BytesIO(make_image()), "old.png")
        guide = Guide(
            title="Rename Test",
            steps=[Step(order=1, title="Old", image_ids=[image_id])],
        )
        db.insert_guide(guide)
        return guide

    def test_skip(self, stores, importer, existing):
        """Test Skip leaves the store untouched."""
        db, images = stores
        result = importer.import_guide_from_json(
            guide_json("rename test"), DuplicateHandling.SKIP
        )

        assert not result.success
        assert result.duplicates_skipped == 1
        assert result.warnings == ("Skipped duplicate guide: rename test",)
        assert db.count_guides() == 1
        assert images.count() == 1

    def test_skip_uploads_no_images(self, stores, importer, existing):
        """Test a skipped guide's inline images are never uploaded."""
        _, images = stores
        encoded = base64.b64encode(make_image()).decode("ascii")
        text = guide_json(
            "Rename Test", steps=[{"order": 1, "imagesBase64": {"x": encoded}}]
        )

        importer.import_guide_from_json(text, DuplicateHandling.SKIP)
        assert images.count() == 1

    def test_rename(self, stores, importer, existing):
        """Test Rename imports under the first free numbered title."""
        db, _ = stores
        result = importer.import_guide_from_json(
            guide_json("Rename Test"), DuplicateHandling.RENAME
        )

        assert result.success
        assert sorted(g.title for g in db.get_all_guides()) == [
            "Rename Test",
            "Rename Test (1)",
        ]

    def test_rename_repeatedly(self, stores, importer, existing):
        """Test repeated renames produce distinct titles."""
        db, _ = stores
        for _ in range(3):
            importer.import_guide_from_json(
                guide_json("Rename Test"), DuplicateHandling.RENAME
            )

        titles = [g.title for g in db.get_all_guides()]
        assert titles == [
            "Rename Test",
            "Rename Test (1)",
            "Rename Test (2)",
            "Rename Test (3)",
        ]

    def test_overwrite(self, stores, importer, existing):
        """Test Overwrite replaces the guide and removes its images."""
        db, images = stores
        old_image_id = existing.steps[0].image_ids[0]

        result = importer.import_guide_from_json(
            guide_json("Rename Test", steps=[{"order": 1, "title": "New"}]),
            DuplicateHandling.OVERWRITE,
        )

        assert result.success
        assert db.count_guides() == 1
        assert db.get_guide(existing.id) is None
        guide = db.get_guide(result.imported_guide_ids[0])
        assert guide.steps[0].title == "New"
        assert images.get(old_image_id) is None

    def test_handling_accepts_plain_string(self, stores, importer, existing):
        """Test the policy may be given by its configuration value."""
        result = importer.import_guide_from_json(guide_json("Rename Test"), "rename")
        assert result.success


class TestCategoryProvisioning:
    """Tests for implicit category creation."""

    def test_missing_category_is_created(self, stores, importer):
        """Test a new category gets the default icon and color."""
        db, _ = stores
        importer.import_guide_from_json(guide_json(category="Networking"))

        category = db.get_category_by_name("Networking")
        assert category is not None
        assert category.icon_glyph == DEFAULT_CATEGORY_ICON
        assert category.color == DEFAULT_CATEGORY_COLOR

    def test_existing_category_is_reused(self, stores, importer):
        """Test an existing category (any case) is not duplicated."""
        db, _ = stores
        db.insert_category(Category(name="Networking", color="#FF0000"))

        importer.import_guide_from_json(guide_json(category="NETWORKING"))

        assert db.count_categories() == 1
        assert db.get_category_by_name("networking").color == "#FF0000"

    def test_empty_category_creates_nothing(self, stores, importer):
        """Test a guide without a category creates none."""
        db, _ = stores
        importer.import_guide_from_json(guide_json(category=""))
        assert db.count_categories() == 0


class TestInlineImages:
    """Tests for base64 image import."""

    def test_inline_images_are_uploaded_and_remapped(self, stores, importer):
        """Test inline images become new image ids on the step."""
        db, images = stores
        png = make_image()
        text = guide_json(
            steps=[
                {
                    "order": 1,
                    "imagesBase64": {
                        "old-1": base64.b64encode(png).decode("ascii"),
                        "old-2": base64.b64encode(make_image("JPEG")).decode("ascii"),
                    },
                }
            ]
        )

        result = importer.import_guide_from_json(text)

        assert result.images_imported == 2
        step = db.get_guide(result.imported_guide_ids[0]).steps[0]
        assert len(step.image_ids) == 2
        assert "old-1" not in step.image_ids
        assert images.get(step.image_ids[0]).read() == png

    def test_invalid_base64_becomes_warning(self, stores, importer):
        """Test undecodable base64 is skipped with a warning."""
        db, _ = stores
        text = guide_json(steps=[{"order": 1, "imagesBase64": {"bad": "***"}}])

        result = importer.import_guide_from_json(text)

        assert result.success
        assert result.images_imported == 0
        assert any("bad" in w for w in result.warnings)
        assert db.get_guide(result.imported_guide_ids[0]).steps[0].image_ids == []

    def test_invalid_image_data_becomes_warning(self, stores, importer):
        """Test base64 that isn't an image is skipped with a warning."""
        encoded = base64.b64encode(b"plain text").decode("ascii")
        text = guide_json(steps=[{"order": 1, "imagesBase64": {"txt": encoded}}])

        result = importer.import_guide_from_json(text)

        assert result.success
        assert result.images_imported == 0
        assert len(result.warnings) == 1


class TestImportGuideFromZip:
    """Tests for ZIP bundle import."""

    def test_zip_round_trip_into_empty_store(self):
        """Test a bundle's images land on the right steps under new ids."""
        source_db, source_images = make_stores()
        first = make_image(color="red")
        second = make_image(color="blue")
        first_id = source_images.upload(io.BytesIO(first), "first.png")
        second_id = source_images.upload(io.BytesIO(second), "second.png")
        guide = Guide(
            title="Bundle",
            steps=[
                Step(order=1, title="One", image_ids=[first_id]),
                Step(order=2, title="Two", image_ids=[second_id]),
            ],
        )
        source_db.insert_guide(guide)
        bundle = GuideExporter(source_db, source_images).export_guide_with_images(guide.id)

        target_db, target_images = make_stores()
        result = GuideImporter(target_db, target_images).import_guide_from_zip(bundle)

        assert result.success
        assert result.images_imported == 2
        steps = target_db.get_guide(result.imported_guide_ids[0]).steps
        assert [len(s.image_ids) for s in steps] == [1, 1]
        new_ids = {steps[0].image_ids[0], steps[1].image_ids[0]}
        assert len(new_ids) == 2
        assert not new_ids & {first_id, second_id}
        assert target_images.get(steps[0].image_ids[0]).read() == first
        assert target_images.get(steps[1].image_ids[0]).read() == second

    def test_bare_file_names_are_resolved(self, stores, importer):
        """Test imageFileNames without the images/ prefix still resolve."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as z:
            z.writestr(
                "guide.json",
                guide_json(steps=[{"order": 1, "imageFileNames": {"a": "pic.png"}}]),
            )
            z.writestr("images/pic.png", make_image())

        result = importer.import_guide_from_zip(buffer.getvalue())

        assert result.images_imported == 1
        db, _ = stores
        assert len(db.get_guide(result.imported_guide_ids[0]).steps[0].image_ids) == 1

    def test_unresolvable_file_name_warns(self, stores, importer):
        """Test a reference to a missing bundle file becomes a warning."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as z:
            z.writestr(
                "guide.json",
                guide_json(
                    steps=[{"order": 1, "imageFileNames": {"a": "images/gone.png"}}]
                ),
            )

        result = importer.import_guide_from_zip(buffer.getvalue())

        assert result.success
        assert any("gone.png" in w for w in result.warnings)

    def test_uppercase_images_folder_is_read(self, stores, importer):
        """Test the images/ folder name is matched case-insensitively."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as z:
            z.writestr(
                "guide.json",
                guide_json(steps=[{"order": 1, "imageFileNames": {"a": "Images/pic.png"}}]),
            )
            z.writestr("Images/pic.png", make_image())

        result = importer.import_guide_from_zip(buffer.getvalue())

        assert result.images_imported == 1
        db, _ = stores
        assert len(db.get_guide(result.imported_guide_ids[0]).steps[0].image_ids) == 1

    def test_inline_images_in_bundle_are_ignored(self, stores, importer):
        """Test base64 images in a bundle's guide.json don't replace its files."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as z:
            z.writestr(
                "guide.json",
                guide_json(
                    steps=[
                        {
                            "order": 1,
                            "imageFileNames": {"a": "images/pic.png"},
                            "imagesBase64": {
                                "b": base64.b64encode(make_image(color="red")).decode()
                            },
                        }
                    ]
                ),
            )
            z.writestr("images/pic.png", make_image())

        result = importer.import_guide_from_zip(buffer.getvalue())

        db, images = stores
        step = db.get_guide(result.imported_guide_ids[0]).steps[0]
        assert result.images_imported == 1
        assert images.count() == 1
        assert len(step.image_ids) == 1
        assert images.get(step.image_ids[0]).read() == make_image()
        assert any("Ignored inline images" in w for w in result.warnings)

    def test_zip_without_guide_json_fails(self, importer):
        """Test a bundle must contain guide.json."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as z:
            z.writestr("images/pic.png", make_image())

        result = importer.import_guide_from_zip(buffer.getvalue())
        assert not result.success
        assert "guide.json" in result.errors[0]

    def test_not_a_zip_fails(self, importer):
        """Test arbitrary bytes give a failed result."""
        result = importer.import_guide_from_zip(b"definitely not a zip")
        assert not result.success

    def test_empty_bytes_fail(self, importer):
        """Test empty input gives a failed result."""
        assert not importer.import_guide_from_zip(b"").success


class TestImportFromFile:
    """Tests for file dispatch and validation."""

    def test_import_json_file(self, stores, importer, tmp_path):
        """Test importing a .json file."""
        path = tmp_path / "guide.json"
        path.write_text(guide_json(), encoding="utf-8")

        result = importer.import_guides_from_file(path)
        assert result.success

    def test_import_zip_file(self, stores, importer, tmp_path):
        """Test importing a .zip file."""
        db, images = stores
        guide_id = db.insert_guide(Guide(title="Zipped"))
        path = tmp_path / "guide.zip"
        GuideExporter(db, images).export_guide_with_images_to_file(guide_id, path)

        result = importer.import_guides_from_file(path, DuplicateHandling.RENAME)
        assert result.success
        assert db.guide_title_exists("Zipped (1)")

    def test_missing_file(self, importer, tmp_path):
        """Test a missing file gives a failed result."""
        result = importer.import_guides_from_file(tmp_path / "nope.json")
        assert not result.success
        assert "File not found" in result.errors[0]

    def test_unsupported_extension(self, importer, tmp_path):
        """Test other extensions are refused."""
        path = tmp_path / "guide.txt"
        path.write_text(guide_json(), encoding="utf-8")

        result = importer.import_guides_from_file(path)
        assert not result.success
        assert "Unsupported file type" in result.errors[0]

    def test_validate_import_file(self, stores, importer, tmp_path):
        """Test validation accepts good files and rejects bad ones."""
        good_json = tmp_path / "good.json"
        good_json.write_text(guide_json(), encoding="utf-8")
        bad_json = tmp_path / "bad.json"
        bad_json.write_text("{nope", encoding="utf-8")

        db, images = stores
        guide_id = db.insert_guide(Guide(title="Z"))
        good_zip = tmp_path / "good.zip"
        GuideExporter(db, images).export_guide_with_images_to_file(guide_id, good_zip)
        bad_zip = tmp_path / "bad.zip"
        bad_zip.write_bytes(b"not a zip")

        assert importer.validate_import_file(good_json)
        assert importer.validate_import_file(good_zip)
        assert not importer.validate_import_file(bad_json)
        assert not importer.validate_import_file(bad_zip)
        assert not importer.validate_import_file(tmp_path / "missing.json")

    def test_validate_writes_nothing(self, stores, importer, tmp_path):
        """Test validation leaves the store unchanged."""
        path = tmp_path / "guide.json"
        path.write_text(guide_json(), encoding="utf-8")

        importer.validate_import_file(path)
        db, _ = stores
        assert db.count_guides() == 0


class TestExportImportRoundTrip:
    """End-to-end export then import."""

    def test_export_delete_import(self, stores):
        """Test a guide survives export, deletion and re-import."""
        db, images = stores
        guide = Guide(
            title="Network Setup",
            description="Office network",
            category="Networking",
            estimated_minutes=30,
            steps=[
                Step(order=1, title="Unbox", content="{\\rtf1 Unbox}"),
                Step(order=2, title="Connect", content="Cables"),
                Step(order=3, title="Test", content="Ping"),
            ],
        )
        db.insert_guide(guide)
        text = GuideExporter(db, images).export_guide(guide.id)
        db.delete_guide(guide.id)

        result = GuideImporter(db, images).import_guide_from_json(text)

        guides = db.get_all_guides()
        assert len(guides) == 1
        imported = guides[0]
        assert imported.id == result.imported_guide_ids[0]
        assert imported.title == "Network Setup"
        assert imported.description == "Office network"
        assert imported.category == "Networking"
        assert imported.estimated_minutes == 30
        assert [(s.order, s.title, s.content) for s in imported.steps] == [
            (1, "Unbox", "{\\rtf1 Unbox}"),
            (2, "Connect", "Cables"),
            (3, "Test", "Ping"),
        ]

    def test_rename_own_export(self, stores):
        """Test re-importing a guide's own export with Rename."""
        db, images = stores
        guide_id = db.insert_guide(Guide(title="Rename Test"))
        text = GuideExporter(db, images).export_guide(guide_id)

        GuideImporter(db, images).import_guide_from_json(text, DuplicateHandling.RENAME)

        assert [g.title for g in db.get_all_guides()] == [
            "Rename Test",
            "Rename Test (1)",
        ]
