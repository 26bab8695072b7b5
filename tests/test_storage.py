from __future__ import annotations

from pathlib import Path

import pytest

from helpers import make_upload
from pdfask.errors import MissingInputError
from pdfask.storage import (
    STAGING_DIR_NAME,
    UploadSessionManager,
    display_name_from_storage,
    sanitize_filename,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("report.pdf", "report.pdf"),
        ("my report (v2).pdf", "my_report_v2_.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\scan.pdf", "scan.pdf"),
        ("", "upload.pdf"),
        ("...", "upload.pdf"),
    ],
)
def test_sanitize_filename(raw: str, expected: str) -> None:
    assert sanitize_filename(raw) == expected


@pytest.mark.parametrize(
    "storage_name, expected",
    [
        ("1700000000000_report.pdf", "report.pdf"),
        ("1700000000000-2_report.pdf", "report.pdf"),
        ("report.pdf", "report.pdf"),
        ("1700000000000_2024_budget.pdf", "2024_budget.pdf"),
    ],
)
def test_display_name_from_storage(storage_name: str, expected: str) -> None:
    assert display_name_from_storage(storage_name) == expected


def test_no_files_and_no_session_raises_without_side_effects(
    session_manager: UploadSessionManager, upload_root: Path
) -> None:
    with pytest.raises(MissingInputError):
        session_manager.resolve([], None)
    with pytest.raises(MissingInputError):
        session_manager.resolve(None, "   ")

    assert not upload_root.exists()


def test_new_upload_creates_session_directory(session_manager: UploadSessionManager, upload_root: Path) -> None:
    resolution = session_manager.resolve(
        [make_upload(b"first", "a.pdf"), make_upload(b"second!", "b.pdf")],
        None,
    )

    assert resolution.session_id
    session_dir = upload_root / resolution.session_id
    assert session_dir.is_dir()
    assert resolution.display_names == ["a.pdf", "b.pdf"]
    assert [document.size_bytes for document in resolution.documents] == [5, 7]
    assert [document.read_bytes() for document in resolution.documents] == [b"first", b"second!"]
    for document in resolution.documents:
        assert document.path.parent == session_dir
        assert document.storage_name.endswith("_" + document.display_name)
    assert list((upload_root / STAGING_DIR_NAME).iterdir()) == []


def test_supplied_id_with_files_mints_fresh_session(session_manager: UploadSessionManager) -> None:
    first = session_manager.resolve([make_upload(b"one", "a.pdf")], None)

    second = session_manager.resolve([make_upload(b"two", "b.pdf")], first.session_id)

    assert second.session_id != first.session_id
    assert session_manager.load_session(first.session_id).display_names == ["a.pdf"]


def test_follow_up_round_trip_recovers_display_names(session_manager: UploadSessionManager) -> None:
    created = session_manager.resolve(
        [make_upload(b"1", "zeta.pdf"), make_upload(b"2", "alpha.pdf"), make_upload(b"3", "zeta.pdf")],
        None,
    )

    resolved = session_manager.resolve([], created.session_id)

    assert resolved.session_id == created.session_id
    assert resolved.display_names == ["zeta.pdf", "alpha.pdf", "zeta.pdf"]
    assert [document.read_bytes() for document in resolved.documents] == [b"1", b"2", b"3"]


def test_unsafe_names_report_the_same_label_on_follow_up(session_manager: UploadSessionManager) -> None:
    created = session_manager.resolve(
        [make_upload(b"x", "My Report (v2).pdf"), make_upload(b"y", "résumé final.pdf")],
        None,
    )

    resolved = session_manager.resolve([], created.session_id)

    assert created.display_names == ["My_Report_v2_.pdf", "r_sum_final.pdf"]
    assert resolved.display_names == created.display_names


def test_unknown_or_malformed_session_resolves_empty(session_manager: UploadSessionManager) -> None:
    missing = session_manager.resolve([], "does-not-exist")
    traversal = session_manager.resolve([], "../outside")

    assert missing.session_id == "does-not-exist"
    assert missing.is_empty
    assert traversal.is_empty


def test_move_falls_back_to_copy(
    session_manager: UploadSessionManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_rename(self: Path, target: Path) -> Path:
        raise OSError(18, "Invalid cross-device link")

    monkeypatch.setattr(Path, "rename", failing_rename)

    resolution = session_manager.resolve([make_upload(b"payload", "cross.pdf")], None)

    document = resolution.documents[0]
    assert document.path.read_bytes() == b"payload"
    assert list(session_manager.staging_dir.iterdir()) == []


def test_staging_names_are_unique(session_manager: UploadSessionManager) -> None:
    first = session_manager.stage_upload(make_upload(b"x", "same.pdf"))
    second = session_manager.stage_upload(make_upload(b"y", "same.pdf"))

    assert first != second
    assert display_name_from_storage(first.name) == display_name_from_storage(second.name) == "same.pdf"
