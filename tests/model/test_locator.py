import os

import pytest

from core.model.locator import ResourceLocator, inspect_file, validate_file_access
from core.model.storage import StorageBackend
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError


def test_create_reference_then_resolve_returns_the_same_path(locator, make_artifact, m1):
    path = make_artifact(m1)
    assert locator.resolve(m1) is None
    assert locator.create_reference(m1, path) == path
    assert locator.resolve(m1) == path


def test_reference_goes_to_most_persistent_writable_backend(locator, backends, make_artifact, m1):
    path = make_artifact(m1)
    locator.create_reference(m1, path)
    assert backends[0].try_read(m1.reference_name) == path
    assert backends[1].try_read(m1.reference_name) is None


def test_unwritable_backend_falls_through_to_the_next(tmp_path, catalog, failures, make_artifact, m1):
    blocker = tmp_path / "blocker"
    blocker.write_text("file")
    broken = StorageBackend("broken", blocker / "refs", rank=0)
    fallback = StorageBackend("fallback", tmp_path / "fallback", rank=1)
    locator = ResourceLocator([broken, fallback], catalog, failures)

    path = make_artifact(m1)
    assert locator.create_reference(m1, path) == path
    assert fallback.try_read(m1.reference_name) == path


def test_every_backend_unwritable_raises_storage_access_denied(tmp_path, catalog, make_artifact, m1):
    blocker = tmp_path / "blocker"
    blocker.write_text("file")
    locator = ResourceLocator([StorageBackend("a", blocker / "a"), StorageBackend("b", blocker / "b", rank=1)], catalog)
    with pytest.raises(ModelServiceError) as exc_info:
        locator.create_reference(m1, make_artifact(m1))
    assert exc_info.value.kind == ErrorKind.STORAGE_ACCESS_DENIED


def test_create_reference_rejects_missing_or_empty_target(locator, make_artifact, models_dir, m1):
    with pytest.raises(ModelServiceError) as exc_info:
        locator.create_reference(m1, models_dir / "missing.task")
    assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE

    empty = make_artifact(m1, content=b"")
    with pytest.raises(ModelServiceError):
        locator.create_reference(m1, empty)


def test_create_reference_drops_conflicting_records_elsewhere(locator, backends, make_artifact, models_dir, m1):
    backends[2].try_write(m1.reference_name, "/old/location.task")
    path = make_artifact(m1)
    locator.create_reference(m1, path)
    assert backends[2].try_read(m1.reference_name) is None
    assert locator.resolve(m1) == path


def test_stale_reference_resolves_to_none_and_is_omitted(locator, backends, install_model, m1, m2):
    path = install_model(m1)
    install_model(m2)
    os.remove(path)

    assert locator.resolve(m1) is None
    assert [d.id for d in locator.list_available()] == [m2.id]


def test_resolve_skips_stale_record_and_checks_later_backends(locator, backends, make_artifact, m1):
    path = make_artifact(m1)
    backends[0].try_write(m1.reference_name, "/gone/model.task")
    backends[1].try_write(m1.reference_name, path)
    assert locator.resolve(m1) == path


def test_failed_models_are_excluded_unless_requested(locator, failures, install_model, m1, m2):
    install_model(m1)
    install_model(m2)

    failures.mark_failed(m1.id, "boom")
    assert [d.id for d in locator.list_available()] == [m2.id]
    assert {d.id for d in locator.list_available(include_failed=True)} == {m1.id, m2.id}

    failures.clear_failed(m1.id)
    assert {d.id for d in locator.list_available()} == {m1.id, m2.id}


def test_list_available_is_sorted_by_display_name(locator, install_model, catalog):
    for descriptor in catalog:
        install_model(descriptor)
    names = [d.display_name for d in locator.list_available()]
    assert names == sorted(names, key=str.lower)


def test_migrate_references_moves_records_up(locator, backends, make_artifact, m1, m2):
    backends[2].try_write(m1.reference_name, make_artifact(m1))
    backends[0].try_write(m2.reference_name, make_artifact(m2))

    assert locator.migrate_references() == 1
    assert backends[0].try_read(m1.reference_name) is not None
    assert backends[2].try_read(m1.reference_name) is None


def test_scan_creates_references_for_known_files_only(locator, tmp_path, make_artifact, m1):
    scan_dir = tmp_path / "Downloads"
    path = make_artifact(m1, directory=scan_dir)
    (scan_dir / "unknown-model.task").write_bytes(b"data")
    (scan_dir / "notes.txt").write_text("ignored")

    created = locator.scan_and_create_references([scan_dir, tmp_path / "missing-dir"], [".task"])
    assert created == 1
    assert locator.resolve(m1) == path
    assert locator.scan_and_create_references([scan_dir], [".task"]) == 0


def test_find_unknown_references(locator, backends):
    backends[1].try_write("mystery.task.ref", "/somewhere/mystery.task")
    unknown = locator.find_unknown_references()
    assert len(unknown) == 1
    assert unknown[0]["file_name"] == "mystery.task"
    assert unknown[0]["backend"] == backends[1].name


def test_cleanup_stale_references(locator, backends, install_model, m1, m2):
    install_model(m1)
    stale = install_model(m2)
    os.remove(stale)
    assert locator.cleanup_stale_references() == 1
    assert backends[0].list_records() == [m1.reference_name]


def test_validate_model_setup_reports_missing_and_present(locator, install_model, m1, m2):
    install_model(m1)
    ok = locator.validate_model_setup(m1)
    assert ok["is_available"] and ok["file"]["readable"]

    missing = locator.validate_model_setup(m2)
    assert not missing["is_available"]
    assert "recommendation" in missing


def test_file_diagnostics(make_artifact, models_dir, m1):
    path = make_artifact(m1, content=b"abc")
    assert validate_file_access(path).accessible
    assert validate_file_access(models_dir).reason == "Path is not a regular file"
    assert not validate_file_access(models_dir / "nope").accessible

    info = inspect_file(path)
    assert info["size"] == 3
    assert info["readable"] is True
    assert info["formatted_size"] == "3.0 B"


def test_get_model_file_info(locator, install_model, m1, m2):
    path = install_model(m1)
    info = locator.get_model_file_info(m1)
    assert info.path == path
    assert info.size_bytes == os.path.getsize(path)
    assert locator.get_model_file_info(m2) is None
