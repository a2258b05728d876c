from core.model.failures import FailureRegistry


def test_mark_and_clear(failures):
    assert not failures.is_failed("A")
    assert failures.mark_failed("A", "load crashed")
    assert failures.is_failed("A")
    assert failures.get_failed_ids() == {"A"}

    assert failures.clear_failed("A")
    assert not failures.clear_failed("A")
    assert failures.get_failed_ids() == set()


def test_marking_twice_keeps_one_entry_with_latest_reason(failures):
    failures.mark_failed("A", "first")
    failures.mark_failed("A", "second")
    entries = failures.list_failures()
    assert len(entries) == 1
    assert entries[0].reason == "second"
    assert entries[0].failed_at > 0


def test_marks_survive_a_new_registry_instance(db_service):
    FailureRegistry(db_service).mark_failed("B", "smoke test failed")
    assert FailureRegistry(db_service).is_failed("B")
