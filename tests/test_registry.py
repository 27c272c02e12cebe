"""Tests for the model version registry."""

import sqlite3

import pytest

from feedloop.errors import RegistryError
from feedloop.registry import VersionRegistry


@pytest.fixture
def registry(db, clock):
    return VersionRegistry(db, clock=clock)


class TestVersionRegistry:
    def test_register_auto_tags(self, registry):
        v1 = registry.register("ft:model:one", "gpt-4o-mini", 120)
        v2 = registry.register("ft:model:two", "gpt-4o-mini", 80)

        assert (v1.version_tag, v2.version_tag) == ("v1", "v2")
        assert not v1.is_active
        assert registry.get("v1").fine_tune_artifact_id == "ft:model:one"
        assert registry.get(v2.id).training_example_count == 80

    def test_custom_tags_do_not_break_numbering(self, registry):
        registry.register("ft:a", "base", version_tag="canary")
        registry.register("ft:b", "base", version_tag="v7")
        assert registry.register("ft:c", "base").version_tag == "v8"

    def test_duplicate_tag(self, registry):
        registry.register("ft:a", "base", version_tag="v1")
        with pytest.raises(RegistryError):
            registry.register("ft:b", "base", version_tag="v1")

    def test_promote_keeps_single_active(self, registry, clock):
        v1 = registry.register("ft:a", "base")
        v2 = registry.register("ft:b", "base")

        registry.promote(v1.id)
        clock.advance(minutes=5)
        promoted = registry.promote("v2")

        assert promoted.is_active
        assert promoted.promoted_at == clock.now
        assert registry.active_version().id == v2.id
        assert [v.is_active for v in registry.list_versions() if v.id == v1.id] == [False]

    def test_database_rejects_two_active(self, registry, db):
        v1 = registry.register("ft:a", "base")
        v2 = registry.register("ft:b", "base")
        registry.promote(v1.id)
        with pytest.raises(sqlite3.IntegrityError):
            with db.connect() as conn:
                conn.execute("UPDATE model_versions SET is_active = 1 WHERE id = ?", (v2.id,))

    def test_promote_unknown(self, registry):
        with pytest.raises(RegistryError):
            registry.promote("v99")

    def test_rollback_to_previous_promotion(self, registry, clock):
        v1 = registry.register("ft:a", "base")
        v2 = registry.register("ft:b", "base")
        registry.promote(v1.id)
        clock.advance(minutes=1)
        registry.promote(v2.id)
        clock.advance(minutes=1)

        restored = registry.rollback()

        assert restored.id == v1.id
        assert registry.active_version().id == v1.id

    def test_rollback_explicit_version(self, registry):
        registry.register("ft:a", "base")
        v2 = registry.register("ft:b", "base")
        assert registry.rollback("v2").id == v2.id

    def test_rollback_without_history(self, registry):
        v1 = registry.register("ft:a", "base")
        registry.promote(v1.id)
        with pytest.raises(RegistryError):
            registry.rollback()

    def test_deactivate_all(self, registry):
        v1 = registry.register("ft:a", "base")
        registry.promote(v1.id)
        assert registry.deactivate_all() == 1
        assert registry.active_version() is None
        assert registry.deactivate_all() == 0

    def test_register_from_job_is_idempotent(self, registry):
        first = registry.register_from_job("job-1", "ft:a", "base", 42)
        again = registry.register_from_job("job-1", "ft:a", "base", 42)
        assert first.id == again.id
        assert len(registry.list_versions()) == 1
        assert first.training_example_count == 42
