"""Tests for legacy -> sharded migration."""

import json

from conftest import snapshot, write_legacy

from gigboard.migration import import_flat_file, migrate_all, migrate_store
from gigboard.paths import LEGACY_MARKER, MIGRATED_MARKER
from gigboard.resolver import SOURCE_INDEX


def _legacy_project(data_dir, project_id, created="2024-02-10T09:00:00Z", tasks=1):
    write_legacy(data_dir, "projects", project_id, "project.json", {"projectId": project_id, "createdAt": created})
    for task_id in range(1, tasks + 1):
        write_legacy(
            data_dir, f"projects/{project_id}", "tasks", f"{task_id}.json", {"taskId": task_id, "projectId": project_id}
        )


def test_migrates_document_tasks_and_marks_legacy(repos, data_dir):
    _legacy_project(data_dir, 3, tasks=2)

    report = migrate_store(repos.projects)

    assert report.migrated == 1
    assert report.sub_resources_migrated == 1
    assert report.markers_written == 1
    assert report.errors == []
    target = repos.projects.root / "2024" / "02" / "10" / "3"
    assert json.loads((target / "project.json").read_text(encoding="utf-8"))["projectId"] == 3
    assert sorted(p.name for p in (target / "tasks").iterdir()) == ["1.json", "2.json"]
    assert (data_dir / "projects" / "3" / MIGRATED_MARKER).exists()
    assert (data_dir / "projects" / "3" / "project.json").exists()
    assert repos.projects.resolve(3).source == SOURCE_INDEX


def test_running_twice_changes_nothing(repos, data_dir):
    _legacy_project(data_dir, 3)
    _legacy_project(data_dir, 4, created="2024-03-01T00:00:00Z")
    repos.gigs.save({"id": 1, "postedDate": "2025-01-01T00:00:00Z"})

    migrate_all(repos.stores())
    before = snapshot(data_dir)
    second = migrate_all(repos.stores())

    assert snapshot(data_dir) == before
    assert second["projects"].migrated == 0
    assert second["projects"].markers_written == 0
    assert second["projects"].indexed == 0
    assert second["projects"].skipped == 2


def test_existing_twin_gets_do_not_write_marker(repos, data_dir):
    repos.gigs.save({"id": 5, "title": "New", "postedDate": "2025-01-01T00:00:00Z"})
    write_legacy(data_dir, "gigs", 5, "gig.json", {"id": 5, "title": "Old"})

    report = migrate_store(repos.gigs)

    assert report.migrated == 0
    assert report.skipped == 1
    assert (data_dir / "gigs" / "5" / LEGACY_MARKER).exists()
    assert repos.gigs.read(5)["title"] == "New"
    assert len(list(repos.gigs.resolver.iter_hierarchical())) == 1


def test_unindexed_sharded_documents_are_indexed(repos, data_dir):
    path = repos.gigs.root / "2025" / "01" / "01" / "2" / "gig.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"id": 2}), encoding="utf-8")

    report = migrate_store(repos.gigs)

    assert report.indexed == 1
    assert repos.gigs.index.get_entry(2)["path"] == "2025/01/01/2"


def test_missing_timestamp_falls_back_to_file_time(repos, data_dir):
    write_legacy(data_dir, "gigs", 9, "gig.json", {"id": 9, "title": "Undated"})
    report = migrate_store(repos.gigs)
    assert report.migrated == 1
    migrated = repos.gigs.read(9)
    assert migrated["postedDate"]
    assert repos.gigs.resolve(9).path.endswith("/9")


def test_bad_entries_are_reported_without_aborting(repos, data_dir):
    path = write_legacy(data_dir, "gigs", 1, "gig.json", {})
    path.write_text("{broken", encoding="utf-8")
    write_legacy(data_dir, "gigs", 2, "gig.json", {"id": 3})
    write_legacy(data_dir, "gigs", 4, "gig.json", {"id": 4, "postedDate": "2024-01-01T00:00:00Z"})

    report = migrate_store(repos.gigs)

    assert report.migrated == 1
    assert len(report.errors) == 1
    assert len(report.warnings) == 1
    assert not report.ok
    assert not (data_dir / "gigs" / "1" / MIGRATED_MARKER).exists()


def test_import_flat_file_is_idempotent(repos, tmp_path):
    source = tmp_path / "gigs.json"
    source.write_text(
        json.dumps([{"id": 1, "postedDate": "2024-01-01T00:00:00Z"}, {"id": 2}, {"title": "no id"}]),
        encoding="utf-8",
    )

    first = import_flat_file(repos.gigs, source)
    second = import_flat_file(repos.gigs, source)

    assert (first.migrated, first.skipped, len(first.warnings)) == (2, 0, 1)
    assert (second.migrated, second.skipped) == (0, 2)
    assert repos.gigs.resolve(1).path == "2024/01/01/1"
