"""
Tests for the command-line entry points and the supporting services
(job run bookkeeping, local object storage).
"""
from __future__ import annotations

import pytest

from emopulse import cli
from emopulse.models.job_run import JobStatus
from emopulse.services.event_store import put_event_if_absent
from emopulse.services.job_runs import claim_run, fail_run, finish_run, get_run
from emopulse.services.storage import LocalObjectStorage, build_storage
from tests.helpers import FakeNotifier, make_record, make_settings


class TestParser:
    def test_worker_once(self):
        args = cli.build_parser().parse_args(["worker", "--once"])
        assert args.once is True
        assert args.handler is cli._cmd_worker

    def test_digest_options(self):
        args = cli.build_parser().parse_args(["digest", "--today", "2026-10-19", "--group-by", "channel"])
        assert str(args.today) == "2026-10-19"
        assert args.group_by == "channel"

    def test_export_finish_needs_key(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["export", "finish"])

    def test_unknown_grouping_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["digest", "--group-by", "team"])


class TestCommands:
    def test_digest_on_weekend_exits_zero(self, monkeypatch):
        monkeypatch.setattr(cli, "get_settings", lambda: make_settings(DIGEST_INCLUDE_ADVICE=False))
        assert cli.main(["digest", "--today", "2026-10-17"]) == 0

    def test_digest_failure_exits_one(self, db, monkeypatch):
        # Noon on Friday 2026-10-16 in Tokyo
        put_event_if_absent(db, make_record("F1", timestamp=1792119600))
        monkeypatch.setattr(cli, "get_settings", lambda: make_settings())
        broken = FakeNotifier(error=ValueError("Expecting value: line 1 column 1 (char 0)"))
        monkeypatch.setattr(cli.SlackNotifier, "from_settings", classmethod(lambda cls, settings: broken))

        assert cli.main(["digest", "--today", "2026-10-19"]) == 1

        run = get_run(db, "daily_digest", "2026-10-16:user")
        assert run.status == JobStatus.FAILED

    def test_export_start_runs_both_phases_locally(self, db, tmp_path, monkeypatch):
        put_event_if_absent(db, make_record("Ev1"))
        settings = make_settings(LOCAL_STORAGE_ROOT=str(tmp_path))
        monkeypatch.setattr(cli, "get_settings", lambda: settings)

        assert cli.main(["export", "start"]) == 0

        storage = LocalObjectStorage(tmp_path)
        assert len(storage.list_objects("processed/")) == 1
        assert any(k.endswith("manifest-files.json") for k in storage.list_objects("exports/"))

    def test_export_finish_ignores_data_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "get_settings", lambda: make_settings(LOCAL_STORAGE_ROOT=str(tmp_path)))
        assert cli.main(["export", "finish", "exports/x/data/part-00000.json.gz"]) == 0


class TestJobRuns:
    def test_claim_once(self, db):
        assert claim_run(db, "daily_digest", "2026-10-16:user") is not None
        assert claim_run(db, "daily_digest", "2026-10-16:user") is None

    def test_same_key_other_job(self, db):
        claim_run(db, "daily_digest", "k")
        assert claim_run(db, "export_snapshot", "k") is not None

    def test_finish_and_fail(self, db):
        run = claim_run(db, "daily_digest", "a")
        finish_run(db, run, detail="3 messages")
        assert get_run(db, "daily_digest", "a").status == JobStatus.SUCCEEDED

        run = claim_run(db, "daily_digest", "b")
        fail_run(db, run, "boom")
        failed = get_run(db, "daily_digest", "b")
        assert failed.status == JobStatus.FAILED
        assert failed.finished_at is not None

    def test_force_reclaims(self, db):
        run = claim_run(db, "daily_digest", "a")
        fail_run(db, run, "boom")
        again = claim_run(db, "daily_digest", "a", force=True)
        assert again.status == JobStatus.STARTED
        assert again.detail is None


class TestLocalStorage:
    def test_put_get_list_delete(self, storage):
        storage.put_object("exports/a/data/part-00000.json.gz", b"1")
        storage.put_object("exports/a/manifest-files.json", b"{}")
        storage.put_object("processed/part-00000.json.gz", b"2")

        assert storage.list_objects("exports/") == [
            "exports/a/data/part-00000.json.gz",
            "exports/a/manifest-files.json",
        ]
        assert storage.get_object("processed/part-00000.json.gz") == b"2"
        storage.delete_objects(["processed/part-00000.json.gz"])
        assert storage.list_objects("processed/") == []

    def test_notifies_subscribers(self, storage):
        seen = []
        storage.subscribe(lambda bucket, key: seen.append((bucket, key)))
        storage.put_object("exports/a/manifest-files.json", b"{}")
        assert seen == [("emotion-data", "exports/a/manifest-files.json")]

    def test_key_cannot_escape_root(self, storage):
        with pytest.raises(ValueError):
            storage.put_object("../outside.txt", b"x")

    def test_build_storage_unknown_backend(self):
        with pytest.raises(ValueError):
            build_storage(make_settings(STORAGE_BACKEND="ftp"))
