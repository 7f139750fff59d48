"""
Reconciliation walk tests: classification, hooks, policies and session defaults.
"""

import threading
import time

import pytest

from services.repowalk import (
    ApiError,
    ConfigurationError,
    LocalIOError,
    NotFoundError,
    UnknownEntryTypeError,
    WalkHooks,
    WalkOutcome,
)

from conftest import API, RAW, blob, tree


def recorder(paths: list):
    """Hook that only remembers which entries it saw."""
    def hook(ctx):
        paths.append(ctx.entry.path)
    return hook


class TestClassification:
    """Test outcome classification against local files."""

    def test_identical_file_matches(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("hello.txt", b"hello\n")])
        local_root.mkdir()
        (local_root / "hello.txt").write_bytes(b"hello\n")

        result = make_walker().walk()

        assert result.stats.as_dict() == {"matched": 1, "missing_or_new": 0, "conflicts": 0}
        assert result.entries[0].outcome == WalkOutcome.MATCH

    def test_changed_file_differs(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("hello.txt", b"hello\n")])
        local_root.mkdir()
        (local_root / "hello.txt").write_bytes(b"hullo\n")

        result = make_walker().walk()

        assert result.stats.conflicts == 1

    def test_symlink_entry_always_differs(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("link", b"target", mode="120000")])
        local_root.mkdir()
        (local_root / "link").write_bytes(b"target")

        result = make_walker().walk()

        assert result.entries[0].outcome == WalkOutcome.DIFFERS
        assert result.stats.conflicts == 1

    def test_dry_run_counts_without_touching_disk(self, make_walker, fake_github, local_root):
        fake_github.add_tree([tree("docs"), blob("docs/a.txt", b"a\n")])

        result = make_walker().walk()

        assert result.stats.as_dict() == {"matched": 0, "missing_or_new": 2, "conflicts": 0}
        assert not local_root.exists()
        assert fake_github.calls == [f"{API}/repos/octo/demo/git/trees/main?recursive=1"]


class TestUnknownEntryType:
    """Test that an unknown entry type aborts the walk."""

    ENTRIES = [
        blob("a.txt", b"a\n"),
        {"path": "vendor/lib", "type": "commit", "mode": "160000", "sha": "c" * 40},
        blob("z.txt", b"z\n"),
    ]

    def test_sequential_abort(self, make_walker, fake_github):
        fake_github.add_tree(self.ENTRIES)
        seen: list[str] = []
        walker = make_walker(hooks=WalkHooks(on_missing_locally=recorder(seen)))

        with pytest.raises(UnknownEntryTypeError) as exc:
            walker.walk()

        assert exc.value.entry_type == "commit"
        assert seen == ["a.txt"]
        assert walker.last_result is None

    def test_pooled_abort(self, make_walker, fake_github):
        fake_github.add_tree(self.ENTRIES)
        seen: list[str] = []
        walker = make_walker(
            hooks=WalkHooks(on_missing_locally=recorder(seen)),
            walk={"max_workers": 4},
        )

        with pytest.raises(UnknownEntryTypeError):
            walker.walk()

        assert "z.txt" not in seen
        assert walker.last_result is None


class TestWritePolicy:
    """Test the write and overwrite policies."""

    def test_fetches_missing_then_is_idempotent(self, make_walker, fake_github, local_root):
        tree_url = fake_github.add_tree([blob("src/app.py", b"print('hi')\n"), tree("src")])
        fake_github.add_raw("src/app.py", b"print('hi')\n")
        walker = make_walker(policy="write")

        first = walker.walk()
        assert first.stats.as_dict() == {"matched": 1, "missing_or_new": 1, "conflicts": 0}
        assert (local_root / "src" / "app.py").read_bytes() == b"print('hi')\n"

        second = walker.walk()
        assert second.stats.as_dict() == {"matched": 2, "missing_or_new": 0, "conflicts": 0}
        assert fake_github.count(tree_url) == 1

    def test_creates_missing_directories(self, make_walker, fake_github, local_root):
        fake_github.add_tree([tree("a"), tree("a/b")])

        make_walker(policy="write").walk()

        assert (local_root / "a" / "b").is_dir()

    def test_write_leaves_differing_file_alone(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("notes.txt", b"remote\n")])
        fake_github.add_raw("notes.txt", b"remote\n")
        local_root.mkdir()
        (local_root / "notes.txt").write_bytes(b"local\n")

        result = make_walker(policy="write").walk()

        assert result.stats.conflicts == 1
        assert (local_root / "notes.txt").read_bytes() == b"local\n"

    def test_overwrite_replaces_differing_file(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("notes.txt", b"remote\n")])
        fake_github.add_raw("notes.txt", b"remote\n")
        local_root.mkdir()
        (local_root / "notes.txt").write_bytes(b"local\n")

        result = make_walker(policy="overwrite").walk()

        assert result.stats.conflicts == 1
        assert result.success
        assert (local_root / "notes.txt").read_bytes() == b"remote\n"

    def test_entry_failures_do_not_stop_the_walk(self, make_walker, fake_github, local_root):
        fake_github.add_tree([
            blob("broken.txt", b"b\n"),
            blob("x/inner.txt", b"i\n"),
            blob("ok.txt", b"ok\n"),
        ])
        fake_github.add(f"{RAW}/octo/demo/main/broken.txt", body=b"oops", status=500)
        fake_github.add_raw("ok.txt", b"ok\n")
        local_root.mkdir()
        (local_root / "x").write_bytes(b"a file where a directory should be")

        result = make_walker(policy="write").walk()

        errors = {e.path: e.error for e in result.failures}
        assert isinstance(errors["broken.txt"], ApiError)
        assert isinstance(errors["x/inner.txt"], LocalIOError)
        assert (local_root / "ok.txt").read_bytes() == b"ok\n"
        assert result.stats.missing_or_new == 3
        assert not result.success

    def test_pooled_write(self, make_walker, fake_github, local_root):
        names = [f"f{i}.txt" for i in range(8)]
        fake_github.add_tree([blob(name, name.encode()) for name in names])
        for name in names:
            fake_github.add_raw(name, name.encode())

        result = make_walker(policy="write", walk={"max_workers": 4}).walk()

        assert result.stats.missing_or_new == 8
        assert [e.path for e in result.entries] == names
        assert sorted(p.name for p in local_root.iterdir()) == names

    @pytest.mark.parametrize("path", ["../escape.txt", "docs/../../escape.txt", "/etc/escape.txt"])
    def test_paths_outside_root_are_rejected(self, make_walker, fake_github, local_root, tmp_path, path):
        fake_github.add_tree([blob(path, b"x\n"), blob("ok.txt", b"ok\n")])
        fake_github.add_raw("ok.txt", b"ok\n")
        walker = make_walker(policy="write")

        with pytest.raises(ApiError, match="Unsafe tree entry path"):
            walker.walk()

        assert not (tmp_path / "escape.txt").exists()
        assert not local_root.exists()
        assert walker.last_result is None


class TestWalkHooks:
    """Test path filters, cancellation and the walk-level callbacks."""

    def test_path_filter_skips_entries(self, make_walker, fake_github):
        fake_github.add_tree([blob("a.md", b"a"), blob("b.py", b"b"), blob("c.md", b"c")])
        hooks = WalkHooks(path_filter=lambda entry: entry.path.endswith(".md"))

        result = make_walker(hooks=hooks).walk()

        assert result.skipped == 2
        assert [e.path for e in result.entries] == ["b.py"]

    def test_cancel_stops_before_next_entry(self, make_walker, fake_github):
        fake_github.add_tree([blob("a", b"a"), blob("b", b"b"), blob("c", b"c")])
        stop = threading.Event()

        def cancel_after_first(ctx):
            stop.set()

        hooks = WalkHooks(on_missing_locally=cancel_after_first)
        result = make_walker(hooks=hooks).walk(cancel_event=stop)

        assert result.cancelled
        assert not result.success
        assert [e.path for e in result.entries] == ["a"]

    def test_pooled_cancel_drops_queued_entries(self, make_walker, fake_github):
        names = [f"f{i}" for i in range(10)]
        fake_github.add_tree([blob(name, name.encode()) for name in names])
        stop = threading.Event()
        seen: list[str] = []

        def cancel_on_first(ctx):
            seen.append(ctx.entry.path)
            time.sleep(0.02)
            stop.set()

        hooks = WalkHooks(on_missing_locally=cancel_on_first)
        walker = make_walker(hooks=hooks, walk={"max_workers": 2})
        result = walker.walk(cancel_event=stop)

        assert result.cancelled
        assert len(seen) <= 2
        assert sorted(e.path for e in result.entries) == sorted(seen)
        assert result.stats.missing_or_new == len(seen)

    def test_prepare_can_stop_the_walk(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("a", b"a")])
        calls = []

        def prepare(snapshot, root, ref, branch):
            calls.append((len(snapshot), root, ref.full_name, branch))
            return True

        walker = make_walker(hooks=WalkHooks(prepare=prepare))
        result = walker.walk()

        assert calls == [(1, local_root, "octo/demo", "main")]
        assert result.prepared_only
        assert result.entries == []
        assert walker.last_result is result

    def test_finalize_sees_the_result(self, make_walker, fake_github):
        fake_github.add_tree([blob("a", b"a")])
        seen = []

        def finalize(result):
            seen.append(result.stats.missing_or_new)
            return result

        walker = make_walker(hooks=WalkHooks(finalize=finalize))
        walker.walk()

        assert seen == [1]
        assert walker.get_stats()["walk"]["missing_or_new"] == 1

    def test_match_hook(self, make_walker, fake_github, local_root):
        fake_github.add_tree([blob("same", b"same")])
        local_root.mkdir()
        (local_root / "same").write_bytes(b"same")
        seen: list[str] = []

        make_walker(hooks=WalkHooks(on_match=recorder(seen))).walk()

        assert seen == ["same"]


class TestSession:
    """Test branch, path and policy resolution."""

    def test_per_repo_branch_override(self, make_walker, fake_github):
        fake_github.add_tree([blob("a", b"a")], branch="dev")
        walker = make_walker()
        walker.set_branch_for_repo("octo/demo", "dev")

        assert walker.walk().branch == "dev"

    def test_configured_default_branch(self, make_walker, fake_github):
        fake_github.add_tree([])
        assert make_walker().walk().branch == "main"
        assert fake_github.calls == [f"{API}/repos/octo/demo/git/trees/main?recursive=1"]

    def test_remote_default_branch_when_unconfigured(self, make_walker, fake_github):
        fake_github.add(f"{API}/repos/octo/demo", {"name": "demo", "default_branch": "trunk"})
        fake_github.add_tree([], branch="trunk")

        assert make_walker(defaults={"branch": None}).walk().branch == "trunk"

    def test_loaded_metadata_beats_configured_branch(self, make_walker, fake_github):
        fake_github.add(f"{API}/repos/octo/demo", {"name": "demo", "default_branch": "trunk"})
        fake_github.add_tree([], branch="trunk")
        walker = make_walker()
        walker.repository_info()

        assert walker.walk().branch == "trunk"

    def test_unknown_branch(self, make_walker):
        walker = make_walker()
        with pytest.raises(NotFoundError) as exc:
            walker.walk(branch="nope")
        assert exc.value.branch == "nope"
        assert walker.last_result is None

    def test_local_path_required(self, make_walker, fake_github):
        fake_github.add_tree([])
        walker = make_walker(defaults={"local_path": None})

        with pytest.raises(ConfigurationError) as exc:
            walker.walk()
        assert exc.value.field == "local_path"

    def test_per_repo_local_path(self, make_walker, fake_github, tmp_path):
        fake_github.add_tree([])
        walker = make_walker()
        walker.set_local_path_for_repo("octo/demo", tmp_path / "elsewhere")

        assert walker.walk().local_root == tmp_path / "elsewhere"

    def test_rate_limit_reported(self, make_walker, fake_github, clock):
        fake_github.add_tree([], headers={
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "55",
            "X-RateLimit-Reset": str(int(clock.now) + 600),
        })

        result = make_walker().walk()

        assert result.rate_limit_remaining == 55
        assert result.rate_limit_reset_in == pytest.approx(600, abs=1)
        assert result.as_dict()["rate_limit_reset_in"] == 600

    def test_policy_switches(self, make_walker):
        walker = make_walker()
        assert walker.policy.name == "read-only"

        walker.write_enable()
        assert walker.policy.effects.write_file is not None
        assert walker.policy.effects.resolve_conflict is None

        walker.write_enable_overwrite()
        assert walker.policy.effects.resolve_conflict is not None

        walker.read_only()
        assert walker.policy.effects.write_file is None

    def test_unknown_policy(self, make_walker):
        with pytest.raises(ConfigurationError) as exc:
            make_walker(policy="yolo")
        assert exc.value.field == "policy"
