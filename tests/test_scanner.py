"""End-to-end tests for the scan scheduler."""

import asyncio
import io

import pytest

from conftest import write_file
from dupfind import walker as walker_module
from dupfind.aggregator import ConfirmationPrompt
from dupfind.errors import RootWalkError, StartupError
from dupfind.scanner import DuplicateScanner, async_main


@pytest.mark.asyncio
async def test_duplicate_across_subdirectory(temp_dir):
    """a.txt (10 bytes) at the root and in sub/ gives one duplicate."""
    write_file(temp_dir / "a.txt", 10)
    write_file(temp_dir / "sub" / "a.txt", 10)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False)
    stats = await scanner.start_watch()

    assert stats["files_found"] == 2
    assert stats["duplicates_found"] == 1
    assert [e.identity_key for e in scanner.aggregator.duplicates] == ["a.txt_10"]
    # Report-only mode keeps both files
    assert (temp_dir / "a.txt").exists()
    assert (temp_dir / "sub" / "a.txt").exists()


@pytest.mark.asyncio
async def test_same_name_different_size(temp_dir):
    write_file(temp_dir / "one" / "a.txt", 10)
    write_file(temp_dir / "two" / "a.txt", 20)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False)
    stats = await scanner.start_watch()

    assert stats["duplicates_found"] == 0
    assert scanner.aggregator.observed == {"a.txt_10", "a.txt_20"}


@pytest.mark.asyncio
async def test_empty_root(temp_dir):
    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=True)
    stats = await scanner.start_watch()

    assert stats["files_found"] == 0
    assert stats["dirs_scanned"] == 1
    assert stats["errors"] == 0
    assert scanner.options.current_workers == 0


@pytest.mark.asyncio
async def test_single_worker_matches_unbounded(temp_dir):
    current = temp_dir
    for level in range(5):
        write_file(current / f"file{level}.txt", level)
        write_file(current / "dup.txt", 42)
        current = current / f"level{level}"
    current.mkdir()

    single = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, max_workers=1)
    single_stats = await single.start_watch()
    unbounded = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, max_workers=-1)
    unbounded_stats = await unbounded.start_watch()

    assert single_stats["files_found"] == unbounded_stats["files_found"] == 10
    assert single_stats["dirs_scanned"] == unbounded_stats["dirs_scanned"] == 6
    assert single_stats["duplicates_found"] == unbounded_stats["duplicates_found"] == 4
    assert single_stats["peak_workers"] == 1
    assert unbounded_stats["peak_workers"] > 1


@pytest.mark.asyncio
async def test_auto_remove_deletes_all_but_one(temp_dir):
    for i in range(5):
        write_file(temp_dir / f"dir{i}" / "copy.bin", 100)
    write_file(temp_dir / "unique.bin", 100)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, delete_duplicates=True)
    stats = await scanner.start_watch()

    remaining = list(temp_dir.rglob("copy.bin"))
    assert len(remaining) == 1
    assert (temp_dir / "unique.bin").exists()
    assert stats["duplicates_deleted"] == 4
    assert stats["bytes_freed"] == 400


@pytest.mark.asyncio
async def test_interactive_removal(temp_dir):
    write_file(temp_dir / "a.txt", 10)
    write_file(temp_dir / "sub" / "a.txt", 10)
    output = io.StringIO()
    prompt = ConfirmationPrompt(input_func=iter(["x", "x", "y"]).__next__, output=output)

    scanner = DuplicateScanner(
        root_path=str(temp_dir), require_confirmation=True, delete_duplicates=True, prompt=prompt
    )
    stats = await scanner.start_watch()

    assert stats["duplicates_deleted"] == 1
    assert output.getvalue().count("Invalid input") == 2
    assert len(list(temp_dir.rglob("a.txt"))) == 1


@pytest.mark.asyncio
async def test_missing_root_is_startup_error(temp_dir):
    scanner = DuplicateScanner(root_path=str(temp_dir / "missing"))

    with pytest.raises(StartupError):
        await scanner.start_watch()


@pytest.mark.asyncio
async def test_file_root_is_startup_error(temp_dir):
    root_file = write_file(temp_dir / "file.txt", 1)

    with pytest.raises(StartupError):
        await async_main(path=str(root_file))


@pytest.mark.asyncio
async def test_branch_error_does_not_fail_scan(temp_dir, monkeypatch, caplog):
    write_file(temp_dir / "broken" / "a.txt", 1)
    write_file(temp_dir / "ok" / "a.txt", 1)
    write_file(temp_dir / "a.txt", 1)

    original_scandir = walker_module.async_scandir_names

    async def failing_scandir(path):
        if path.name == "broken":
            raise PermissionError(13, "Permission denied", str(path))
        return await original_scandir(path)

    monkeypatch.setattr(walker_module, "async_scandir_names", failing_scandir)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False)
    stats = await scanner.start_watch()

    assert stats["errors"] == 1
    assert stats["files_found"] == 2
    assert stats["duplicates_found"] == 1
    assert any(r.message == "Walker branch failed" for r in caplog.records)


@pytest.mark.asyncio
async def test_root_error_is_fatal(temp_dir, monkeypatch):
    async def failing_scandir(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(walker_module, "async_scandir_names", failing_scandir)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=True)

    with pytest.raises(RootWalkError):
        await scanner.start_watch()

    assert scanner.options.current_workers == 0


@pytest.mark.asyncio
async def test_aggregator_crash_does_not_hang(temp_dir):
    for i in range(5):
        write_file(temp_dir / f"dir{i}" / f"file{i}.txt", i)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False)

    async def crash(event):
        raise RuntimeError("boom")

    scanner.aggregator.handle_file = crash

    with pytest.raises(RuntimeError, match="boom"):
        await asyncio.wait_for(scanner.start_watch(), timeout=5)


@pytest.mark.asyncio
async def test_startup_and_completion_logs(temp_dir, caplog):
    write_file(temp_dir / "a.txt", 1)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, delete_duplicates=True)
    await scanner.start_watch()

    startup = next(r for r in caplog.records if r.message == "Starting duplicate scan")
    assert startup.category == "scan"
    assert startup.extra_fields["delete_duplicates"] is True
    assert startup.extra_fields["require_confirmation"] is False
    assert startup.extra_fields["version"] is not None

    completed = next(r for r in caplog.records if r.message == "Scan completed")
    assert completed.extra_fields["files_found"] == 1


@pytest.mark.asyncio
async def test_progress_reporter_logs(temp_dir, caplog):
    scanner = DuplicateScanner(root_path=str(temp_dir), progress_interval=0.05)

    reporter = asyncio.create_task(scanner._background_progress_reporter())
    await asyncio.sleep(0.2)
    reporter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await reporter

    progress = [r for r in caplog.records if r.message == "Progress update"]
    assert progress
    assert progress[0].category == "progress"
    assert "files_found" in progress[0].extra_fields


@pytest.mark.asyncio
@pytest.mark.integration
async def test_wide_tree_with_bounded_workers(temp_dir):
    """20 directories holding the same 20 files: every identity kept once."""
    for dir_num in range(20):
        for file_num in range(20):
            write_file(temp_dir / f"dir{dir_num}" / f"file{file_num}.txt", file_num)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, max_workers=4)
    stats = await scanner.start_watch()

    assert stats["files_found"] == 400
    assert stats["dirs_scanned"] == 21
    assert stats["duplicates_found"] == 380
    assert len(scanner.aggregator.observed) == 20
    assert stats["peak_workers"] <= 4
    assert scanner.options.current_workers == 0


@pytest.mark.asyncio
async def test_deep_tree_does_not_fail_scan(temp_dir):
    current = temp_dir
    for _ in range(600):
        current = current / "d"
    write_file(current / "a.txt", 10)
    write_file(temp_dir / "a.txt", 10)

    scanner = DuplicateScanner(root_path=str(temp_dir), require_confirmation=False, max_workers=1)
    stats = await scanner.start_watch()

    assert stats["dirs_scanned"] == 601
    assert stats["files_found"] == 2
    assert stats["duplicates_found"] == 1
    assert stats["errors"] == 0
