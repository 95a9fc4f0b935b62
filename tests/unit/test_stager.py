"""
Unit tests for ArtifactStager: workspaces, downloads, extraction and
project root resolution.
"""

import os

import httpx
import pytest

from macbridge_agent.errors import DownloadError, ExtractionError, ProjectNotFoundError
from macbridge_agent.retry import RetryPolicy
from macbridge_agent.stager import ArtifactStager, extract_archive, find_project_root


ARCHIVE_BYTES = b"PK-fake-archive-bytes"


def make_stager(tmp_path, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ArtifactStager(
        jobs_dir=tmp_path / "jobs",
        outputs_dir=tmp_path / "outputs",
        http_client=client,
        retry_policy=RetryPolicy(max_attempts=2, initial_backoff=0.0),
        **kwargs,
    )


# ============================================================================
# Workspace
# ============================================================================


class TestPrepareWorkspace:
    """Tests for per-job workspace creation."""

    def test_layout(self, tmp_path):
        stager = ArtifactStager(tmp_path / "jobs", tmp_path / "outputs")
        workspace = stager.prepare_workspace("abc")

        assert workspace.root == tmp_path / "jobs" / "abc"
        assert workspace.archive_path == tmp_path / "jobs" / "abc.zip"
        assert workspace.output_path == tmp_path / "outputs" / "abc.app"
        assert workspace.root.is_dir()
        assert (tmp_path / "outputs").is_dir()

    def test_stale_workspace_is_destroyed(self, tmp_path):
        stager = ArtifactStager(tmp_path / "jobs", tmp_path / "outputs")
        stale = tmp_path / "jobs" / "abc" / "old_project"
        stale.mkdir(parents=True)
        (stale / "pubspec.yaml").write_text("name: old\n")
        (tmp_path / "jobs" / "abc.zip").write_bytes(b"old archive")

        workspace = stager.prepare_workspace("abc")

        assert workspace.root.is_dir()
        assert list(workspace.root.iterdir()) == []
        assert not workspace.archive_path.exists()

    @pytest.mark.parametrize("job_id", ["../escape", "a/b", "", ".."])
    def test_unsafe_job_id_rejected(self, tmp_path, job_id):
        stager = ArtifactStager(tmp_path / "jobs", tmp_path / "outputs")
        with pytest.raises(ValueError):
            stager.prepare_workspace(job_id)
        assert not (tmp_path / "jobs").exists()


# ============================================================================
# Download
# ============================================================================


class TestDownload:
    """Tests for archive download with redirect handling."""

    @pytest.mark.asyncio
    async def test_direct_download(self, tmp_path):
        stager = make_stager(tmp_path, lambda request: httpx.Response(200, content=ARCHIVE_BYTES))
        dest = tmp_path / "jobs" / "abc.zip"

        result = await stager.download("https://files.example.com/abc.zip", dest)

        assert result == dest
        assert dest.read_bytes() == ARCHIVE_BYTES

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [301, 302, 303, 307, 308])
    async def test_follows_redirect_chain(self, tmp_path, status):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.host == "files.example.com":
                return httpx.Response(status, headers={"Location": "https://cdn.example.com/start"})
            if request.url.path == "/start":
                return httpx.Response(status, headers={"Location": "/final.zip"})
            return httpx.Response(200, content=ARCHIVE_BYTES)

        stager = make_stager(tmp_path, handler)
        dest = tmp_path / "abc.zip"
        await stager.download("https://files.example.com/abc.zip", dest)

        assert seen == [
            "https://files.example.com/abc.zip",
            "https://cdn.example.com/start",
            "https://cdn.example.com/final.zip",
        ]
        assert dest.read_bytes() == ARCHIVE_BYTES

    @pytest.mark.asyncio
    async def test_redirect_without_location_fails(self, tmp_path):
        stager = make_stager(tmp_path, lambda request: httpx.Response(302))

        with pytest.raises(DownloadError, match="Redirect with no location header"):
            await stager.download("https://files.example.com/abc.zip", tmp_path / "abc.zip")

    @pytest.mark.asyncio
    async def test_non_200_final_status_fails(self, tmp_path):
        stager = make_stager(tmp_path, lambda request: httpx.Response(404))

        with pytest.raises(DownloadError, match="Download failed: 404") as exc_info:
            await stager.download("https://files.example.com/abc.zip", tmp_path / "abc.zip")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_redirect_loop_is_bounded(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(302, headers={"Location": "/again"})

        stager = make_stager(tmp_path, handler, max_redirects=3)

        with pytest.raises(DownloadError, match="Too many redirects"):
            await stager.download("https://files.example.com/abc.zip", tmp_path / "abc.zip")
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("connection reset")
            return httpx.Response(200, content=ARCHIVE_BYTES)

        stager = make_stager(tmp_path, handler)
        dest = tmp_path / "abc.zip"
        await stager.download("https://files.example.com/abc.zip", dest)

        assert len(calls) == 2
        assert dest.read_bytes() == ARCHIVE_BYTES

    @pytest.mark.asyncio
    async def test_persistent_transport_error_becomes_download_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        stager = make_stager(tmp_path, handler)

        with pytest.raises(DownloadError, match="unreachable"):
            await stager.download("https://files.example.com/abc.zip", tmp_path / "abc.zip")

    @pytest.mark.asyncio
    async def test_http_errors_are_not_retried(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(500)

        stager = make_stager(tmp_path, handler)

        with pytest.raises(DownloadError):
            await stager.download("https://files.example.com/abc.zip", tmp_path / "abc.zip")
        assert len(calls) == 1


# ============================================================================
# Extraction
# ============================================================================


class TestExtract:
    """Tests for archive extraction."""

    def test_reproduces_nested_structure(self, tmp_path, zip_builder):
        archive = tmp_path / "abc.zip"
        archive.write_bytes(zip_builder({
            "my_app/": None,
            "my_app/assets/images/": None,
            "my_app/pubspec.yaml": b"name: my_app\n",
            "my_app/lib/src/widgets/button.dart": b"class Button {}\n",
            "my_app/ios/Runner/Info.plist": b"<plist/>",
        }))
        dest = tmp_path / "out"

        count = extract_archive(archive, dest)

        assert count == 3
        assert (dest / "my_app" / "assets" / "images").is_dir()
        assert (dest / "my_app" / "lib" / "src" / "widgets" / "button.dart").read_bytes() == b"class Button {}\n"
        assert (dest / "my_app" / "ios" / "Runner" / "Info.plist").is_file()

    def test_file_entries_without_directory_entries(self, tmp_path, zip_builder):
        archive = tmp_path / "abc.zip"
        archive.write_bytes(zip_builder({"a/b/c/d.txt": b"deep"}))

        extract_archive(archive, tmp_path / "out")

        assert (tmp_path / "out" / "a" / "b" / "c" / "d.txt").read_bytes() == b"deep"

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "abc.zip"
        archive.write_bytes(b"this is not a zip file")

        with pytest.raises(ExtractionError, match="Corrupt archive"):
            extract_archive(archive, tmp_path / "out")

    @pytest.mark.parametrize("offset,value", [
        (8, 0x01),  # general purpose flags: encrypted
        (10, 99),  # compression method: not supported
    ])
    def test_unreadable_entry(self, tmp_path, zip_builder, offset, value):
        data = bytearray(zip_builder({"my_app/pubspec.yaml": b"name: my_app\n"}))
        central = data.index(b"PK\x01\x02")
        data[central + offset] = value
        archive = tmp_path / "abc.zip"
        archive.write_bytes(bytes(data))

        with pytest.raises(ExtractionError, match="Unreadable archive entry"):
            extract_archive(archive, tmp_path / "out")

    @pytest.mark.parametrize("name", ["../evil.txt", "my_app/../../evil.txt", "/etc/evil.txt"])
    def test_path_traversal_rejected(self, tmp_path, zip_builder, name):
        archive = tmp_path / "abc.zip"
        archive.write_bytes(zip_builder({"my_app/pubspec.yaml": b"x", name: b"evil"}))

        with pytest.raises(ExtractionError, match="Unsafe path"):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "evil.txt").exists()
        assert not (tmp_path / "out").exists()

    @pytest.mark.asyncio
    async def test_async_extract(self, tmp_path, project_archive):
        stager = ArtifactStager(tmp_path / "jobs", tmp_path / "outputs")
        archive = tmp_path / "abc.zip"
        archive.write_bytes(project_archive)

        count = await stager.extract(archive, tmp_path / "out")

        assert count == 5
        assert (tmp_path / "out" / "my_app" / "pubspec.yaml").is_file()


# ============================================================================
# Project Root
# ============================================================================


class TestResolveProjectRoot:
    """Tests for project root discovery."""

    def test_root_itself(self, tmp_path):
        (tmp_path / "pubspec.yaml").write_text("name: x\n")
        assert find_project_root(tmp_path) == tmp_path

    def test_deeply_nested(self, tmp_path):
        deep = tmp_path / "a" / "b" / "c" / "d"
        deep.mkdir(parents=True)
        (deep / "pubspec.yaml").write_text("name: x\n")

        assert find_project_root(tmp_path) == deep

    def test_depth_first_lexicographic(self, tmp_path):
        for project in ("b_app", "a_dir/nested_app", "c_app"):
            (tmp_path / project).mkdir(parents=True)
            (tmp_path / project / "pubspec.yaml").write_text("name: x\n")

        assert find_project_root(tmp_path) == tmp_path / "a_dir" / "nested_app"

    def test_parent_checked_before_children(self, tmp_path):
        (tmp_path / "app" / "example").mkdir(parents=True)
        (tmp_path / "app" / "pubspec.yaml").write_text("name: app\n")
        (tmp_path / "app" / "example" / "pubspec.yaml").write_text("name: example\n")

        assert find_project_root(tmp_path) == tmp_path / "app"

    def test_marker_must_be_a_file(self, tmp_path):
        (tmp_path / "x" / "pubspec.yaml").mkdir(parents=True)
        assert find_project_root(tmp_path) is None

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinked_directories_not_followed(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "pubspec.yaml").write_text("name: outside\n")
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)

        assert find_project_root(root) is None

    def test_not_found_raises(self, tmp_path):
        (tmp_path / "lib").mkdir()
        stager = ArtifactStager(tmp_path / "jobs", tmp_path / "outputs")

        with pytest.raises(ProjectNotFoundError, match="pubspec.yaml not found"):
            stager.resolve_project_root(tmp_path)

    def test_resolution_is_deterministic(self, flutter_project):
        stager = ArtifactStager(flutter_project.parent / "jobs", flutter_project.parent / "outputs")
        root = flutter_project.parent

        results = {stager.resolve_project_root(root) for _ in range(5)}

        assert results == {flutter_project}
