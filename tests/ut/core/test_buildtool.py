"""makepkg 构建封装测试"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from aurbuild.core.buildtool import MakepkgBuildTool, artifact_version
from aurbuild.core.exceptions import BuildFailureError
from aurbuild.core.models import COMPLETE_MARKER, RecipeHandle
from aurbuild.utils.shell import CommandResult
from tests.fakes import FakeExecutor, write_recipe


@pytest.fixture()
def handle(tmp_path: Path) -> RecipeHandle:
    path = write_recipe(tmp_path / "src", "foo")
    (path / COMPLETE_MARKER).write_text("{}", encoding="utf-8")
    return RecipeHandle(name="foo", path=path, version="1.0-1")


def _writes_package(*names: str):
    def handler(args, *, cwd, env):
        dest = Path(env["PKGDEST"])
        for n in names:
            (dest / n).write_bytes(b"pkg")
        return CommandResult(0, "==> Finished making: foo", "")
    return handler


class TestMakepkgBuildTool:
    def test_build_collects_artifacts(self, handle: RecipeHandle, tmp_path: Path) -> None:
        ex = FakeExecutor(_writes_package(
            "foo-1.0-1-x86_64.pkg.tar.zst",
            "foo-1.0-1-x86_64.pkg.tar.zst.sig",
            "foo-debug-1.0-1-x86_64.pkg.tar.zst",
        ))
        out = tmp_path / "pkg" / "foo"
        artifact = MakepkgBuildTool(executor=ex).build(handle, out, timeout=60)
        assert [f.name for f in artifact.files] == [
            "foo-1.0-1-x86_64.pkg.tar.zst", "foo-debug-1.0-1-x86_64.pkg.tar.zst",
        ]
        call = ex.calls[0]
        assert call["cmd"] == ["makepkg", "-f", "--noconfirm"]
        assert call["cwd"] == str(handle.path)
        assert call["env"]["PKGDEST"] == str(out.resolve())
        assert call["timeout"] == 60
        assert artifact.version == "1.0-1"

    def test_output_dir_cleaned(self, handle: RecipeHandle, tmp_path: Path) -> None:
        out = tmp_path / "pkg" / "foo"
        out.mkdir(parents=True)
        (out / "foo-0.9-1-any.pkg.tar.zst").write_bytes(b"old")
        ex = FakeExecutor(_writes_package("foo-1.0-1-any.pkg.tar.zst"))
        artifact = MakepkgBuildTool(executor=ex).build(handle, out)
        assert [f.name for f in artifact.files] == ["foo-1.0-1-any.pkg.tar.zst"]

    def test_version_read_from_artifact(self, handle: RecipeHandle, tmp_path: Path) -> None:
        """VCS 包构建后的 pkgver 以产物文件名为准"""
        ex = FakeExecutor(_writes_package(
            "foo-debug-1.1.r5.g3e2a-1-x86_64.pkg.tar.zst",
            "foo-1.1.r5.g3e2a-1-x86_64.pkg.tar.zst",
        ))
        artifact = MakepkgBuildTool(executor=ex).build(handle, tmp_path / "pkg" / "foo")
        assert artifact.version == "1.1.r5.g3e2a-1"

    def test_unrecognized_name_keeps_index_version(self, handle: RecipeHandle, tmp_path: Path) -> None:
        ex = FakeExecutor(_writes_package("foo.pkg.tar.zst"))
        artifact = MakepkgBuildTool(executor=ex).build(handle, tmp_path / "pkg" / "foo")
        assert artifact.version == "1.0-1"

    def test_failure_carries_output(self, handle: RecipeHandle, tmp_path: Path) -> None:
        ex = FakeExecutor(lambda args, **_kw: CommandResult(4, "", "==> ERROR: A failure occurred in build()."))
        with pytest.raises(BuildFailureError) as exc:
            MakepkgBuildTool(executor=ex).build(handle, tmp_path / "out")
        assert "rc=4" in str(exc.value)
        assert "failure occurred in build()" in exc.value.output

    def test_timeout(self, handle: RecipeHandle, tmp_path: Path) -> None:
        def handler(args, **_kw):
            raise subprocess.TimeoutExpired(args, 5, output="compiling...", stderr="")

        with pytest.raises(BuildFailureError, match="构建超时") as exc:
            MakepkgBuildTool(executor=FakeExecutor(handler)).build(handle, tmp_path / "out", timeout=5)
        assert "compiling" in exc.value.output

    def test_terminated_by_cancel(self, handle: RecipeHandle, tmp_path: Path) -> None:
        ex = FakeExecutor(lambda args, **_kw: CommandResult(-15, "", "", terminated=True))
        with pytest.raises(BuildFailureError, match="构建被取消"):
            MakepkgBuildTool(executor=ex).build(handle, tmp_path / "out")

    def test_no_artifacts(self, handle: RecipeHandle, tmp_path: Path) -> None:
        with pytest.raises(BuildFailureError, match="未产出包文件"):
            MakepkgBuildTool(executor=FakeExecutor()).build(handle, tmp_path / "out")

    def test_incomplete_recipe_refused(self, tmp_path: Path) -> None:
        path = write_recipe(tmp_path / "src", "bar")
        ex = FakeExecutor()
        with pytest.raises(BuildFailureError, match="配方目录不完整"):
            MakepkgBuildTool(executor=ex).build(RecipeHandle(name="bar", path=path), tmp_path / "out")
        assert ex.calls == []

    def test_missing_makepkg(self, handle: RecipeHandle, tmp_path: Path) -> None:
        def handler(args, **_kw):
            raise FileNotFoundError("makepkg")

        with pytest.raises(BuildFailureError, match="无法启动构建命令"):
            MakepkgBuildTool(executor=FakeExecutor(handler)).build(handle, tmp_path / "out")


class TestArtifactVersion:
    @pytest.mark.parametrize(("filename", "name", "expected"), [
        ("foo-1.0-1-x86_64.pkg.tar.zst", "foo", "1.0-1"),
        ("foo-2:3.1-4-any.pkg.tar.xz", "foo", "2:3.1-4"),
        ("python-foo-bar-0.5-2-any.pkg.tar.zst", "python-foo-bar", "0.5-2"),
        ("foo-debug-1.0-1-x86_64.pkg.tar.zst", "foo", None),
        ("foo-1.0-1-x86_64.tar.gz", "foo", None),
    ])
    def test_parse(self, filename: str, name: str, expected: str | None) -> None:
        assert artifact_version(Path(filename), name) == expected
