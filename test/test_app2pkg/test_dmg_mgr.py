import tempfile
from pathlib import Path

import pytest

from app2pkg.archive import ArchiveExtractor
from app2pkg.config import BuildConfig
from app2pkg.dmg_mgr import DiskImageManager, MountedVolume
from app2pkg.errors import InputError, ToolError
from app2pkg.inputs import InputArtifact, InputKind, InputResolver
from app2pkg.pkg_root import BuildWorkspace

from fake_tools import FakeRunner, make_app, make_tbz, make_zip


@pytest.fixture
def env():
    with tempfile.TemporaryDirectory() as td:
        base = Path(td)
        (base / "mnt").mkdir()
        (base / "work").mkdir()
        (base / "in").mkdir()
        config = BuildConfig(mount_root=str(base / "mnt"), work_root=base / "work")
        yield base, config, FakeRunner()


def _image(base: Path, runner: FakeRunner, name: str = "MyApp.dmg") -> Path:
    contents = base / ("contents-" + name)
    contents.mkdir()
    make_app(contents)
    (contents / "Applications").mkdir()
    runner.images[name] = contents
    dmg = base / "in" / name
    dmg.write_bytes(b"IMAGE")
    return dmg


@pytest.mark.asyncio
async def test_mount_and_unmount(env):
    base, config, runner = env
    dmg = _image(base, runner)
    volumes = DiskImageManager(runner, config)

    volume = await volumes.mount(dmg)
    assert volume.dmg_path == dmg
    assert volume.mount_point.parent == base / "mnt"
    assert (volume.mount_point / "MyApp.app").is_dir()
    attach = runner.tool_calls("hdiutil")[-1]
    assert attach[1:3] == ["attach", str(dmg)]
    assert "-nobrowse" in attach

    volumes.unmount(volume)
    assert runner.detached == [volume.mount_point]
    assert runner.tool_calls("hdiutil")[-1][-1] == "-quiet"


@pytest.mark.asyncio
async def test_license_agreement_converted_in_place(env):
    base, config, runner = env
    dmg = _image(base, runner)
    runner.licensed.add(dmg.name)
    volumes = DiskImageManager(runner, config)

    assert await volumes.has_license_agreement(dmg)
    assert await volumes.convert_licensed_image(dmg)
    assert dmg.read_bytes() == b"UDRW:IMAGE"
    # no conversion scratch left beside the image
    assert sorted(p.name for p in dmg.parent.iterdir()) == [dmg.name]
    assert not await volumes.convert_licensed_image(dmg)


@pytest.mark.asyncio
async def test_imageinfo_failure_means_no_license(env):
    base, config, runner = env
    dmg = _image(base, runner)
    runner.failures["hdiutil imageinfo"] = 1
    assert not await DiskImageManager(runner, config).has_license_agreement(dmg)


class _MalformedPlistRunner(FakeRunner):
    def _tool_hdiutil(self, args):
        if args[0] in ("imageinfo", "attach"):
            return "<?xml version='1.0'?><plist><dict><key>Properties</key></plist>"
        return super()._tool_hdiutil(args)


@pytest.mark.asyncio
async def test_malformed_imageinfo_means_no_license(env):
    base, config, _ = env
    runner = _MalformedPlistRunner()
    dmg = _image(base, runner)
    assert not await DiskImageManager(runner, config).has_license_agreement(dmg)


@pytest.mark.asyncio
async def test_malformed_attach_output(env):
    base, config, _ = env
    runner = _MalformedPlistRunner()
    dmg = _image(base, runner)
    with pytest.raises(ToolError):
        await DiskImageManager(runner, config).mount(dmg)


@pytest.mark.asyncio
async def test_attach_failure(env):
    base, config, runner = env
    dmg = _image(base, runner)
    runner.failures["hdiutil attach"] = 1
    with pytest.raises(ToolError):
        await DiskImageManager(runner, config).mount(dmg)


def test_unmount_failure_is_swallowed(env):
    base, config, runner = env
    runner.failures["hdiutil detach"] = 16
    DiskImageManager(runner, config).unmount(MountedVolume(base / "x.dmg", base / "mnt" / "gone"))


def test_input_kinds():
    assert InputArtifact.from_path("/x/A.app").kind is InputKind.APP
    assert InputArtifact.from_path("/x/A.DMG").kind is InputKind.DMG
    assert InputArtifact.from_path("/x/A.zip").kind is InputKind.ZIP
    assert InputArtifact.from_path("/x/A.tbz").kind is InputKind.TBZ
    with pytest.raises(InputError):
        InputArtifact.from_path("/x/A.pkg")


def _resolver(config, runner):
    return InputResolver(DiskImageManager(runner, config), ArchiveExtractor(runner, config), config)


@pytest.mark.asyncio
async def test_resolve_zip_with_app(env):
    base, config, runner = env
    src = base / "zipsrc"
    src.mkdir()
    make_app(src)
    archive = make_zip(base / "in" / "MyApp.zip", src)

    workspace = BuildWorkspace.create(config.work_root)
    mounts = []
    bundle = await _resolver(config, runner).resolve(InputArtifact.from_path(archive), workspace, mounts)
    assert bundle == workspace.scratch / "input" / "unzipped" / "MyApp.app"
    assert mounts == []


@pytest.mark.asyncio
async def test_resolve_zip_with_embedded_dmg(env):
    base, config, runner = env
    _image(base, runner, name="Inner.dmg")
    src = base / "zipsrc"
    (src / "nested").mkdir(parents=True)
    (src / "nested" / "Inner.dmg").write_bytes(b"IMAGE")
    make_app(src, name="Decoy")
    archive = make_zip(base / "in" / "Bundle.zip", src)

    workspace = BuildWorkspace.create(config.work_root)
    mounts = []
    bundle = await _resolver(config, runner).resolve(InputArtifact.from_path(archive), workspace, mounts)
    assert bundle.name == "MyApp.app"
    assert len(mounts) == 1
    assert bundle.parent == mounts[0].mount_point


@pytest.mark.asyncio
async def test_resolve_tbz(env):
    base, config, runner = env
    src = base / "tbzsrc"
    (src / "deep" / "er").mkdir(parents=True)
    make_app(src / "deep" / "er")
    archive = make_tbz(base / "in" / "MyApp.tbz", src)

    workspace = BuildWorkspace.create(config.work_root)
    bundle = await _resolver(config, runner).resolve(InputArtifact.from_path(archive), workspace, [])
    assert bundle == workspace.scratch / "input" / "extracted" / "deep" / "er" / "MyApp.app"


@pytest.mark.asyncio
async def test_resolve_dmg_without_app_registers_mount(env):
    base, config, runner = env
    contents = base / "empty-contents"
    contents.mkdir()
    (contents / "README").write_text("nothing here")
    runner.images["Empty.dmg"] = contents
    dmg = base / "in" / "Empty.dmg"
    dmg.write_bytes(b"IMAGE")

    workspace = BuildWorkspace.create(config.work_root)
    mounts = []
    with pytest.raises(InputError):
        await _resolver(config, runner).resolve(InputArtifact.from_path(dmg), workspace, mounts)
    assert len(mounts) == 1


@pytest.mark.asyncio
async def test_resolve_missing_input(env):
    base, config, runner = env
    workspace = BuildWorkspace.create(config.work_root)
    with pytest.raises(InputError):
        await _resolver(config, runner).resolve(InputArtifact.from_path(base / "in" / "Nope.app"), workspace, [])
