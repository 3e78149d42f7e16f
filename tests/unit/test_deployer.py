"""
Tests for wimdeploy.deploy.deployer module.
"""

from pathlib import Path

import pytest

from wimdeploy.core.exceptions import (
    CommandError,
    DiskNotFound,
    FeatureInstallError,
    InvalidSourceMedia,
    NoOSPartition,
    OperationFailed,
)
from wimdeploy.core.models import (
    CustomizationRequest,
    DeploymentRequest,
    DiskLayout,
    PartitionType,
)
from wimdeploy.deploy.deployer import Deployer

T = PartitionType

MUTATING_CALLS = {
    "assign_drive_letter",
    "mount_disk_image",
    "copy_file",
    "apply_image",
    "write_boot_files",
    "set_boot_element",
}


@pytest.fixture
def deployer(fake_backend, sample_config) -> Deployer:
    return Deployer(fake_backend, sample_config)


class TestEndToEnd:
    """Full deployments against the recording backend."""

    def test_wim_onto_system_and_basic(self, fake_backend, deployer, wim_file) -> None:
        parts = fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        parts[0].drive_letter = "S"
        parts[1].drive_letter = "W"

        result = deployer.deploy(DeploymentRequest(disk_number=1, source=wim_file))

        assert result.layout == DiskLayout.UEFI
        assert result.stages == ["apply", "boot"]
        assert str(result.windows_root) == "W:\\"
        assert [c[0] for c in fake_backend.calls] == ["get_partitions", "apply_image", "write_boot_files"]
        assert fake_backend.calls_to("apply_image") == [
            ("apply_image", str(wim_file.resolve()), 1, "W:\\")
        ]
        assert fake_backend.calls_to("write_boot_files") == [
            ("write_boot_files", "W:\\Windows", "S:", "UEFI")
        ]
        assert parts[0].drive_letter == "S"
        assert parts[1].drive_letter == "W"
        assert result.ended_at is not None

    def test_iso_onto_ifs_only(self, fake_backend, deployer, iso_file) -> None:
        parts = fake_backend.add_disk(2, T.IFS)
        fake_backend.existing_paths.add("D:\\sources\\install.wim")

        result = deployer.deploy(DeploymentRequest(disk_number=2, source=iso_file))

        assert result.layout == DiskLayout.BIOS
        letter = parts[0].drive_letter
        assert letter == "E"
        assert [c[0] for c in fake_backend.calls] == [
            "get_partitions",
            "mount_disk_image",
            "assign_drive_letter",
            "apply_image",
            "write_boot_files",
            "set_boot_element",
            "set_boot_element",
            "set_boot_element",
            "dismount_disk_image",
        ]
        assert fake_backend.calls_to("apply_image")[0][1:] == ("D:\\sources\\install.wim", 1, "E:\\")
        assert fake_backend.calls_to("write_boot_files")[0][1:] == ("E:\\Windows", "E:", "BIOS")
        # The OS partition keeps its letter
        assert fake_backend.calls_to("remove_drive_letter") == []

    def test_full_layout_with_recovery(self, fake_backend, deployer, wim_file, temp_dir) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.RESERVED, T.BASIC, T.RECOVERY, T.RECOVERY)
        unattend = temp_dir / "unattend.xml"
        unattend.write_text("<unattend/>")
        request = DeploymentRequest(
            disk_number=1,
            source=wim_file,
            index=2,
            customization=CustomizationRequest(unattend=unattend),
        )

        result = deployer.deploy(request)

        assert result.stages == ["recovery_image", "apply", "unattend", "boot", "recovery"]
        letters = {c[2]: chr(ord("E") + i) for i, c in enumerate(fake_backend.calls_to("assign_drive_letter"))}
        assert sorted(letters) == [1, 3, 4, 5]

        names = [c[0] for c in fake_backend.calls]
        assert names.index("copy_file") < names.index("apply_image")
        assert names.index("write_boot_files") < names.index("set_os_image")
        assert fake_backend.calls_to("set_os_image") == [
            ("set_os_image", f"{letters[5]}:\\Recovery", 2, f"{letters[3]}:\\Windows")
        ]

        removed = sorted(c[2] for c in fake_backend.calls_to("remove_drive_letter"))
        assert removed == [1, 4, 5]

    def test_native_boot(self, fake_backend, deployer, wim_file) -> None:
        fake_backend.add_disk(1, T.IFS)

        result = deployer.deploy(DeploymentRequest(disk_number=1, source=wim_file, native_boot=True))

        assert result.stages == ["apply"]
        assert fake_backend.calls_to("write_boot_files") == []
        assert fake_backend.calls_to("set_boot_element") == []


class TestFailures:
    """Errors carry the disk number and never skip cleanup."""

    def test_unknown_disk(self, deployer, wim_file) -> None:
        with pytest.raises(DiskNotFound) as exc_info:
            deployer.deploy(DeploymentRequest(disk_number=9, source=wim_file))

        assert exc_info.value.disk_number == 9

    def test_no_os_partition_before_any_mutation(self, fake_backend, deployer, iso_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.RESERVED, T.RECOVERY)

        with pytest.raises(NoOSPartition):
            deployer.deploy(DeploymentRequest(disk_number=1, source=iso_file))

        assert not {c[0] for c in fake_backend.calls} & MUTATING_CALLS

    def test_invalid_media_assigns_no_letters(self, fake_backend, deployer, iso_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        with pytest.raises(InvalidSourceMedia) as exc_info:
            deployer.deploy(DeploymentRequest(disk_number=1, source=iso_file))

        assert exc_info.value.disk_number == 1
        assert fake_backend.calls_to("assign_drive_letter") == []
        assert len(fake_backend.calls_to("dismount_disk_image")) == 1

    def test_apply_failure_cleans_up(self, fake_backend, deployer, iso_file) -> None:
        fake_backend.add_disk(4, T.SYSTEM, T.BASIC, T.RECOVERY)
        fake_backend.existing_paths.add("D:\\sources\\install.wim")
        fake_backend.fail_on["apply_image"] = CommandError(["dism.exe"], 1392, "The file or directory is corrupted")

        with pytest.raises(OperationFailed) as exc_info:
            deployer.deploy(DeploymentRequest(disk_number=4, source=iso_file))

        assert exc_info.value.disk_number == 4
        assert str(exc_info.value).startswith("Disk 4: ")
        assert sorted(c[2] for c in fake_backend.calls_to("remove_drive_letter")) == [1, 3]
        assert len(fake_backend.calls_to("dismount_disk_image")) == 1
        assert fake_backend.calls_to("write_boot_files") == []
        # Letters are released before the ISO is dismounted
        names = [c[0] for c in fake_backend.calls]
        assert names.index("remove_drive_letter") < names.index("dismount_disk_image")

    def test_source_released_before_failure_reported(self, fake_backend, deployer, iso_file, mocker) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        fake_backend.existing_paths.add("D:\\sources\\install.wim")
        fake_backend.fail_on["apply_image"] = CommandError(["dism.exe"], 2, "failed")
        events: list[str] = []
        mocker.patch.object(fake_backend, "dismount_disk_image", side_effect=lambda path: events.append("dismount"))
        module_logger = mocker.patch("wimdeploy.deploy.deployer.logger")
        module_logger.bind.return_value.error.side_effect = lambda *args, **kwargs: events.append("reported")

        with pytest.raises(OperationFailed):
            deployer.deploy(DeploymentRequest(disk_number=1, source=iso_file))

        assert events == ["dismount", "reported"]

    def test_assigned_letters_match_removed(self, fake_backend, deployer, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.RESERVED, T.BASIC, T.RECOVERY, T.FAT32)
        fake_backend.fail_on["write_boot_files"] = CommandError(["bcdboot.exe"], 1, "failed")

        with pytest.raises(OperationFailed):
            deployer.deploy(DeploymentRequest(disk_number=1, source=wim_file))

        assigned = {c[2] for c in fake_backend.calls_to("assign_drive_letter")}
        removed = {c[2] for c in fake_backend.calls_to("remove_drive_letter")}
        assert assigned == {1, 3, 4, 5}
        assert removed == assigned - {3}

    def test_feature_failure_propagates_with_disk(self, fake_backend, deployer, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        fake_backend.fail_on["enable_features"] = CommandError(["dism.exe"], 0x800F081F, "source missing")
        request = DeploymentRequest(
            disk_number=1,
            source=wim_file,
            customization=CustomizationRequest(features=["NetFx3"]),
        )

        with pytest.raises(FeatureInstallError) as exc_info:
            deployer.deploy(request)

        assert exc_info.value.disk_number == 1
        assert fake_backend.calls_to("write_boot_files") == []
        assert len(fake_backend.calls_to("unmount_image")) == 1

    def test_unexpected_error_wrapped(self, fake_backend, deployer, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        fake_backend.fail_on["apply_image"] = RuntimeError("backend exploded")

        with pytest.raises(OperationFailed, match="backend exploded") as exc_info:
            deployer.deploy(DeploymentRequest(disk_number=1, source=wim_file))

        assert exc_info.value.disk_number == 1
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert len(fake_backend.calls_to("remove_drive_letter")) == 1


class TestDescribeSteps:
    def test_bios_plan(self, fake_backend, deployer) -> None:
        fake_backend.add_disk(1, T.IFS)
        request = DeploymentRequest(
            disk_number=1,
            source=Path("C:/media/Win11.iso"),
            customization=CustomizationRequest(features=["NetFx3"], remove_features=["SMB1Protocol"]),
        )

        steps = deployer.describe_steps(request, deployer.inspect(1))

        assert steps[0].startswith("Mount ISO")
        assert "Enable features: NetFx3" in steps
        assert "Disable features: SMB1Protocol" in steps
        assert "Switch 3 BCD entries to locate devices" in steps
        assert steps[-1] == "Remove temporary drive letters and dismount sources"

    def test_native_boot_plan(self, fake_backend, deployer) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        request = DeploymentRequest(disk_number=1, source=Path("C:/images/install.wim"), native_boot=True)

        steps = deployer.describe_steps(request, deployer.inspect(1))

        assert "Skip boot files (native boot)" in steps
        assert not any("BCD" in s for s in steps)
