"""
Tests for the wimdeploy command-line interface.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from wimdeploy.cli.main import cli, main
from wimdeploy.core.exceptions import DiskNotFound
from wimdeploy.core.models import ImageIndexInfo, PartitionType
from wimdeploy.core.session import Session

T = PartitionType


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(sample_config, temp_dir):
    path = temp_dir / "config.json"
    sample_config.save(path)
    return path


@pytest.fixture
def invoke(runner, sample_config, fake_backend, config_file, no_battery):
    session = Session(config=sample_config, backend=fake_backend)

    def _invoke(*args: str, input: str | None = None):
        return runner.invoke(cli, ["--config", str(config_file), *args], obj={"session": session}, input=input)

    return _invoke


class TestPartitionsCommand:
    def test_table(self, invoke, fake_backend) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.RESERVED, T.BASIC, T.RECOVERY)

        result = invoke("partitions", "1")

        assert result.exit_code == 0, result.output
        assert "Windows" in result.output
        assert "Recovery Tools" in result.output
        assert "UEFI" in result.output

    def test_json(self, invoke, fake_backend) -> None:
        fake_backend.add_disk(1, T.IFS)

        result = invoke("--json", "partitions", "1")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["layout"] == "BIOS"
        assert data["disk"]["number"] == 1
        assert data["partitions"][0]["roles"] == ["SYSTEM", "WINDOWS"]

    def test_unknown_disk(self, invoke) -> None:
        result = invoke("partitions", "7")

        assert result.exit_code == 1
        assert isinstance(result.exception, DiskNotFound)


class TestImagesCommand:
    def test_json(self, invoke, fake_backend, wim_file) -> None:
        fake_backend.image_indexes = [
            ImageIndexInfo(index=1, name="Windows 11 Home", size_bytes=10),
            ImageIndexInfo(index=2, name="Windows 11 Pro", size_bytes=20),
        ]

        result = invoke("--json", "images", str(wim_file))

        assert result.exit_code == 0, result.output
        assert [i["name"] for i in json.loads(result.output)] == ["Windows 11 Home", "Windows 11 Pro"]

    def test_table(self, invoke, wim_file) -> None:
        result = invoke("images", str(wim_file))

        assert result.exit_code == 0, result.output
        assert "Windows" in result.output


class TestDeployCommand:
    def test_dry_run(self, invoke, fake_backend, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        result = invoke("deploy", "--disk", "1", "--source", str(wim_file), "--feature", "NetFx3", "--dry-run")

        assert result.exit_code == 0, result.output
        assert "DRY RUN" in result.output
        assert "NetFx3" in result.output
        assert fake_backend.calls_to("apply_image") == []
        assert fake_backend.calls_to("assign_drive_letter") == []

    def test_confirmed(self, invoke, fake_backend, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        result = invoke("deploy", "-d", "1", "-s", str(wim_file), input="y\nDESTROY-DISK1\n")

        assert result.exit_code == 0, result.output
        assert "Deployment completed" in result.output
        assert len(fake_backend.calls_to("apply_image")) == 1

    def test_wrong_confirmation_string(self, invoke, fake_backend, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        result = invoke("deploy", "-d", "1", "-s", str(wim_file), input="y\nDESTROY-DISK2\n")

        assert result.exit_code == 1
        assert "not confirmed" in result.output
        assert fake_backend.calls_to("apply_image") == []

    def test_declined(self, invoke, fake_backend, wim_file) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        result = invoke("deploy", "-d", "1", "-s", str(wim_file), input="n\n")

        assert result.exit_code == 1
        assert fake_backend.calls_to("apply_image") == []

    def test_force_with_options(self, invoke, fake_backend, wim_file, temp_dir) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)
        unattend = temp_dir / "autounattend.xml"
        unattend.write_text("<unattend/>")

        result = invoke(
            "--json",
            "deploy",
            "-d", "1",
            "-s", str(wim_file),
            "--index", "2",
            "--unattend", str(unattend),
            "--remove-feature", "SMB1Protocol",
            "--remove-feature", "WorkFolders-Client",
            "--native-boot",
            "--force",
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["stages"] == ["apply", "unattend", "remove_features"]
        assert fake_backend.calls_to("apply_image")[0][2] == 2
        assert [c[2] for c in fake_backend.calls_to("disable_feature")] == ["SMB1Protocol", "WorkFolders-Client"]
        assert fake_backend.calls_to("write_boot_files") == []

    def test_failure_exit_code(self, invoke, fake_backend, temp_dir) -> None:
        fake_backend.add_disk(1, T.SYSTEM, T.BASIC)

        result = invoke("deploy", "-d", "1", "-s", str(temp_dir / "missing.wim"), "--force")

        assert result.exit_code == 1
        assert "Source not found" in result.output

    def test_index_must_be_positive(self, invoke, wim_file) -> None:
        result = invoke("deploy", "-d", "1", "-s", str(wim_file), "--index", "0")

        assert result.exit_code == 2


class TestMain:
    def test_keyboard_interrupt(self) -> None:
        with patch("wimdeploy.cli.main.cli", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 130

    def test_unhandled_error(self) -> None:
        with patch("wimdeploy.cli.main.cli", side_effect=RuntimeError("boom")):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
