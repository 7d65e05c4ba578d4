"""Tests for the Proxmox platform provider."""

import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from nixlxc.models.config import NixLxcConfig
from nixlxc.models.container import ContainerSpec, NetworkSpec
from nixlxc.providers.base import ProviderStatus
from nixlxc.providers.platform import ProxmoxPlatform, parse_key_values, parse_storage_status
from nixlxc.utils.process import CommandResult


PVESM_STATUS = """\
Name             Type     Status           Total            Used       Available        %
local             dir     active        98497780        12345678        81098765   12.53%
local-lvm     lvmthin     active       832888832       104857600       728031232   12.59%
backup            nfs   inactive               0               0               0    0.00%
"""

PCT_CONFIG = """\
arch: amd64
cores: 2
features: nesting=1
hostname: web1
memory: 2048
net0: name=eth0,bridge=vmbr0,hwaddr=BC:24:11:00:00:01,ip=dhcp,type=veth
ostype: nixos
rootfs: local-lvm:vm-105-disk-0,size=8G
"""


@pytest.fixture
def platform():
    """Create platform provider instance."""
    return ProxmoxPlatform()


def resolved_spec(**overrides):
    values = dict(
        id=105,
        name="web1",
        cpus=2,
        memory=2048,
        swap=512,
        disk=8,
        storage="local-lvm",
        network=NetworkSpec(mode="dhcp", bridge="vmbr0", dns="1.1.1.1"),
        unprivileged=False,
        nesting=True,
        start_on_boot=True,
        tags=["nixos", "web"],
        nixos_version="25.05",
    )
    values.update(overrides)
    return ContainerSpec(**values)


class TestCreateCommand:
    """Test create command construction."""

    def test_full_parameter_set(self, platform):
        """Test that every resource and flag is passed to pct create."""
        cmd = platform.create_command(resolved_spec(), "local:vztmpl/nixos.tar.xz")

        assert cmd[:4] == ["pct", "create", "105", "local:vztmpl/nixos.tar.xz"]
        options = dict(zip(cmd[4::2], cmd[5::2]))
        assert options["--hostname"] == "web1"
        assert options["--cores"] == "2"
        assert options["--memory"] == "2048"
        assert options["--swap"] == "512"
        assert options["--storage"] == "local-lvm"
        assert options["--rootfs"] == "local-lvm:8"
        assert options["--onboot"] == "1"
        assert options["--unprivileged"] == "0"
        assert options["--features"] == "nesting=1"
        assert options["--net0"] == "name=eth0,bridge=vmbr0,ip=dhcp"
        assert options["--nameserver"] == "1.1.1.1"
        assert options["--tags"] == "nixos;web"
        assert options["--arch"] == "amd64"
        assert options["--ostype"] == "nixos"

    def test_static_network(self, platform):
        """Test static addressing with the default prefix."""
        network = NetworkSpec(mode="static", address="10.0.0.5", gateway="10.0.0.1", bridge="vmbr1")
        cmd = platform.create_command(resolved_spec(network=network, tags=[]), "local:vztmpl/x", default_prefix=16)

        assert "name=eth0,bridge=vmbr1,ip=10.0.0.5/16,gw=10.0.0.1" in cmd
        assert "--tags" not in cmd
        assert "--nameserver" not in cmd

    @pytest.mark.asyncio
    async def test_initialize_uses_config(self, platform):
        """Test that tool paths and create options come from configuration."""
        config = NixLxcConfig(platform={"pct": "/usr/sbin/pct", "arch": "arm64"})

        await platform.initialize(config)
        cmd = platform.create_command(resolved_spec(), "local:vztmpl/x")

        assert cmd[0] == "/usr/sbin/pct"
        assert cmd[cmd.index("--arch") + 1] == "arm64"


@pytest.mark.asyncio
class TestProxmoxPlatform:
    """Test platform calls."""

    async def test_allocate_next_id(self, platform):
        """Test parsing the next free id."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, "107\n", "")

            assert await platform.allocate_next_id() == 107
            mock_run.assert_called_once_with(["pvesh", "get", "/cluster/nextid"])

    async def test_allocate_next_id_garbage(self, platform):
        """Test that unexpected output is a command failure."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, "not a number\n", "")

            with pytest.raises(subprocess.CalledProcessError):
                await platform.allocate_next_id()

    async def test_create_instance_uses_timeout(self, platform):
        """Test that creation runs the create command with the configured timeout."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            await platform.create_instance(resolved_spec(), "local:vztmpl/x")

            args, kwargs = mock_run.call_args
            assert args[0][:3] == ["pct", "create", "105"]
            assert kwargs["timeout"] == 600

    async def test_status(self, platform):
        """Test instance existence check."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, "status: stopped\n", "")
            assert await platform.status(105) == ProviderStatus.PRESENT

            mock_run.return_value = CommandResult(2, "", "Configuration file does not exist\n")
            assert await platform.status(999) == ProviderStatus.ABSENT

            mock_run.side_effect = FileNotFoundError("pct")
            assert await platform.status(105) == ProviderStatus.ERROR

    async def test_is_running(self, platform):
        """Test running state detection."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, "status: running\n", "")
            assert await platform.is_running(105) is True

            mock_run.return_value = CommandResult(0, "status: stopped\n", "")
            assert await platform.is_running(105) is False

    async def test_push_file(self, platform):
        """Test file push with permissions."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            await platform.push_file(105, Path("/tmp/ws/setup-nixos.sh"), "/root/setup-nixos.sh", "0700")

            mock_run.assert_called_once_with([
                "pct", "push", "105", "/tmp/ws/setup-nixos.sh", "/root/setup-nixos.sh",
                "--perms", "0700",
            ])

    async def test_exec_returns_status(self, platform):
        """Test that exec reports the exit status instead of raising."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(1, "", "boom")

            result = await platform.exec_in_instance(105, ["/bin/sh", "/root/setup-nixos.sh"])

            assert result.returncode == 1
            args, kwargs = mock_run.call_args
            assert args[0] == ["pct", "exec", "105", "--", "/bin/sh", "/root/setup-nixos.sh"]
            assert kwargs["check"] is False

    async def test_exec_shell_sources_environment(self, platform):
        """Test that shell snippets load the guest environment first."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0)

            await platform.exec_shell(105, "exec bash", capture_output=False)

            args, kwargs = mock_run.call_args
            assert args[0][:6] == ["pct", "exec", "105", "--", "/bin/sh", "-c"]
            assert args[0][6] == "if [ -f /etc/set-environment ]; then . /etc/set-environment; fi; exec bash"
            assert kwargs["capture_output"] is False

    async def test_get_instance_config_privileged(self, platform):
        """Test that a missing unprivileged line means privileged."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, PCT_CONFIG, "")

            instance = await platform.get_instance_config(105)

            assert instance.hostname == "web1"
            assert instance.unprivileged is False
            assert instance.raw["features"] == "nesting=1"

    async def test_get_instance_config_unprivileged(self, platform):
        """Test unprivileged detection."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, PCT_CONFIG + "unprivileged: 1\n", "")

            instance = await platform.get_instance_config(105)

            assert instance.unprivileged is True

    async def test_list_storage_pools(self, platform):
        """Test storage listing."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            mock_run.return_value = CommandResult(0, PVESM_STATUS, "")

            pools = await platform.list_storage_pools()

            assert [pool.name for pool in pools] == ["local", "local-lvm", "backup"]
            assert pools[1].type == "lvmthin"
            assert pools[1].available == 728031232
            assert pools[2].status == "inactive"

    async def test_remove_instance_purges(self, platform):
        """Test destroy arguments."""
        with patch("nixlxc.providers.platform.run_command", new_callable=AsyncMock) as mock_run:
            await platform.remove_instance(105)

            assert mock_run.call_args[0][0] == ["pct", "destroy", "105", "--purge"]


class TestParsers:
    """Test output parsers."""

    def test_parse_key_values(self):
        """Test key/value parsing keeps colons in values."""
        values = parse_key_values("hostname: db1\nnet0: name=eth0,ip=10.0.0.5/24,gw=10.0.0.1\n\n")

        assert values == {"hostname": "db1", "net0": "name=eth0,ip=10.0.0.5/24,gw=10.0.0.1"}

    def test_parse_storage_status_skips_short_lines(self):
        """Test that malformed rows are skipped."""
        pools = parse_storage_status("Name Type Status Total Used Available %\nbroken row\n")

        assert pools == []
