# disko_install/executors/disk.py
import re
import shutil
from typing import Optional, Tuple

from disko_install.utils.executor import Executor

LSBLK_COLUMNS = "NAME,PATH,TYPE,FSTYPE,LABEL,MOUNTPOINTS"

_ZDB_POOL_NAME = re.compile(r"^\s*name:\s*'(?P<name>[^']*)'", re.MULTILINE)


class DiskManager:
    """
    Block device operations used to tear down everything layered on a disk.
    All operations are delegated to the provided Executor instance.
    """

    def __init__(self, executor: Executor):
        """
        Args:
            executor (Executor): An instance of the Executor class for command execution.
        """
        self.executor = executor
        self.logger = executor.logger
        self.logger.debug("Disk manager initialized.")

    # --- TOPOLOGY ---

    def list_block_devices(self, device: str) -> str:
        """
        Returns lsblk's JSON description of `device` and everything on top of it.
        """
        command = ["lsblk", "--all", "--json", "--paths", "--output", LSBLK_COLUMNS, device]
        _, stdout, _ = self.executor.run(
            description=f"Reading block device topology of {device}",
            command=command,
        )
        return stdout

    # --- MOUNTS / SWAP ---

    def unmount_recursive(self, target: str) -> Tuple[int, str, str]:
        """Unmounts `target` and everything mounted below it."""
        return self.executor.run(
            description=f"Unmounting {target}",
            command=["umount", "-R", target],
        )

    def swap_off(self, device: str) -> Tuple[int, str, str]:
        return self.executor.run(
            description=f"Disabling swap on {device}",
            command=["swapoff", device],
        )

    # --- DEVICE MAPPER / LVM / RAID ---

    def close_crypt(self, device: str) -> Tuple[int, str, str]:
        """Closes an open LUKS mapping (cryptsetup close)."""
        return self.executor.run(
            description=f"Closing encrypted volume {device}",
            command=["cryptsetup", "close", device],
        )

    def volume_group_of(self, device: str) -> Optional[str]:
        """
        Name of the LVM volume group the physical volume `device` belongs to,
        or None when it is not part of one.
        """
        _, stdout, _ = self.executor.run(
            description=f"Looking up the volume group of {device}",
            command=["pvs", device, "--noheadings", "--options", "vg_name"],
        )
        name = stdout.strip()
        return name or None

    def deactivate_volume_group(self, volume_group: str) -> Tuple[int, str, str]:
        """Deactivates and removes a volume group."""
        self.executor.run(
            description=f"Deactivating volume group {volume_group}",
            command=["vgchange", "-a", "n", volume_group],
        )
        return self.executor.run(
            description=f"Removing volume group {volume_group}",
            command=["vgremove", "-f", volume_group],
        )

    def remove_logical_volume(self, volume_group: str, logical_volume: str) -> Tuple[int, str, str]:
        return self.executor.run(
            description=f"Removing logical volume {volume_group}/{logical_volume}",
            command=["lvremove", "-fy", f"{volume_group}/{logical_volume}"],
        )

    def stop_raid(self, device: str) -> Tuple[int, str, str]:
        return self.executor.run(
            description=f"Stopping RAID array {device}",
            command=["mdadm", "--stop", device],
        )

    # --- ZFS ---

    @staticmethod
    def zfs_available() -> bool:
        return shutil.which("zpool") is not None

    def probe_zpool(self, device: str) -> Optional[str]:
        """
        Reads the ZFS label of `device` with zdb and returns the pool name,
        or None when the device carries no ZFS label.
        """
        exit_code, stdout, _ = self.executor.run(
            description=f"Probing {device} for a ZFS label",
            command=["zdb", "-l", device],
            check=False,
        )
        if exit_code != 0:
            return None
        match = _ZDB_POOL_NAME.search(stdout)
        return match.group("name") if match else None

    def destroy_zpool(self, pool: str, device: str) -> Tuple[int, str, str]:
        """
        Destroys `pool` and clears the ZFS label left on `device`.

        A stale label usually names a pool that is not imported, so a failing
        destroy is only a warning; the labelclear result decides success.
        """
        exit_code, _, stderr = self.executor.run(
            description=f"Destroying ZFS pool {pool}",
            command=["zpool", "destroy", "-f", pool],
            check=False,
        )
        if exit_code != 0:
            self.logger.warning(f"zpool destroy {pool} exited with {exit_code}: {stderr.strip()}")
        return self.executor.run(
            description=f"Clearing ZFS label on {device}",
            command=["zpool", "labelclear", "-f", device],
        )

    # --- SIGNATURES ---

    def wipe_signatures(self, device: str) -> Tuple[int, str, str]:
        """Removes all filesystem, RAID and partition-table signatures (wipefs)."""
        return self.executor.run(
            description=f"Wiping signatures on {device}",
            command=["wipefs", "--all", "-f", device],
        )

    def zap_boot_code(self, device: str) -> Tuple[int, str, str]:
        """Zeroes the 440 byte MBR bootstrap code area."""
        return self.executor.run(
            description=f"Clearing boot code on {device}",
            command=["dd", "if=/dev/zero", f"of={device}", "bs=440", "count=1"],
        )
