# disko_install/deactivate.py
"""
Tears down everything layered on top of a disk (mounts, swap, LUKS, LVM,
RAID, ZFS) and wipes its signatures so it can be provisioned again.

The block device tree reported by lsblk is turned into an explicit list of
DeactivationStep objects first; executing that list maps every step onto one
DiskManager method.
"""

import json
import os
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from disko_install.executors.disk import DiskManager
from disko_install.installer import outermost_mounts
from disko_install.utils.exceptions import DeactivationError, ShellCommandError

RAID_TYPES = frozenset({
    "raid0", "raid1", "raid4", "raid5", "raid6", "raid10", "linear", "multipath",
})

# Single dashes separate VG and LV in a mapper name; "--" is an escaped dash.
_MAPPER_SEPARATOR = re.compile(r"(?<!-)-(?!-)")


class BlockDevice(BaseModel):
    """One node of `lsblk --json` output."""
    name: str
    path: str
    type: str
    fstype: Optional[str] = None
    label: Optional[str] = None
    mountpoints: List[str] = Field(default_factory=list)
    children: List["BlockDevice"] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # lsblk before 2.37 only reports a single "mountpoint".
        if "mountpoints" not in data and "mountpoint" in data:
            data["mountpoints"] = [data.pop("mountpoint")]
        data["mountpoints"] = [m for m in (data.get("mountpoints") or []) if m]
        if data.get("children") is None:
            data.pop("children", None)
        if not data.get("path") and data.get("name"):
            data["path"] = data["name"] if data["name"].startswith("/") else f"/dev/{data['name']}"
        return data

    @property
    def real_mountpoints(self) -> List[str]:
        """Mountpoints without pseudo entries such as [SWAP]."""
        return [m for m in self.mountpoints if not m.startswith("[")]


BlockDevice.model_rebuild()


class StepAction(str, Enum):
    UNMOUNT = "unmount"
    SWAPOFF = "swapoff"
    DESTROY_ZPOOL = "destroy_zpool"
    DEACTIVATE_VOLUME_GROUP = "deactivate_volume_group"
    REMOVE_LOGICAL_VOLUME = "remove_logical_volume"
    CLOSE_CRYPT = "close_crypt"
    STOP_RAID = "stop_raid"
    WIPE_SIGNATURES = "wipe_signatures"
    ZAP_BOOT_CODE = "zap_boot_code"


class DeactivationStep(BaseModel):
    action: StepAction
    target: str
    detail: Optional[str] = None

    def describe(self) -> str:
        if self.detail:
            return f"{self.action.value} {self.target} ({self.detail})"
        return f"{self.action.value} {self.target}"


def load_topology(lsblk_json: str) -> List[BlockDevice]:
    """Parses `lsblk --json` output into BlockDevice trees."""
    try:
        data = json.loads(lsblk_json)
    except json.JSONDecodeError as e:
        raise DeactivationError(f"lsblk did not return valid JSON: {e}")
    if not isinstance(data, dict):
        raise DeactivationError("lsblk JSON has no 'blockdevices' list")
    try:
        return [BlockDevice.model_validate(d) for d in data.get("blockdevices") or []]
    except ValidationError as e:
        raise DeactivationError(f"Unexpected lsblk output: {e}")


def split_mapper_name(name: str) -> List[str]:
    """'/dev/mapper/vg--a-lv' -> ['vg-a', 'lv']."""
    base = os.path.basename(name)
    parts = _MAPPER_SEPARATOR.split(base, maxsplit=1)
    if len(parts) != 2 or not all(parts):
        raise DeactivationError(f"Cannot split LVM device name '{name}' into volume group and volume")
    return [p.replace("--", "-") for p in parts]


def _filesystem_steps(device: BlockDevice) -> List[DeactivationStep]:
    if device.fstype == "zfs_member":
        return [DeactivationStep(action=StepAction.DESTROY_ZPOOL, target=device.path, detail=device.label)]
    if device.fstype == "LVM2_member":
        return [DeactivationStep(action=StepAction.DEACTIVATE_VOLUME_GROUP, target=device.path)]
    if device.fstype == "swap":
        return [DeactivationStep(action=StepAction.SWAPOFF, target=device.path)]
    if device.fstype is None:
        # lsblk does not always recognise ZFS members; zdb is asked at run time.
        return [DeactivationStep(action=StepAction.DESTROY_ZPOOL, target=device.path)]
    return []


def _device_steps(device: BlockDevice) -> List[DeactivationStep]:
    if device.type in ("disk", "loop"):
        return [
            DeactivationStep(action=StepAction.WIPE_SIGNATURES, target=device.path),
            DeactivationStep(action=StepAction.ZAP_BOOT_CODE, target=device.path),
        ]
    if device.type == "part":
        return [DeactivationStep(action=StepAction.WIPE_SIGNATURES, target=device.path)]
    if device.type == "crypt":
        return [
            DeactivationStep(action=StepAction.WIPE_SIGNATURES, target=device.path),
            DeactivationStep(action=StepAction.CLOSE_CRYPT, target=device.path),
        ]
    if device.type == "lvm":
        volume_group, logical_volume = split_mapper_name(device.name)
        return [DeactivationStep(
            action=StepAction.REMOVE_LOGICAL_VOLUME,
            target=device.path,
            detail=f"{volume_group}/{logical_volume}",
        )]
    if device.type in RAID_TYPES:
        return [DeactivationStep(action=StepAction.STOP_RAID, target=device.path)]
    raise DeactivationError(f"Unknown device type '{device.type}' for {device.path}")


def _walk(device: BlockDevice) -> List[DeactivationStep]:
    steps = [DeactivationStep(action=StepAction.UNMOUNT, target=m) for m in device.real_mountpoints]
    for child in device.children:
        steps.extend(_walk(child))
    steps.extend(_filesystem_steps(device))
    steps.extend(_device_steps(device))
    return steps


def _merge_nested_unmounts(plan: List[DeactivationStep]) -> List[DeactivationStep]:
    """
    `umount -R` also releases everything mounted below its target, so mounts
    nested in another planned mount collapse into one step for the outermost
    mount, placed where the first of them was planned.
    """
    outer_mounts = outermost_mounts([s.target for s in plan if s.action is StepAction.UNMOUNT])
    merged: List[DeactivationStep] = []
    unmounted = set()
    for step in plan:
        if step.action is not StepAction.UNMOUNT:
            merged.append(step)
            continue
        outer = next(m for m in outer_mounts
                     if step.target == m or step.target.startswith(m.rstrip("/") + "/"))
        if outer not in unmounted:
            unmounted.add(outer)
            merged.append(DeactivationStep(action=StepAction.UNMOUNT, target=outer))
    return merged


def plan_deactivation(devices: List[BlockDevice], disk: str) -> List[DeactivationStep]:
    """
    Ordered steps that release `disk`: for every device, its mounts first, then
    its children, then whatever its filesystem and device type require.

    Mounts nested below another planned mount are released together with it.
    """
    wanted = os.path.realpath(disk)
    plan: List[DeactivationStep] = []
    for device in devices:
        if os.path.realpath(device.path) == wanted:
            plan.extend(_walk(device))
    return _merge_nested_unmounts(plan)


# --- Execution ---

def _destroy_zpool(step: DeactivationStep, manager: DiskManager) -> None:
    if not manager.zfs_available():
        manager.logger.warning(f"zpool is not installed, skipping ZFS check on {step.target}")
        return
    pool = step.detail or manager.probe_zpool(step.target)
    if not pool:
        manager.logger.debug(f"No ZFS pool on {step.target}")
        return
    manager.destroy_zpool(pool, step.target)


def _deactivate_volume_group(step: DeactivationStep, manager: DiskManager) -> None:
    volume_group = manager.volume_group_of(step.target)
    if volume_group is None:
        manager.logger.debug(f"{step.target} is not part of a volume group")
        return
    manager.deactivate_volume_group(volume_group)


def _remove_logical_volume(step: DeactivationStep, manager: DiskManager) -> None:
    volume_group, logical_volume = step.detail.split("/", 1)
    manager.remove_logical_volume(volume_group, logical_volume)


_HANDLERS: Dict[StepAction, Callable[[DeactivationStep, DiskManager], Any]] = {
    StepAction.UNMOUNT: lambda step, m: m.unmount_recursive(step.target),
    StepAction.SWAPOFF: lambda step, m: m.swap_off(step.target),
    StepAction.DESTROY_ZPOOL: _destroy_zpool,
    StepAction.DEACTIVATE_VOLUME_GROUP: _deactivate_volume_group,
    StepAction.REMOVE_LOGICAL_VOLUME: _remove_logical_volume,
    StepAction.CLOSE_CRYPT: lambda step, m: m.close_crypt(step.target),
    StepAction.STOP_RAID: lambda step, m: m.stop_raid(step.target),
    StepAction.WIPE_SIGNATURES: lambda step, m: m.wipe_signatures(step.target),
    StepAction.ZAP_BOOT_CODE: lambda step, m: m.zap_boot_code(step.target),
}


def execute_plan(plan: List[DeactivationStep], manager: DiskManager) -> int:
    """
    Runs every step, continuing past failures. Returns the number of steps that failed.
    """
    failures = 0
    for step in plan:
        manager.logger.debug(f"Step: {step.describe()}")
        try:
            _HANDLERS[step.action](step, manager)
        except ShellCommandError as e:
            failures += 1
            manager.logger.error(f"Step '{step.describe()}' failed: {e}")
    return failures


def deactivate_disk(disk: str, manager: DiskManager) -> int:
    """Reads the topology of `disk`, plans and executes its teardown."""
    devices = load_topology(manager.list_block_devices(disk))
    plan = plan_deactivation(devices, disk)
    if not plan:
        manager.logger.warning(f"lsblk reported no device matching {disk}; nothing to do.")
        return 0
    manager.logger.info(f"{len(plan)} steps planned for {disk}")
    return execute_plan(plan, manager)
