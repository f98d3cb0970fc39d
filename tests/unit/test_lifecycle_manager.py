"""Tests for LifecycleManager create, delete, restart, rename and list."""

import asyncio
import os
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from octoprint_manager.repositories.containers import ContainerRepository
from octoprint_manager.utils.exceptions import (
    DeviceNotFoundError,
    PortAllocationConflictError,
    RecordStoreError,
    RuntimeCreateFailedError,
    RuntimeRemoveFailedError,
    RuntimeRestartFailedError,
    RuntimeStartFailedError,
    RuntimeStopFailedError,
    StorageIOError,
    UnknownIdentityError,
)
from octoprint_manager.utils.naming import derive_instance_name


# ---- create ----


@pytest.mark.asyncio
async def test_create_provisions_and_records(lifecycle, gateway, plug_device, settings, fetch_records):
    """Test that create starts an instance and records device and port."""
    node = plug_device("usbA")

    created = await lifecycle.create("usbA")

    assert created.instance_name == f"octoprint-{created.identity}"
    spec = gateway.specs[created.instance_name]
    assert spec.host_port == 2000
    assert spec.device_path == node
    assert spec.storage_path == os.path.join(settings.storage_root, created.identity)
    assert spec.storage_target == "/octoprint"
    assert spec.restart_policy == "unless-stopped"
    assert os.path.isdir(spec.storage_path)
    assert gateway.instances[created.instance_name] == "running"

    records = await fetch_records()
    assert [(r.id, r.device, r.port, r.name) for r in records] == [
        (created.identity, "usbA", 2000, None)
    ]
    assert lifecycle.status_cache.get(created.identity) is True


@pytest.mark.asyncio
async def test_create_allocates_sequential_ports(lifecycle, plug_device, fetch_records):
    """Test that successive creates get distinct, increasing ports."""
    for device in ("usbA", "usbB", "usbC"):
        plug_device(device)
        await lifecycle.create(device)

    records = await fetch_records()
    assert sorted(r.port for r in records) == [2000, 2001, 2002]


@pytest.mark.asyncio
async def test_concurrent_creates_never_share_a_port(lifecycle, plug_device, fetch_records):
    """Test that simultaneous creates are serialized onto distinct ports."""
    devices = [f"usb{i}" for i in range(6)]
    for device in devices:
        plug_device(device)

    await asyncio.gather(*(lifecycle.create(device) for device in devices))

    ports = [r.port for r in await fetch_records()]
    assert len(ports) == 6
    assert len(set(ports)) == 6


@pytest.mark.asyncio
async def test_create_missing_device_changes_nothing(lifecycle, gateway, settings, fetch_records):
    """Test that an unplugged device aborts create before any mutation."""
    with pytest.raises(DeviceNotFoundError):
        await lifecycle.create("usbC")

    assert await fetch_records() == []
    assert gateway.calls == []
    assert os.listdir(settings.storage_root) == []
    assert await lifecycle.port_allocator.next_port() == 2000


@pytest.mark.asyncio
async def test_create_runtime_failure_keeps_directory_but_no_record(
    lifecycle, gateway, plug_device, settings, fetch_records
):
    """Test that a failed runtime create leaves the directory and writes no record."""
    plug_device("usbA")
    gateway.fail("create", None, RuntimeCreateFailedError("octoprint-x", Exception("boom")))

    with pytest.raises(RuntimeCreateFailedError):
        await lifecycle.create("usbA")

    assert await fetch_records() == []
    assert len(os.listdir(settings.storage_root)) == 1


@pytest.mark.asyncio
async def test_create_start_failure_discards_instance(lifecycle, gateway, plug_device, fetch_records):
    """Test that an instance that fails to start is removed and not recorded."""
    plug_device("usbA")
    gateway.fail("start", None, RuntimeStartFailedError("octoprint-x", Exception("port in use")))

    with pytest.raises(RuntimeStartFailedError):
        await lifecycle.create("usbA")

    assert await fetch_records() == []
    assert gateway.instances == {}


@pytest.mark.asyncio
async def test_create_retries_on_port_conflict(lifecycle, gateway, plug_device, fetch_records):
    """Test that a unique-port violation retries with a fresh port."""
    plug_device("usbA")
    original_insert = lifecycle._insert_record
    attempts = []

    async def flaky_insert(identity, device, port):
        attempts.append(port)
        if len(attempts) == 1:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        await original_insert(identity, device, port)

    with patch.object(lifecycle, "_insert_record", side_effect=flaky_insert):
        created = await lifecycle.create("usbA")

    assert len(attempts) == 2
    records = await fetch_records()
    assert [r.id for r in records] == [created.identity]
    assert ("remove", created.instance_name) in gateway.calls
    assert gateway.instances[created.instance_name] == "running"


@pytest.mark.asyncio
async def test_create_gives_up_after_retries(lifecycle, gateway, plug_device, settings, metrics):
    """Test that exhausting retries raises PortAllocationConflictError."""
    plug_device("usbA")

    async def always_conflict(identity, device, port):
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with patch.object(lifecycle, "_insert_record", side_effect=always_conflict):
        with pytest.raises(PortAllocationConflictError) as exc_info:
            await lifecycle.create("usbA")

    assert exc_info.value.attempts == settings.port_allocation_retries
    assert gateway.instances == {}
    assert 'operation="create",outcome="failure"' in metrics.get_metrics().decode()


# ---- delete ----


@pytest.mark.asyncio
async def test_delete_removes_instance_record_and_storage(lifecycle, gateway, plug_device, settings):
    """Test the full delete path."""
    plug_device("usbA")
    created = await lifecycle.create("usbA")
    storage = os.path.join(settings.storage_root, created.identity)

    await lifecycle.delete(created.identity)

    assert created.instance_name not in gateway.instances
    assert gateway.mutating_calls(created.instance_name)[-2:] == [
        ("stop", created.instance_name),
        ("remove", created.instance_name),
    ]
    assert not os.path.exists(storage)
    assert await lifecycle.list_containers() == []
    assert len(lifecycle.status_cache) == 0


@pytest.mark.asyncio
async def test_delete_tolerates_stop_failure(lifecycle, gateway, add_record):
    """Test that a failed stop is ignored and removal still happens."""
    await add_record("a", "usbA", 2000)
    gateway.instances["octoprint-a"] = "running"
    gateway.fail("stop", "octoprint-a", RuntimeStopFailedError("octoprint-a", Exception("x")))

    await lifecycle.delete("a")

    assert "octoprint-a" not in gateway.instances
    assert await lifecycle.list_containers() == []


@pytest.mark.asyncio
async def test_delete_with_missing_instance(lifecycle, add_record):
    """Test that a record whose instance is already gone is still deleted."""
    await add_record("a", "usbA", 2000)

    await lifecycle.delete("a")

    assert await lifecycle.list_containers() == []


@pytest.mark.asyncio
async def test_delete_remove_failure_keeps_record_and_storage(
    lifecycle, gateway, plug_device, settings
):
    """Test that a failed removal aborts the delete with nothing lost."""
    plug_device("usbA")
    created = await lifecycle.create("usbA")
    gateway.fail(
        "remove",
        created.instance_name,
        RuntimeRemoveFailedError(created.instance_name, Exception("busy")),
    )

    with pytest.raises(RuntimeRemoveFailedError):
        await lifecycle.delete(created.identity)

    listing = await lifecycle.list_containers()
    assert [c.identity for c in listing] == [created.identity]
    assert listing[0].status is False
    assert os.path.isdir(os.path.join(settings.storage_root, created.identity))


@pytest.mark.asyncio
async def test_delete_storage_failure_reports_after_record_removed(lifecycle, plug_device):
    """Test that a storage removal failure surfaces but the record stays deleted."""
    plug_device("usbA")
    created = await lifecycle.create("usbA")

    with patch(
        "octoprint_manager.managers.lifecycle_manager.shutil.rmtree",
        side_effect=PermissionError("read-only filesystem"),
    ):
        with pytest.raises(StorageIOError) as exc_info:
            await lifecycle.delete(created.identity)

    assert exc_info.value.operation == "remove"
    assert await lifecycle.list_containers() == []


@pytest.mark.asyncio
async def test_delete_unknown_identity(lifecycle, gateway):
    """Test that deleting an unknown identity touches nothing."""
    with pytest.raises(UnknownIdentityError):
        await lifecycle.delete("missing")

    assert gateway.calls == []


def _slow_inspect(gateway, delay=0.05):
    """Make inspect yield long enough for a concurrent delete to run."""
    original = gateway.inspect

    async def slow_inspect(name):
        await asyncio.sleep(delay)
        return await original(name)

    gateway.inspect = slow_inspect


@pytest.mark.asyncio
async def test_delete_during_reconcile_leaves_no_unrecorded_instance(
    lifecycle, gateway, plug_device, add_record, fetch_records
):
    """Test that reconcile never recreates an instance whose record a delete removed."""
    plug_device("usbA")
    await add_record("a", "usbA", 2000)
    _slow_inspect(gateway)

    await asyncio.gather(lifecycle.reconcile_all(), lifecycle.delete("a"))

    assert await fetch_records() == []
    assert "octoprint-a" not in gateway.instances
    assert lifecycle.status_cache.get("a") is False
    assert len(lifecycle.status_cache) == 0


@pytest.mark.asyncio
async def test_delete_during_restart_leaves_no_unrecorded_instance(
    lifecycle, gateway, plug_device, add_record, fetch_records
):
    """Test that a restart racing a delete cannot bring the container back."""
    plug_device("usbA")
    await add_record("a", "usbA", 2000)
    _slow_inspect(gateway)

    results = await asyncio.gather(
        lifecycle.restart("a"), lifecycle.delete("a"), return_exceptions=True
    )

    assert results[1] is None
    assert results[0] is None or isinstance(results[0], UnknownIdentityError)
    assert await fetch_records() == []
    assert "octoprint-a" not in gateway.instances


@pytest.mark.asyncio
async def test_reconcile_skips_record_deleted_before_its_turn(
    lifecycle, gateway, add_record
):
    """Test that a record removed after the snapshot is left out of the result."""
    await add_record("a", "usbA", 2000)
    gateway.instances["octoprint-a"] = "running"

    async with lifecycle._get_lock("a"):
        pending = asyncio.create_task(lifecycle.reconcile_all())
        await asyncio.sleep(0.05)
        async with lifecycle.db_manager.get_session() as session:
            await ContainerRepository(session).delete_by_id("a")

    result = await pending

    assert result.outcomes == {}
    assert gateway.mutating_calls() == []


# ---- restart ----


@pytest.mark.asyncio
async def test_restart_existing_instance(lifecycle, gateway, add_record):
    """Test that an existing instance gets a runtime restart."""
    await add_record("a", "usbA", 2000)
    gateway.instances["octoprint-a"] = "running"

    await lifecycle.restart("a")

    assert gateway.mutating_calls() == [("restart", "octoprint-a")]
    assert lifecycle.status_cache.get("a") is True


@pytest.mark.asyncio
async def test_restart_recreates_missing_instance_on_recorded_port(
    lifecycle, gateway, add_record, plug_device, fetch_records
):
    """Test that a vanished instance is recreated with its recorded port."""
    node = plug_device("usbA")
    await add_record("a", "usbA", 2005)

    await lifecycle.restart("a")

    spec = gateway.specs["octoprint-a"]
    assert spec.host_port == 2005
    assert spec.device_path == node
    assert [(r.id, r.port) for r in await fetch_records()] == [("a", 2005)]


@pytest.mark.asyncio
async def test_restart_unknown_identity(lifecycle, gateway):
    """Test that restarting an unknown identity fails without runtime mutation."""
    with pytest.raises(UnknownIdentityError) as exc_info:
        await lifecycle.restart("missing")

    assert exc_info.value.identity == "missing"
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_restart_runtime_failure_marks_status(lifecycle, gateway, add_record):
    """Test that a runtime failure is distinct from unknown identity and recorded."""
    await add_record("a", "usbA", 2000)
    gateway.instances["octoprint-a"] = "running"
    gateway.fail("restart", "octoprint-a", RuntimeRestartFailedError("octoprint-a", Exception("x")))

    with pytest.raises(RuntimeRestartFailedError):
        await lifecycle.restart("a")

    assert lifecycle.status_cache.get("a") is False


@pytest.mark.asyncio
async def test_restart_recreate_with_unplugged_device(lifecycle, add_record):
    """Test that recreating needs the device to be present."""
    await add_record("a", "usbA", 2000)

    with pytest.raises(DeviceNotFoundError):
        await lifecycle.restart("a")

    assert lifecycle.status_cache.get("a") is False


# ---- rename and list ----


@pytest.mark.asyncio
async def test_rename_only_changes_display_name(lifecycle, gateway, add_record, fetch_records):
    """Test that rename leaves device, port and runtime untouched."""
    await add_record("a", "usbA", 2000)
    gateway.instances["octoprint-a"] = "running"

    await lifecycle.rename("a", "Printer-1")

    records = await fetch_records()
    assert [(r.id, r.device, r.port, r.name) for r in records] == [
        ("a", "usbA", 2000, "Printer-1")
    ]
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_rename_unknown_identity(lifecycle):
    """Test that renaming an unknown identity raises UnknownIdentityError."""
    with pytest.raises(UnknownIdentityError):
        await lifecycle.rename("missing", "Printer")


@pytest.mark.asyncio
async def test_list_joins_records_with_status(lifecycle, add_record):
    """Test that listing reports every record with cached status, in identity order."""
    await add_record("b", "usbB", 2001, name="")
    await add_record("a", "usbA", 2000, name="Prusa")
    lifecycle.status_cache.mark("a", True)

    listing = await lifecycle.list_containers()

    assert [(c.identity, c.port, c.display_name, c.device, c.status) for c in listing] == [
        ("a", 2000, "Prusa", "usbA", True),
        ("b", 2001, "", "usbB", False),
    ]


@pytest.mark.asyncio
async def test_list_devices_marks_bound_devices(lifecycle, plug_device, add_record):
    """Test device listing against the record store."""
    plug_device("usbA")
    plug_device("usbB")
    await add_record("a", "usbA", 2000)

    devices = await lifecycle.list_devices()

    assert [(d.name, d.in_use) for d in devices] == [("usbA", True), ("usbB", False)]


@pytest.mark.asyncio
async def test_store_failure_is_wrapped(lifecycle):
    """Test that an unreachable store surfaces as RecordStoreError."""
    await lifecycle.db_manager.close()
    lifecycle.db_manager._db_url = "sqlite+aiosqlite:////nonexistent-dir/state.db"

    with pytest.raises(RecordStoreError) as exc_info:
        await lifecycle.list_containers()

    assert exc_info.value.operation == "list"


def test_instance_name_is_prefixed_identity():
    """Test the derived instance name."""
    assert derive_instance_name("1234") == "octoprint-1234"
