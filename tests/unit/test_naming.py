"""Tests for identity-derived names."""

import pytest

from octoprint_manager.utils.naming import derive_instance_name, derive_storage_path


def test_instance_name():
    assert derive_instance_name("0b6f") == "octoprint-0b6f"


def test_storage_path():
    """Test that the storage directory sits directly under the root."""
    assert derive_storage_path("/mnt/storage/octoprint", "0b6f") == "/mnt/storage/octoprint/0b6f"


@pytest.mark.parametrize("identity", ["", ".", "..", "a/b"])
def test_storage_path_rejects_non_directory_names(identity):
    """Test that an identity can never point outside its own directory."""
    with pytest.raises(ValueError):
        derive_storage_path("/mnt/storage/octoprint", identity)


def test_distinct_identities_get_distinct_names():
    identities = ["a", "b", "ab", "a-b"]

    assert len({derive_instance_name(i) for i in identities}) == len(identities)
    assert len({derive_storage_path("/srv", i) for i in identities}) == len(identities)
