"""Tests for billable usage measurement."""

import logging
import os

from cdn_quota_monitor.models import MIB
from cdn_quota_monitor.quota.accountant import UsageAccountant, directory_size
from cdn_quota_monitor.tenants import read_contact_email, resolve_tenant


def test_usage_is_uploads_plus_published(config, tenant_dirs, sized_file):
    """Test that usage counts the uploads and published trees."""
    sized_file(tenant_dirs["uploads"] / "a.bin", 3 * MIB)
    sized_file(tenant_dirs["uploads"] / "nested" / "b.bin", 1000)
    sized_file(tenant_dirs["published"] / "index.html", 2 * MIB)

    breakdown = UsageAccountant().measure(resolve_tenant(config.paths, "acme"))

    assert breakdown.uploads_bytes == 3 * MIB + 1000
    assert breakdown.published_bytes == 2 * MIB
    assert breakdown.total_bytes == 5 * MIB + 1000


def test_vcs_tree_is_never_billed(config, tenant_dirs, sized_file):
    """Test that growing the version-control tree leaves usage unchanged."""
    accountant = UsageAccountant()
    tenant = resolve_tenant(config.paths, "acme")
    sized_file(tenant_dirs["uploads"] / "a.bin", MIB)
    before = accountant.usage_bytes(tenant)

    sized_file(tenant_dirs["vcs"] / "objects" / "pack.bin", 500 * MIB)
    sized_file(tenant_dirs["vcs"] / "HEAD", 41)

    assert accountant.usage_bytes(tenant) == before == MIB


def test_missing_directories_count_as_zero(config, caplog):
    """Test that missing trees contribute 0 and are logged."""
    tenant = resolve_tenant(config.paths, "ghost")

    with caplog.at_level(logging.WARNING):
        breakdown = UsageAccountant().measure(tenant)

    assert breakdown.total_bytes == 0
    assert "Uploads directory missing for ghost" in caplog.text
    assert "Published directory missing for ghost" in caplog.text


def test_symlinks_are_not_followed(tmp_path, sized_file):
    """Test that a symlink counts as its own size, not its target's."""
    outside = sized_file(tmp_path / "outside" / "big.bin", 50 * MIB)
    tree = tmp_path / "tree"
    tree.mkdir()
    os.symlink(outside, tree / "link")
    os.symlink(outside.parent, tree / "dirlink")

    size = directory_size(tree)

    assert size < 50 * MIB
    assert size == os.lstat(tree / "link").st_size + os.lstat(tree / "dirlink").st_size


def test_directory_size_of_missing_path(tmp_path):
    """Test that a missing path has size 0."""
    assert directory_size(tmp_path / "nope") == 0


def test_contact_email_resolved_from_tenant_env(config, tenant_dirs):
    """Test that the contact address comes from the provisioning env file."""
    tenant = resolve_tenant(config.paths, "acme")

    assert read_contact_email(config.paths.tenants_dir, "acme") == "owner@acme.test"
    assert read_contact_email(config.paths.tenants_dir, "ghost") is None
    assert tenant.uploads_path == config.paths.uploads_root / "acme" / "files"
