"""Tests for loading the reconciler configuration."""

from pathlib import Path

import pytest

from fleet_trust.config import ReconcilerConfig, load_config
from fleet_trust.exceptions import InputException


async def test_defaults() -> None:
    """Test no config file gives the defaults."""
    config = await load_config(None)
    assert config == ReconcilerConfig()
    assert config.sources.hub.name == "default-ingress-cert"
    assert config.target.bundle.namespace == "openshift-config"
    assert config.retry.max_attempts == 60
    assert config.max_workers == 10
    assert config.inventory.exclude == ["local-cluster"]


async def test_load(tmp_path: Path) -> None:
    """Test values from the file override the defaults."""
    path = tmp_path / "config.yaml"
    path.write_text(
        """
sources:
  hub:
    namespace: openshift-config
    name: user-ca-bundle
  timeout: 5
retry:
  max_attempts: 3
  multiplier: 1.0
compliance:
  attempts: 2
policy:
  namespace: dr-policies
max_workers: 4
verify_compliant: true
"""
    )
    config = await load_config(path)
    assert config.sources.hub.name == "user-ca-bundle"
    assert config.sources.hub.key == "ca-bundle.crt"
    assert config.sources.managed.name == "default-ingress-cert"
    assert config.sources.timeout == 5
    assert config.retry.max_attempts == 3
    assert config.retry.interval == 60
    assert config.compliance.attempts == 2
    assert config.policy.namespace == "dr-policies"
    assert config.max_workers == 4
    assert config.verify_compliant


async def test_empty_file(tmp_path: Path) -> None:
    """Test an empty file gives the defaults."""
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert await load_config(path) == ReconcilerConfig()


async def test_invalid_value(tmp_path: Path) -> None:
    """Test a value of the wrong type is rejected."""
    path = tmp_path / "config.yaml"
    path.write_text("max_workers: many\n")
    with pytest.raises(InputException, match="max_workers"):
        await load_config(path)


async def test_invalid_worker_count(tmp_path: Path) -> None:
    """Test the worker pool must have a worker."""
    path = tmp_path / "config.yaml"
    path.write_text("max_workers: 0\n")
    with pytest.raises(InputException, match="max_workers"):
        await load_config(path)


async def test_missing_file(tmp_path: Path) -> None:
    """Test a missing file is an input error."""
    with pytest.raises(InputException, match="Unable to read"):
        await load_config(tmp_path / "missing.yaml")
