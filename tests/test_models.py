"""
Tests for the shared records.
"""

import dataclasses

import pytest

from apache2buddy.models import ApacheConfig, ConcurrencyModel, Service, Severity, SystemMemory


@pytest.mark.parametrize("name,model", [
    ("prefork", ConcurrencyModel.PREFORK),
    ("mpm_worker_module", ConcurrencyModel.WORKER),
    ("Event", ConcurrencyModel.EVENT),
    ("itk", ConcurrencyModel.PREFORK),
    ("", ConcurrencyModel.PREFORK),
    (None, ConcurrencyModel.PREFORK),
])
def test_concurrency_model_from_name(name, model):
    assert ConcurrencyModel.from_name(name) is model


def test_threaded():
    assert not ConcurrencyModel.PREFORK.is_threaded
    assert ConcurrencyModel.WORKER.is_threaded and ConcurrencyModel.EVENT.is_threaded


def test_severity_order():
    ranks = [s.rank for s in (Severity.OK, Severity.WARNING, Severity.CRITICAL, Severity.ERROR)]
    assert ranks == sorted(ranks)


@pytest.mark.parametrize("version,directive", [
    ("2.4.57", "MaxRequestWorkers"), ("2.2.34", "MaxClients"), ("2.0.65", "MaxClients"), ("", "MaxRequestWorkers"),
])
def test_limit_directive(version, directive):
    assert ApacheConfig(version=version).limit_directive == directive


def test_records_are_frozen():
    memory = SystemMemory(total_mb=1024, available_mb=512)
    with pytest.raises(dataclasses.FrozenInstanceError):
        memory.available_mb = 0


def test_service_labels():
    assert Service.PHP_FPM.label == "PHP-FPM"
    assert "mysqld" in Service.MYSQL.process_names


def test_package_license_header():
    import apache2buddy

    assert "License: Apache 2.0" in apache2buddy.__doc__
