"""Shared fixtures for the unit tests."""

from __future__ import annotations

import pytest
from fakes import FakeCloud, FakeGcloud, RecordingSleep

from cdc_datastream.config.models import OrchestratorSettings, ProvisioningConfig


@pytest.fixture
def cfg() -> ProvisioningConfig:
    return ProvisioningConfig(
        project="proj",
        region="europe-north1",
        instance="app-db",
        database="appdb",
        user="app",
        password="s3cret",
    )


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings()


@pytest.fixture
def fake_cloud(cfg: ProvisioningConfig, settings: OrchestratorSettings) -> FakeCloud:
    return FakeCloud(cfg, settings)


@pytest.fixture
def fake_gcloud() -> FakeGcloud:
    return FakeGcloud()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
