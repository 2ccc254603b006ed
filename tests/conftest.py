"""Pytest configuration and fixtures for converge-k8s tests."""

import pytest

from converge_k8s import OwnershipConfig, TrackingClient
from fakes import COMPONENT_LABEL, FIELD_MANAGER, OWNER_LABEL, FakeDynamicClient


@pytest.fixture
def fake_client():
    """In-memory dynamic client."""
    return FakeDynamicClient()


@pytest.fixture
def owner():
    """Cluster-scoped owning custom resource."""
    return {
        "apiVersion": "test.example.com/v1alpha1",
        "kind": "Component",
        "metadata": {"name": "svc-a", "uid": "owner-uid-svc-a"},
    }


@pytest.fixture
def ownership(owner):
    """Ownership config for the svc-a owner."""
    return OwnershipConfig(
        owner=owner,
        owner_label_key=OWNER_LABEL,
        component_label_key=COMPONENT_LABEL,
        component="svc",
        field_manager=FIELD_MANAGER,
    )


@pytest.fixture
def tracking_client(fake_client, ownership):
    """Tracking client with ownership over the fake cluster."""
    return TrackingClient(fake_client, ownership)
