"""Pytest configuration and shared fixtures for pricing engine tests."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from master_pricing.models.selection import VariableSelection
from master_pricing.services.config_backend import FirestoreConfigBackend, InMemoryConfigBackend
from master_pricing.services.pricing_service import build_pricing_service
from master_pricing.services.templates import paver_patio_template


# ============================================================================
# Firebase Mocks
# ============================================================================

@pytest.fixture
def mock_firestore_client():
    """Mock Firestore client.

    Every ``collection().document()`` hop returns the same document mock, so
    ``companies/{c}/servicePricingConfigs/{s}`` resolves to ``document_mock``.
    """
    client = MagicMock()

    collection_mock = MagicMock()
    document_mock = MagicMock()

    client.collection.return_value = collection_mock
    collection_mock.document.return_value = document_mock

    document_mock.get = AsyncMock(return_value=MagicMock(
        exists=False,
        to_dict=lambda: None
    ))
    document_mock.set = AsyncMock()

    subcollection_mock = MagicMock()
    document_mock.collection.return_value = subcollection_mock
    subcollection_mock.document.return_value = document_mock

    return client

@pytest.fixture
def firestore_backend(mock_firestore_client):
    """FirestoreConfigBackend with mocked client."""
    return FirestoreConfigBackend(db=mock_firestore_client)

# ============================================================================
# Pricing Fixtures
# ============================================================================

@pytest.fixture
def template_config():
    """Fresh paver patio template."""
    return paver_patio_template()

@pytest.fixture
def worked_example_selection():
    """Concrete tear-out, moderate access, standard complexity."""
    return VariableSelection(choices={
        "excavation.tearoutComplexity": "concrete",
        "siteAccess.accessDifficulty": "moderate",
        "labor.teamSize": "threePlus",
        "complexity.overallComplexity": "standard",
    })

@pytest.fixture
def memory_backend():
    """Empty in-memory config backend."""
    return InMemoryConfigBackend()

@pytest.fixture
def pricing_service(memory_backend):
    """Fully wired PricingService over the in-memory backend."""
    return build_pricing_service(backend=memory_backend)
