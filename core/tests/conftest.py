"""
Pytest configuration and fixtures for follow-up core tests
"""
import json
import pytest
import redis
from unittest.mock import Mock

from discharge.models import DischargeCase, SoapNote
from discharge.readiness import TestModeConfig
from followup.dispatch import MockDispatchClient
from followup.generation import GenerationClient
from followup.orchestrator import DischargeFollowupOrchestrator
from followup.retry import RetryExecutor
from identity.models import OwnerInfo, PatientInfo
from identity.resolver import IdentityResolver
from scheduling.business_hours import BusinessHoursScheduler, WindowConfig
from scheduling.lifecycle import CallLifecycleTracker
from storage.memory import InMemoryStore
from storage.redis_store import RedisStore

TEST_TIMEZONE = "America/Los_Angeles"


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing"""
    return Mock(spec=redis.Redis)


@pytest.fixture
def store():
    """Fresh in-memory store"""
    return InMemoryStore()


@pytest.fixture
def resolver(store):
    """IdentityResolver over the in-memory store"""
    return IdentityResolver(store, default_timezone=TEST_TIMEZONE)


@pytest.fixture
def tracker(store):
    """CallLifecycleTracker over the in-memory store"""
    return CallLifecycleTracker(store)


@pytest.fixture
def business_hours():
    return BusinessHoursScheduler()


@pytest.fixture
def window_config():
    """Weekdays 9-17, weekends excluded"""
    return WindowConfig(start_hour=9, end_hour=17, exclude_weekends=True)


@pytest.fixture
def sleeps():
    """Records the delays a RetryExecutor would have slept"""
    return []


@pytest.fixture
def retry_executor(sleeps):
    """RetryExecutor with 3 attempts that records instead of sleeping"""
    return RetryExecutor(max_attempts=3, base_delay_ms=1000, sleep=sleeps.append)


@pytest.fixture
def sample_case():
    """Discharge-ready case with SOAP notes and an owner phone"""
    return DischargeCase(
        id="case-123",
        source="manual",
        case_type="dental",
        patient_name="Max",
        soap_notes=[SoapNote(
            subjective="Owner reports bad breath.",
            objective="Grade 2 dental tartar.",
            assessment="Periodontal disease.",
            plan="Dental cleaning performed. Soft food for 3 days.",
        )],
        owner_phone="(555) 123-4567",
        owner_email="owner@example.com",
    )


@pytest.fixture
def sample_owner():
    return OwnerInfo(name="Jane Smith", phone="(555) 123-4567", email="owner@example.com")


@pytest.fixture
def sample_patient():
    return PatientInfo(name="Max", demographics={"species": "canine", "breed": "Beagle"})


@pytest.fixture
def summary_json():
    """A valid generated discharge summary"""
    return json.dumps({
        "patientName": "Max",
        "caseType": "dental",
        "appointmentSummary": "Max came in for dental care and did great.",
        "treatmentsToday": ["Dental cleaning"],
        "medications": [],
        "warningSigns": [],
    })


@pytest.fixture
def mock_generation(summary_json):
    """Generation client that always returns a valid summary"""
    client = Mock(spec=GenerationClient)
    client.chat.return_value = summary_json
    return client


@pytest.fixture
def mock_dispatch():
    return MockDispatchClient()


@pytest.fixture
def orchestrator(store, mock_generation, mock_dispatch, retry_executor, window_config):
    """Orchestrator wired to in-memory and mock collaborators, test mode off"""
    return DischargeFollowupOrchestrator(
        store=store,
        generation_client=mock_generation,
        dispatch_client=mock_dispatch,
        retry_executor=retry_executor,
        window_config=window_config,
        test_mode=TestModeConfig(enabled=False),
        default_delay_minutes=2,
        default_timezone=TEST_TIMEZONE,
    )


@pytest.fixture
def redis_test_db():
    """
    Real Redis connection for integration tests.
    Uses database 15 to avoid conflicts with development data.
    """
    try:
        client = redis.Redis(host='localhost', port=6379, db=15, decode_responses=True)
        client.ping()  # Test connection
    except redis.ConnectionError:
        pytest.skip("Redis not available for integration tests")

    # Clear the test database before each test
    client.flushdb()

    yield client

    # Clean up after test
    client.flushdb()
    client.close()


@pytest.fixture
def redis_store(redis_test_db):
    """RedisStore on the integration test database"""
    return RedisStore(redis_test_db, key_prefix="followup-test")
