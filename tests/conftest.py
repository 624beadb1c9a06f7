import pytest


@pytest.fixture
def raw_webhook_event() -> dict:
    return {
        "action": "CREATE",
        "resource": "https://api.doorflow.com/api/3/events/98321?ack_token=abc123",
        "resource_type": "Event",
        "resource_id": "98321",
        "account_id": "nbYfy7",
        "ack_token": "abc123",
    }


@pytest.fixture
def raw_credential_event() -> dict:
    return {
        "action": "UPDATE",
        "resource": "https://api.doorflow.com/api/3/people/4412/credentials/cred-77?ack_token=def456",
        "resource_type": "PersonCredential",
        "resource_id": "cred-77",
        "account_id": "nbYfy7",
        "ack_token": "def456",
    }
