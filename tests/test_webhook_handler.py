import json

import pytest

from webhooks.fetchers import ResourceFetchers
from webhooks.handler import WebhookHandler
from webhooks.verify import WebhookSignatureInvalidError, generate_test_signature

SECRET = "whsec_test"
TIMESTAMP = "1700000000"


def _signed(*records: dict) -> tuple[str, dict]:
    body = json.dumps(list(records))
    headers = {
        "signature": generate_test_signature(body, TIMESTAMP, SECRET),
        "timestamp": TIMESTAMP,
    }
    return body, headers


class FakeResource:
    def __init__(self, calls: list, *, error: Exception | None = None) -> None:
        self.calls = calls
        self.error = error

    async def retrieve(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return {"args": args, "kwargs": kwargs}


class FakeDoorFlow:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: dict[str, list] = {"events": [], "credentials": []}
        self.error = error

    def resource(self, name: str) -> FakeResource:
        return FakeResource(self.calls[name], error=self.error)


def test_requires_secret() -> None:
    with pytest.raises(ValueError, match="WebhookHandler requires a secret"):
        WebhookHandler("")


def test_on_is_chainable() -> None:
    handler = WebhookHandler(SECRET)

    assert handler.on("Event.CREATE", lambda event, resource: None) is handler


@pytest.mark.asyncio
async def test_dispatch_specific_then_wildcard(raw_webhook_event) -> None:
    order: list[str] = []

    async def specific(event, resource):
        order.append("specific")

    async def wildcard(event, resource):
        order.append("wildcard")

    handler = WebhookHandler(SECRET)
    handler.on("*", wildcard).on("Event.CREATE", specific)
    body, headers = _signed(raw_webhook_event)

    events = await handler.handle(body, headers)

    assert order == ["specific", "wildcard"]
    assert [event.pattern for event in events] == ["Event.CREATE"]


@pytest.mark.asyncio
async def test_handlers_for_other_patterns_not_called(raw_webhook_event) -> None:
    called: list[str] = []

    handler = WebhookHandler(SECRET)
    handler.on("PersonCredential.UPDATE", lambda event, resource: called.append("credential"))
    handler.on("Event.DESTROY", lambda event, resource: called.append("destroy"))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert called == []


@pytest.mark.asyncio
async def test_events_dispatched_in_payload_order(raw_webhook_event, raw_credential_event) -> None:
    seen: list[str] = []

    handler = WebhookHandler(SECRET)
    handler.on("*", lambda event, resource: seen.append(event.pattern))
    body, headers = _signed(raw_webhook_event, raw_credential_event)

    await handler.handle(body, headers)

    assert seen == ["Event.CREATE", "PersonCredential.UPDATE"]


@pytest.mark.asyncio
async def test_sync_and_async_callbacks(raw_webhook_event) -> None:
    seen: list[str] = []

    async def async_callback(event, resource):
        seen.append("async")

    handler = WebhookHandler(SECRET)
    handler.on("Event.CREATE", lambda event, resource: seen.append("sync"))
    handler.on("Event.CREATE", async_callback)
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert seen == ["sync", "async"]


@pytest.mark.asyncio
async def test_capitalized_headers(raw_webhook_event) -> None:
    seen: list[str] = []
    handler = WebhookHandler(SECRET)
    handler.on("*", lambda event, resource: seen.append(event.ack_token))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(
        body,
        {"Signature": headers["signature"], "Timestamp": headers["timestamp"]},
    )

    assert seen == ["abc123"]


@pytest.mark.asyncio
async def test_list_header_values(raw_webhook_event) -> None:
    handler = WebhookHandler(SECRET)
    body, headers = _signed(raw_webhook_event)

    events = await handler.handle(
        body,
        {"signature": [headers["signature"]], "timestamp": [headers["timestamp"]]},
    )

    assert len(events) == 1


@pytest.mark.asyncio
async def test_invalid_signature_skips_dispatch(raw_webhook_event) -> None:
    called: list[str] = []
    handler = WebhookHandler(SECRET)
    handler.on("*", lambda event, resource: called.append("called"))
    body, _ = _signed(raw_webhook_event)

    with pytest.raises(WebhookSignatureInvalidError):
        await handler.handle(body, {"signature": "0" * 64, "timestamp": TIMESTAMP})

    assert called == []


@pytest.mark.asyncio
async def test_callback_error_propagates_and_stops(raw_webhook_event) -> None:
    called: list[str] = []

    def failing(event, resource):
        raise RuntimeError("handler failed")

    handler = WebhookHandler(SECRET)
    handler.on("Event.CREATE", failing)
    handler.on("*", lambda event, resource: called.append("wildcard"))
    body, headers = _signed(raw_webhook_event)

    with pytest.raises(RuntimeError, match="handler failed"):
        await handler.handle(body, headers)

    assert called == []


@pytest.mark.asyncio
async def test_no_client_passes_none_resource(raw_webhook_event) -> None:
    resources: list = []
    handler = WebhookHandler(SECRET)
    handler.on("*", lambda event, resource: resources.append(resource))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert resources == [None]


# -- auto-fetch ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_fetches_event_resource(raw_webhook_event) -> None:
    doorflow = FakeDoorFlow()
    resources: list = []
    handler = WebhookHandler(SECRET, doorflow)
    handler.on("Event.CREATE", lambda event, resource: resources.append(resource))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert doorflow.calls["events"] == [((98321,), {})]
    assert resources == [{"args": (98321,), "kwargs": {}}]


@pytest.mark.asyncio
async def test_fetches_person_credential_from_url(raw_credential_event) -> None:
    doorflow = FakeDoorFlow()
    handler = WebhookHandler(SECRET, doorflow)
    body, headers = _signed(raw_credential_event)

    await handler.handle(body, headers)

    assert doorflow.calls["credentials"] == [(("cred-77",), {"person_id": 4412})]


@pytest.mark.asyncio
async def test_credential_without_person_in_url(raw_credential_event) -> None:
    raw_credential_event["resource"] = "https://api.doorflow.com/api/3/credentials/cred-77"
    doorflow = FakeDoorFlow()
    resources: list = []
    handler = WebhookHandler(SECRET, doorflow)
    handler.on("*", lambda event, resource: resources.append(resource))
    body, headers = _signed(raw_credential_event)

    await handler.handle(body, headers)

    assert doorflow.calls["credentials"] == []
    assert resources == [None]


@pytest.mark.asyncio
async def test_fetch_failure_still_dispatches(raw_webhook_event) -> None:
    doorflow = FakeDoorFlow(error=RuntimeError("404 not found"))
    resources: list = []
    handler = WebhookHandler(SECRET, doorflow)
    handler.on("*", lambda event, resource: resources.append(resource))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert resources == [None]


@pytest.mark.asyncio
async def test_unknown_resource_type_not_fetched(raw_webhook_event) -> None:
    raw_webhook_event["resource_type"] = "Channel"
    doorflow = FakeDoorFlow()
    patterns: list[str] = []
    handler = WebhookHandler(SECRET, doorflow)
    handler.on("Channel.CREATE", lambda event, resource: patterns.append(event.pattern))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert patterns == ["Channel.CREATE"]
    assert doorflow.calls == {"events": [], "credentials": []}


@pytest.mark.asyncio
async def test_registered_fetcher_is_used(raw_webhook_event) -> None:
    raw_webhook_event["resource_type"] = "Channel"

    async def fetch_channel(client, event):
        return {"channel": event.resource_id}

    fetchers = ResourceFetchers().register("Channel", fetch_channel)
    resources: list = []
    handler = WebhookHandler(SECRET, FakeDoorFlow(), fetchers=fetchers)
    handler.on("*", lambda event, resource: resources.append(resource))
    body, headers = _signed(raw_webhook_event)

    await handler.handle(body, headers)

    assert handler.fetchers is fetchers
    assert resources == [{"channel": "98321"}]


def test_fetchers_constructor_overrides_defaults() -> None:
    async def custom(client, event):
        return None

    fetchers = ResourceFetchers({"Event": custom})

    assert fetchers.get("Event") is custom
    assert fetchers.get("PersonCredential") is not None
    assert fetchers.get("Unknown") is None
