"""
Mercury CRM Adapter Tests

Covers configuration validation, schema discovery, connection checks and
the contact -> opportunity -> relationship delivery chain.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from formbridge.integrations.base import IntegrationFactory, IntegrationFormSettings, IntegrationType
from formbridge.integrations.crm.base import CrmFailurePolicy
from formbridge.integrations.crm.mercury_adapter import CONTACT_FIELDS, MercuryAdapter
from formbridge.integrations.hooks import IntegrationEvent
from formbridge.integrations.submission import Submission

BASE_PATH = "/mercury/v1/mercury-token"


@pytest.fixture
def lead_submission():
    return Submission(
        id="sub-42",
        form_handle="enquiry",
        values={
            "email": "jane@example.com",
            "name": {"firstName": "Jane", "lastName": "Doe"},
            "form": "Loans",
            "loanAmount": "250000",
        },
    )


@pytest.fixture
def make_adapter(mercury_config, vendor, hooks, secrets):
    def factory(**overrides):
        config = {**mercury_config, **overrides}
        return MercuryAdapter("mercury", hooks=hooks, secrets=secrets, transport=vendor.transport, **config)

    return factory


class TestMercuryConfiguration:
    """Settings and form-level validation."""

    def test_registered_with_factory(self, mercury_config):
        adapter = IntegrationFactory.create_integration(IntegrationType.MERCURY, "mercury", **mercury_config)

        assert isinstance(adapter, MercuryAdapter)
        assert IntegrationType.MERCURY in IntegrationFactory.get_supported_integrations()

    def test_valid_configuration(self, make_adapter):
        result = make_adapter().validate_configuration()

        assert result.is_valid
        assert result.errors == {}

    def test_missing_credentials_are_reported_per_field(self, make_adapter):
        result = make_adapter(api_key="", api_token=None).validate_configuration()

        assert not result.is_valid
        assert result.errors["api_key"] == ["API Key cannot be blank."]
        assert result.errors["api_token"] == ["API Token cannot be blank."]

    def test_uat_toggle_requires_uat_credentials(self, make_adapter):
        result = make_adapter(use_uat=True).validate_configuration()

        assert set(result.errors) == {"uat_key", "uat_token"}

        result = make_adapter(use_uat=True, uat_key="uat-key", uat_token="uat-token").validate_configuration()
        assert result.is_valid

    def test_unresolved_secret_reference_is_blank(self, make_adapter):
        result = make_adapter(api_key="$MISSING_VARIABLE").validate_configuration()

        assert "api_key" in result.errors

    def test_form_scenario_requires_mapped_required_fields(self, make_adapter):
        adapter = make_adapter(contact_field_mapping={"firstName": "{name.firstName}"})

        assert adapter.validate_configuration().is_valid
        result = adapter.validate_configuration(MercuryAdapter.SCENARIO_FORM)
        assert result.errors["contact_field_mapping"] == ["Email must be configured."]

    def test_form_scenario_ignores_disabled_objects(self, make_adapter):
        adapter = make_adapter(map_to_contact=False, contact_field_mapping={})

        assert adapter.validate_configuration(MercuryAdapter.SCENARIO_FORM).is_valid

    def test_invalid_failure_policy_is_rejected(self, make_adapter):
        with pytest.raises(ValueError):
            make_adapter(failure_policy="sometimes")


class TestMercurySchema:
    """Remote schema discovery and connection checks."""

    @pytest.mark.asyncio
    async def test_fetch_form_settings_returns_static_catalog(self, make_adapter):
        form_settings = await make_adapter().fetch_form_settings()

        contact = form_settings.get_setting_value("contact")
        assert len(contact) == len(CONTACT_FIELDS) == 34
        assert [field.handle for field in contact if field.required] == ["email"]

        opportunity_handles = [field.handle for field in form_settings.get_setting_value("opportunity")]
        assert len(opportunity_handles) == len(set(opportunity_handles))

    @pytest.mark.asyncio
    async def test_fetch_form_settings_fails_soft(self, make_adapter, hooks):
        adapter = make_adapter()
        adapter._fetch_form_settings = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        errors = []
        hooks.register(IntegrationEvent.API_ERROR, errors.append)

        form_settings = await adapter.fetch_form_settings()

        assert isinstance(form_settings, IntegrationFormSettings)
        assert form_settings.is_empty()
        assert form_settings.to_dict() == {}
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_fetch_form_settings_fails_soft_with_failing_observer(self, make_adapter, hooks):
        adapter = make_adapter()
        adapter._fetch_form_settings = AsyncMock(side_effect=httpx.ConnectError("connection refused"))

        def broken(event):
            raise RuntimeError("observer bug")

        hooks.register(IntegrationEvent.API_ERROR, broken)

        form_settings = await adapter.fetch_form_settings()

        assert form_settings.is_empty()

    @pytest.mark.asyncio
    async def test_fetch_connection_success(self, make_adapter, vendor):
        vendor.add("GET", "contacts", {"items": []})

        assert await make_adapter().fetch_connection() is True

        request = vendor.requests[0]
        assert request.url.path == f"{BASE_PATH}/contacts"
        assert request.url.params["search"] == "true"
        assert request.headers["x-api-key"] == "mercury-key"

    @pytest.mark.asyncio
    async def test_fetch_connection_failure_returns_false(self, make_adapter, vendor):
        vendor.add("GET", "contacts", {"message": "Invalid token"}, status_code=401)

        assert await make_adapter().fetch_connection() is False

    @pytest.mark.asyncio
    async def test_fetch_connection_transport_error_returns_false(self, make_adapter, vendor):
        vendor.add("GET", "contacts", exc=httpx.ReadTimeout("timed out"))

        assert await make_adapter().fetch_connection() is False

    @pytest.mark.asyncio
    async def test_uat_environment_uses_uat_credentials(self, make_adapter, vendor):
        vendor.add("GET", "contacts", {})
        adapter = make_adapter(use_uat=True, uat_key="uat-key", uat_token="uat-token")

        await adapter.fetch_connection()

        request = vendor.requests[0]
        assert request.url.host == "uatapis.connective.com.au"
        assert request.url.path == "/mercury-v1/uat-token/contacts"
        assert request.headers["x-api-key"] == "uat-key"

    @pytest.mark.asyncio
    async def test_credentials_resolve_environment_references(self, make_adapter, vendor):
        vendor.add("GET", "contacts", {})

        await make_adapter(api_key="$MERCURY_API_KEY").fetch_connection()

        assert vendor.requests[0].headers["x-api-key"] == "env-key"


class TestMercuryDelivery:
    """Submission delivery chain and failure policy."""

    @pytest.mark.asyncio
    async def test_creates_contact_then_opportunity_then_relationship(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "contacts", {"uniqueId": "C-1"})
        vendor.add("POST", "opportunities", {"uniqueId": "O-1"})
        vendor.add("POST", "relatedParties", {})

        assert await make_adapter().send_payload(lead_submission) is True

        assert vendor.calls == [
            ("POST", f"{BASE_PATH}/contacts"),
            ("POST", f"{BASE_PATH}/opportunities"),
            ("POST", f"{BASE_PATH}/opportunities/O-1/relatedParties"),
        ]
        assert vendor.json_body(0) == {
            "email": "jane@example.com",
            "firstName": "Jane",
            "lastName": "Doe",
            "notes": "Enquiry from Loans",
        }
        assert vendor.json_body(1) == {
            "opportunityName": "Website lead: Doe",
            "amount": 250000,
            "personID": "C-1",
        }
        assert vendor.json_body(2) == {"personID": "C-1"}

    @pytest.mark.asyncio
    async def test_opportunity_omits_person_when_contact_disabled(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "opportunities", {"uniqueId": "O-1"})

        assert await make_adapter(map_to_contact=False).send_payload(lead_submission) is True

        assert vendor.calls == [("POST", f"{BASE_PATH}/opportunities")]
        assert "personID" not in vendor.json_body(0)

    @pytest.mark.asyncio
    async def test_mapped_person_is_never_sent_without_contact(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "opportunities", {"uniqueId": "O-1"})
        adapter = make_adapter(
            map_to_contact=False,
            opportunity_field_mapping={"opportunityName": "Website lead: {name.lastName}", "personID": "{email}"},
        )

        assert await adapter.send_payload(lead_submission) is True

        assert vendor.json_body(0) == {"opportunityName": "Website lead: Doe"}

    @pytest.mark.asyncio
    async def test_mapped_person_is_replaced_by_created_contact(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "contacts", {"uniqueId": "C-1"})
        vendor.add("POST", "opportunities", {"uniqueId": "O-1"})
        vendor.add("POST", "relatedParties", {})
        adapter = make_adapter(opportunity_field_mapping={"personID": "{email}"})

        await adapter.send_payload(lead_submission)

        assert vendor.json_body(1) == {"personID": "C-1"}

    @pytest.mark.asyncio
    async def test_no_link_when_contact_id_is_empty(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "contacts", {"uniqueId": ""})
        vendor.add("POST", "opportunities", {"uniqueId": "O-1"})

        assert await make_adapter().send_payload(lead_submission) is True

        assert len(vendor.requests) == 2
        assert "personID" not in vendor.json_body(1)

    @pytest.mark.asyncio
    async def test_empty_values_are_dropped_from_payload(self, make_adapter, vendor):
        vendor.add("POST", "contacts", {"uniqueId": "C-1"})
        submission = Submission(id="sub-43", form_handle="enquiry", values={"email": "sam@example.com"})

        await make_adapter(map_to_opportunity=False).send_payload(submission)

        assert vendor.json_body(0) == {"email": "sam@example.com", "notes": "Enquiry from "}

    @pytest.mark.asyncio
    async def test_vendor_rejection_does_not_block_by_default(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "contacts", {"message": "Duplicate contact"}, status_code=422)

        adapter = make_adapter()
        assert adapter.failure_policy is CrmFailurePolicy.DO_NOT_BLOCK
        assert await adapter.send_payload(lead_submission) is True
        # The rest of the chain is abandoned
        assert len(vendor.requests) == 1

    @pytest.mark.asyncio
    async def test_vendor_rejection_blocks_under_block_policy(self, make_adapter, vendor, lead_submission):
        vendor.add("POST", "contacts", {"uniqueId": "C-1"})
        vendor.add("POST", "opportunities", {"message": "Server error"}, status_code=500)

        adapter = make_adapter(failure_policy="block")

        assert await adapter.send_payload(lead_submission) is False
        assert len(vendor.requests) == 2

    @pytest.mark.asyncio
    async def test_transport_error_is_a_soft_rejection(self, make_adapter, vendor, lead_submission, hooks):
        vendor.add("POST", "contacts", exc=httpx.ConnectTimeout("timed out"))
        errors = []
        hooks.register(IntegrationEvent.API_ERROR, errors.append)

        assert await make_adapter().send_payload(lead_submission) is True

        assert len(errors) == 1
        assert errors[0].exception.error_code == "transport_error"

    @pytest.mark.asyncio
    async def test_unexpected_error_reports_failure(self, make_adapter, vendor, lead_submission, hooks):
        def explode(event):
            raise RuntimeError("observer bug")

        hooks.register(IntegrationEvent.BEFORE_SEND_PAYLOAD, explode)

        assert await make_adapter().send_payload(lead_submission) is False
        assert vendor.requests == []

    @pytest.mark.asyncio
    async def test_observer_can_cancel_delivery(self, make_adapter, vendor, lead_submission, hooks):
        def cancel(event):
            event.is_valid = False

        hooks.register(IntegrationEvent.BEFORE_SEND_PAYLOAD, cancel)

        assert await make_adapter().send_payload(lead_submission) is True
        assert vendor.requests == []

    @pytest.mark.asyncio
    async def test_observers_can_modify_payload_and_see_response(self, make_adapter, vendor, lead_submission, hooks):
        vendor.add("POST", "contacts", {"uniqueId": "C-1"})
        responses = []

        def tag_contact(event):
            event.payload["leadSourceName"] = "Website"

        hooks.register(IntegrationEvent.BEFORE_SEND_PAYLOAD, tag_contact)
        hooks.register(IntegrationEvent.AFTER_SEND_PAYLOAD, lambda event: responses.append(event.response))

        await make_adapter(map_to_opportunity=False).send_payload(lead_submission)

        assert vendor.json_body(0)["leadSourceName"] == "Website"
        assert responses == [{"uniqueId": "C-1"}]
