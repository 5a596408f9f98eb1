"""
Mercury CRM Adapter

Maps form submissions onto Mercury (Connective) contacts and
opportunities, linking the two records when both are created.
"""

from typing import Any, Dict, List, Optional

import httpx

from ..base import (
    IntegrationField,
    IntegrationFieldType,
    IntegrationType,
    ValidationResult,
)
from ..submission import Submission
from .base import Crm

PRODUCTION_URL = "https://apis.connective.com.au/mercury/v1"
UAT_URL = "https://uatapis.connective.com.au/mercury-v1"

CONTACT_FIELDS: List[IntegrationField] = [
    IntegrationField(handle="email", name="Email", required=True),
    IntegrationField(handle="firstName", name="First Name"),
    IntegrationField(handle="middleName", name="Middle Name"),
    IntegrationField(handle="lastName", name="Last Name"),
    IntegrationField(handle="salutation", name="Salutation"),
    IntegrationField(handle="title", name="Title"),
    IntegrationField(handle="occupation", name="Occupation"),
    IntegrationField(handle="employer", name="Employer"),
    IntegrationField(handle="jobTitle", name="Job Title"),
    IntegrationField(handle="maritalStatus", name="Marital Status"),
    IntegrationField(handle="driversLicenceNumber", name="Drivers Licence Number"),
    IntegrationField(handle="driversLicenceExpiry", name="Drivers Licence Expiry", type=IntegrationFieldType.DATE),
    IntegrationField(handle="driversLicenceState", name="Drivers Licence State"),
    IntegrationField(handle="gender", name="Gender"),
    IntegrationField(handle="dateOfBirth", name="Date of Birth", type=IntegrationFieldType.DATE),
    IntegrationField(handle="employmentStatus", name="Employment Status"),
    IntegrationField(handle="employmentCommenced", name="Employment Commenced", type=IntegrationFieldType.DATE),
    IntegrationField(handle="phoneDisplayType1", name="Phone Display Type 1"),
    IntegrationField(handle="phoneDisplayType2", name="Phone Display Type 2"),
    IntegrationField(handle="addressDisplay", name="Address Display"),
    IntegrationField(handle="homePhone", name="Home Phone Number"),
    IntegrationField(handle="businessPhone", name="Business Phone Number"),
    IntegrationField(handle="mobile_phone_number", name="Mobile Phone Number"),
    IntegrationField(handle="personDataType", name="Person Data Type"),
    IntegrationField(handle="notes", name="Notes"),
    IntegrationField(handle="relationshipManager", name="Relationship Manager"),
    IntegrationField(handle="annualSalary", name="Annual Salary", type=IntegrationFieldType.NUMBER),
    IntegrationField(handle="contactType", name="Contact Type"),
    IntegrationField(handle="abn", name="ABN"),
    IntegrationField(handle="acn", name="ACN"),
    IntegrationField(handle="homeSuburb", name="Home Suburb"),
    IntegrationField(handle="partnerName", name="Partner Name"),
    IntegrationField(handle="leadSourceId", name="Lead Source ID"),
    IntegrationField(handle="leadSourceName", name="Lead Source Name"),
]

OPPORTUNITY_FIELDS: List[IntegrationField] = [
    IntegrationField(handle="company", name="Company"),
    IntegrationField(handle="opportunityName", name="Name"),
    IntegrationField(handle="amount", name="Amount", type=IntegrationFieldType.NUMBER),
    IntegrationField(handle="lender", name="Lender"),
    IntegrationField(handle="lenderNameShort", name="Lender Name Short"),
    IntegrationField(handle="status", name="Status"),
    IntegrationField(handle="agent", name="Agent"),
    IntegrationField(handle="personActing", name="Person Acting"),
    IntegrationField(handle="personResponsible", name="Person Responsible"),
    IntegrationField(handle="lenderReference", name="Lender Reference"),
    IntegrationField(handle="financeDate", name="Finance Date", type=IntegrationFieldType.DATE),
    IntegrationField(handle="expectedSettlementDate", name="Expected Settlement Date", type=IntegrationFieldType.DATE),
    IntegrationField(handle="confirmedSettlementDate", name="Confirmed Settlement Date", type=IntegrationFieldType.DATE),
    IntegrationField(handle="leadSourceId", name="Lead Source ID"),
    IntegrationField(handle="leadSourceDisplay", name="Lead Source Display"),
    IntegrationField(handle="discount", name="Discount", type=IntegrationFieldType.FLOAT),
    IntegrationField(handle="existingAmount", name="Existing Amount", type=IntegrationFieldType.NUMBER),
    IntegrationField(handle="lmi", name="LMI", type=IntegrationFieldType.FLOAT),
    IntegrationField(handle="settlementDateConfirmed", name="Settlement Date Confirmed", type=IntegrationFieldType.BOOLEAN),
    IntegrationField(handle="discountType", name="Discount Type"),
    IntegrationField(handle="loanPersonRelationship", name="Loan Person Relationship"),
    IntegrationField(handle="transactionType", name="Transaction Type"),
    IntegrationField(handle="notePadText", name="Note Pad Text"),
    IntegrationField(handle="partnerReference", name="Partner Reference"),
    IntegrationField(handle="nextGenId", name="Next Gen ID"),
    IntegrationField(handle="parentId", name="Parent ID"),
    IntegrationField(handle="workspaceUsers", name="Workspace Users"),
    IntegrationField(handle="agentName", name="Agent Name"),
    IntegrationField(handle="personActingName", name="Person Acting Name"),
    IntegrationField(handle="personResponsibleName", name="Person Responsible Name"),
]


class MercuryAdapter(Crm):
    """Mercury CRM adapter."""

    display_name = "Mercury"
    description = "Manage your Mercury customers by providing important information on their conversion on your site."

    def __init__(self, handle: str, **config):
        """
        Initialize Mercury adapter.

        Args:
            handle: Integration handle
            **config: ``api_key``, ``api_token``, ``uat_key``, ``uat_token``,
                ``use_uat``, ``map_to_contact``, ``map_to_opportunity``,
                ``contact_field_mapping``, ``opportunity_field_mapping`` and
                ``failure_policy``
        """
        super().__init__(handle, **config)
        self.use_uat = self.secrets.resolve_bool(self.config.get("use_uat", False))
        self.map_to_contact = bool(self.config.get("map_to_contact", False))
        self.map_to_opportunity = bool(self.config.get("map_to_opportunity", False))
        self.contact_field_mapping: Dict[str, Any] = self.config.get("contact_field_mapping") or {}
        self.opportunity_field_mapping: Dict[str, Any] = self.config.get("opportunity_field_mapping") or {}

    def _get_integration_type(self) -> IntegrationType:
        return IntegrationType.MERCURY

    def _validate_settings(self, result: ValidationResult, scenario: str) -> None:
        self._require(result, "api_key", "API Key")
        self._require(result, "api_token", "API Token")

        if self.use_uat:
            self._require(result, "uat_key", "UAT API Key")
            self._require(result, "uat_token", "UAT API Token")

        if scenario == self.SCENARIO_FORM and self.enabled:
            if self.map_to_contact:
                self._validate_field_mapping(result, "contact_field_mapping", CONTACT_FIELDS)
            if self.map_to_opportunity:
                self._validate_field_mapping(result, "opportunity_field_mapping", OPPORTUNITY_FIELDS)

    async def _fetch_form_settings(self) -> Dict[str, List[IntegrationField]]:
        return {
            "contact": list(CONTACT_FIELDS),
            "opportunity": list(OPPORTUNITY_FIELDS),
        }

    async def send_payload(self, submission: Submission) -> bool:
        try:
            contact_payload = self.get_field_mapping_values(submission, self.contact_field_mapping, CONTACT_FIELDS)
            opportunity_payload = self.get_field_mapping_values(
                submission, self.opportunity_field_mapping, OPPORTUNITY_FIELDS
            )

            contact_id: Optional[str] = None

            if self.map_to_contact:
                response = await self.deliver_payload(submission, "contacts", contact_payload)

                if response is None:
                    return self._soft_failure_result(submission, "contacts")

                contact_id = response.get("uniqueId") or ""

            if self.map_to_opportunity:
                # The contact link only ever comes from the contact created above
                opportunity_payload.pop("personID", None)

                if contact_id:
                    opportunity_payload["personID"] = contact_id

                response = await self.deliver_payload(submission, "opportunities", opportunity_payload)

                if response is None:
                    return self._soft_failure_result(submission, "opportunities")

                opportunity_id = response.get("uniqueId") or ""

                # Relate the opportunity and contact
                if contact_id and opportunity_id:
                    endpoint = f"opportunities/{opportunity_id}/relatedParties"
                    response = await self.deliver_payload(submission, endpoint, {"personID": contact_id})

                    if response is None:
                        return self._soft_failure_result(submission, endpoint)

        except Exception as e:
            self.api_error(e, submission_id=submission.id)
            return False

        return True

    async def _fetch_connection(self) -> None:
        await self.request("GET", "contacts", params={"search": "true"})

    def _create_client(self) -> httpx.AsyncClient:
        url = PRODUCTION_URL
        api_token = self.secrets.resolve(self.config.get("api_token"))
        api_key = self.secrets.resolve(self.config.get("api_key"))

        if self.use_uat:
            url = UAT_URL
            api_token = self.secrets.resolve(self.config.get("uat_token"))
            api_key = self.secrets.resolve(self.config.get("uat_key"))

        return httpx.AsyncClient(
            base_url=f"{url}/{api_token}/",
            headers={"x-api-key": api_key or "", "Accept": "application/json"},
            timeout=self.timeout,
            transport=self.transport,
        )
