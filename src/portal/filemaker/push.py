"""Push portal submissions and communications into FileMaker.

Each push creates one FileMaker record and returns its recordId. Submission
pushes also try to stamp "last contact" on the matching property record;
that secondary write is best effort and never fails the push.
"""

from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Any

import structlog

from src.portal.filemaker.client import FileMakerClient
from src.portal.filemaker.errors import ErrorCategory, FileMakerError
from src.portal.filemaker.field_mapping import (
    BUYER_FIELD_MAP,
    COMMUNICATION_FIELD_MAP,
    PROPERTY_FIELD_MAP,
    SUBMISSION_FIELD_MAP,
    FieldMap,
    to_external,
)
from src.portal.filemaker.repository import LocalRecordNotFound, LocalRepository
from src.portal.filemaker.schemas import Layouts

logger = structlog.get_logger(__name__)

# Derived count fields on the submissions layout, keyed by document category.
DOCUMENT_COUNT_FIELDS = {
    "photo": "Photo_Count",
    "document": "Document_Count",
    "receipt": "Receipt_Count",
}


class PushGateway:
    """Creates FileMaker records from local submissions and communications.

    Args:
        client: FileMakerClient used for every FileMaker call.
        repository: Local store implementing LocalRepository.
        layouts: FileMaker layout names.
        property_map: Field map for property context and the last-contact stamp.
    """

    def __init__(
        self,
        client: FileMakerClient,
        repository: LocalRepository,
        layouts: Layouts | None = None,
        property_map: FieldMap = PROPERTY_FIELD_MAP,
    ) -> None:
        self._client = client
        self._repo = repository
        self._layouts = layouts or Layouts()
        self._property_map = property_map

    async def push_submission(self, submission_id: str) -> str:
        """Create a BuyerSubmissions record for a local submission.

        Returns:
            The created FileMaker recordId.

        Raises:
            LocalRecordNotFound: no such submission.
            FileMakerError: the primary create (or cross-link lookup) failed.
        """
        submission = await self._repo.get_submission_detail(submission_id)
        if submission is None:
            raise LocalRecordNotFound("Submission", submission_id)

        parcel_id = submission.property.parcel_id if submission.property else ""
        buyer = submission.buyer

        field_data = to_external(submission.fields(), SUBMISSION_FIELD_MAP)
        field_data.update(to_external({"parcel_id": parcel_id}, self._property_map))
        field_data.update(
            to_external(
                {
                    "email": buyer.email if buyer else "",
                    "first_name": buyer.first_name if buyer else None,
                    "last_name": buyer.last_name if buyer else None,
                },
                BUYER_FIELD_MAP,
            )
        )

        counts = Counter(doc.category for doc in submission.documents)
        for category, fm_field in DOCUMENT_COUNT_FIELDS.items():
            field_data[fm_field] = str(counts.get(category, 0))

        async def _push(token: str) -> str:
            property_record_id = await self._find_property_record(token, parcel_id)

            created = await self._client.create_record(
                token, self._layouts.submissions, field_data
            )

            if property_record_id:
                await self._stamp_last_contact(token, property_record_id)

            return str(created.get("recordId"))

        record_id = await self._client.with_session(_push)
        logger.info(
            "filemaker.push_submission",
            submission_id=submission_id,
            fm_record_id=record_id,
        )
        return record_id

    async def push_communication(self, communication_id: str) -> str:
        """Create a CommunicationLog record for a local communication."""
        communication = await self._repo.get_communication_detail(communication_id)
        if communication is None:
            raise LocalRecordNotFound("Communication", communication_id)

        prop = communication.property
        field_data = to_external(communication.fields(), COMMUNICATION_FIELD_MAP)
        field_data.update(
            to_external(
                {
                    "parcel_id": prop.parcel_id if prop else "",
                    "address": prop.address if prop else "",
                },
                self._property_map,
            )
        )

        async def _push(token: str) -> str:
            created = await self._client.create_record(
                token, self._layouts.communications, field_data
            )
            return str(created.get("recordId"))

        record_id = await self._client.with_session(_push)
        logger.info(
            "filemaker.push_communication",
            communication_id=communication_id,
            fm_record_id=record_id,
        )
        return record_id

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _find_property_record(self, token: str, parcel_id: str) -> str | None:
        """recordId of the FileMaker property with this parcel id, if any."""
        if not parcel_id:
            return None

        parcel_field = self._property_map.external_name("parcel_id")
        try:
            response = await self._client.find_records(
                token, self._layouts.properties, [{parcel_field: parcel_id}]
            )
        except FileMakerError as exc:
            if exc.category == ErrorCategory.NOT_FOUND:
                return None
            raise

        data = response.get("data") or []
        return str(data[0].get("recordId")) if data else None

    async def _stamp_last_contact(self, token: str, property_record_id: str) -> None:
        field_data: dict[str, Any] = to_external(
            {"last_contact_date": date.today()}, self._property_map
        )
        if not field_data:
            logger.debug("filemaker.last_contact_field_unresolved")
            return

        try:
            await self._client.update_record(
                token, self._layouts.properties, property_record_id, field_data
            )
        except FileMakerError as exc:
            logger.warning(
                "filemaker.push_last_contact_failed",
                record_id=property_record_id,
                error=str(exc),
            )
