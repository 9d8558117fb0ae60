"""
HTTP client for the negotiation API.

A NegotiationClient can stand in for both the proposal store and the state
machine of a NegotiationSession, so a party's session runs the same way
in-process or against a remote server.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx

from vehiclemarket.config import settings
from vehiclemarket.core import exceptions
from vehiclemarket.core.exceptions import NegotiationError, PersistenceFailure
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.schemas.message import MessageList, MessageResponse
from vehiclemarket.schemas.negotiation import (
    Bucket,
    CartHandoff,
    ConversationResponse,
    IndexEntryResponse,
    NegotiationAction,
    Proposal,
    ProposalActionRequest,
    ProposalBatchResponse,
    ProposalEnvelope,
)
from vehiclemarket.services.negotiation_session import NegotiationSession
from vehiclemarket.services.negotiation_state_machine import ConversationRef
from vehiclemarket.services.selection_repository import JsonFileSelectionRepository

logger = logging.getLogger(__name__)

ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        exceptions.InvalidProposalInput,
        exceptions.IllegalTransition,
        exceptions.PersistenceFailure,
        exceptions.ReconciliationConflict,
        exceptions.ConversationNotFound,
        exceptions.NotAParticipant,
    )
}


def _error_from_response(response: httpx.Response) -> NegotiationError:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else body

    if isinstance(detail, dict) and detail.get("code") in ERRORS_BY_CODE:
        return ERRORS_BY_CODE[detail["code"]](detail.get("message", ""))

    if response.status_code == 422:
        return exceptions.InvalidProposalInput(f"Request rejected: {detail}")
    if response.status_code >= 500:
        return PersistenceFailure(f"Server error {response.status_code}")
    if isinstance(detail, dict):
        return NegotiationError(detail.get("message", str(detail)))
    return NegotiationError(f"HTTP {response.status_code}: {detail}")


class NegotiationClient:
    """Async client for one user of the negotiation API."""

    def __init__(
        self,
        base_url: str,
        user: CurrentUser,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ):
        self.user = user
        self.prefix = settings.API_V1_PREFIX
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "NegotiationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self, user: Optional[CurrentUser] = None) -> Dict[str, str]:
        user = user or self.user
        return {"X-User-Id": user.user_id, "X-User-Role": user.role_type}

    async def _request(
        self,
        method: str,
        path: str,
        user: Optional[CurrentUser] = None,
        **kwargs
    ) -> Any:
        try:
            response = await self._http.request(
                method, f"{self.prefix}{path}", headers=self._headers(user), **kwargs
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise PersistenceFailure(f"Could not reach negotiation server: {e}") from e

        if response.is_error:
            raise _error_from_response(response)
        return response.json()

    # Conversations

    async def start(self, seller_id: str, item_id: str) -> ConversationResponse:
        data = await self._request("POST", "/negotiations", json={"seller_id": seller_id, "item_id": item_id})
        return ConversationResponse.model_validate(data)

    async def describe(self, conversation_id: str) -> ConversationResponse:
        data = await self._request("GET", f"/negotiations/{conversation_id}")
        return ConversationResponse.model_validate(data)

    async def list_negotiations(self, role: Optional[str] = None, status: Optional[str] = None) -> List[IndexEntryResponse]:
        params = {k: v for k, v in {"role": role, "status": status}.items() if v}
        data = await self._request("GET", "/negotiations", params=params)
        return [IndexEntryResponse.model_validate(entry) for entry in data]

    # Proposals

    async def get(self, conversation_id: str) -> Optional[Proposal]:
        """Current proposal of a conversation, or None before the first offer."""
        data = await self._request("GET", f"/negotiations/{conversation_id}/proposal")
        return ProposalEnvelope.model_validate(data).proposal

    async def get_many(self, conversation_ids: Sequence[str]) -> Dict[str, Proposal]:
        if not conversation_ids:
            return {}
        data = await self._request("GET", "/negotiations/proposals", params={"ids": ",".join(conversation_ids)})
        return ProposalBatchResponse.model_validate(data).proposals

    async def apply(
        self,
        conversation: ConversationRef,
        actor: CurrentUser,
        action: NegotiationAction,
        buckets: Sequence[Bucket] = (),
        discount_percent: Decimal = Decimal("0"),
        downpayment_percent: Optional[Decimal] = None,
        selected_port: Optional[str] = None,
        bucket_discounts: Optional[Dict[str, Decimal]] = None
    ) -> Proposal:
        """
        Send one action to the server.

        Raises:
            The NegotiationError subclass matching the server's error code;
            PersistenceFailure when the server is unreachable
        """
        request = ProposalActionRequest(
            action=action,
            buckets=list(buckets),
            discount_percent=discount_percent,
            bucket_discounts=bucket_discounts or {},
            downpayment_percent=downpayment_percent,
            selected_port=selected_port,
        )
        data = await self._request(
            "POST",
            f"/negotiations/{conversation.id}/proposal",
            user=actor,
            json=request.model_dump(mode="json", exclude={"items"}),
        )
        return ProposalEnvelope.model_validate(data).proposal

    async def handoff(
        self,
        conversation_id: str,
        logistics_partner: Optional[str] = None,
        destination_port: Optional[str] = None
    ) -> CartHandoff:
        params = {
            k: v for k, v in {
                "logistics_partner": logistics_partner,
                "destination_port": destination_port,
            }.items() if v
        }
        data = await self._request("GET", f"/negotiations/{conversation_id}/handoff", params=params)
        return CartHandoff.model_validate(data)

    # Transcript

    async def messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> MessageList:
        data = await self._request(
            "GET", f"/negotiations/{conversation_id}/messages", params={"limit": limit, "offset": offset}
        )
        return MessageList.model_validate(data)

    async def send_message(self, conversation_id: str, text: str) -> MessageResponse:
        data = await self._request("POST", f"/negotiations/{conversation_id}/messages", json={"text": text})
        return MessageResponse.model_validate(data)


async def open_session(
    client: NegotiationClient,
    conversation_id: str,
    cache_path: Optional[str] = None,
    seller_company: Optional[str] = None
) -> NegotiationSession:
    """
    Open a polling session on a remote conversation.

    Selections are read from the local quote-builder cache file.
    """
    conversation = await client.describe(conversation_id)
    selections = JsonFileSelectionRepository(cache_path or settings.SELECTION_CACHE_PATH)

    session = NegotiationSession(
        conversation=ConversationRef(
            id=conversation.id,
            buyer_id=conversation.buyer_id,
            seller_id=conversation.seller_id,
            item_id=conversation.item_id,
        ),
        user=client.user,
        gateway=client,
        store=client,
        selections=selections,
        seller_company=seller_company,
    )
    await session.poll()
    return session
