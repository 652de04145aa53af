"""FEC API client for committee, totals and itemized receipt data"""
import asyncio
import base64
import json
import httpx
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from pydantic import ValidationError
from finance_recon.config import settings
from finance_recon.exceptions import (
    ConfigurationError,
    CursorError,
    FinanceAPITransportError,
    RateLimitedError,
)
from finance_recon.models.fec import (
    APIEnvelope,
    CandidateCommitteePayload,
    CommitteeTotalsPayload,
    ScheduleAItem,
)
from finance_recon.models.ledger import (
    CommitteeSummary,
    CommitteeTotals,
    ContributionPage,
    ItemizedContribution,
)
from finance_recon.utils.logging import get_logger
from finance_recon.utils.retry import api_retrying

logger = get_logger(__name__)

Params = Union[Dict[str, Any], Sequence[Tuple[str, Any]]]


def encode_cursor(last_indexes: Dict[str, Any]) -> str:
    """Pack the FEC keyset pagination markers into an opaque token"""
    raw = json.dumps(last_indexes, sort_keys=True, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
    except (ValueError, UnicodeDecodeError) as e:
        raise CursorError(f"Unreadable cursor: {e}") from e
    if not isinstance(decoded, dict):
        raise CursorError("Cursor does not decode to an index mapping")
    return decoded


class FECClient:
    """Rate-limited OpenFEC client.

    Ordinary failures (non-200 responses, malformed payloads, exhausted 429
    retries) come back as ``None`` or empty results. Only transport failures
    raise, as ``FinanceAPITransportError``. Every request waits until at least
    ``request_delay_ms`` has passed since the previous one.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        request_delay_ms: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        per_page: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.fec_api_key
        self.base_url = (base_url or settings.fec_base_url).rstrip("/")
        delay_ms = settings.fec_request_delay_ms if request_delay_ms is None else request_delay_ms
        self.request_delay = delay_ms / 1000.0
        self.retry_attempts = settings.fec_retry_attempts if retry_attempts is None else retry_attempts
        self.per_page = per_page or settings.fec_per_page
        self.client = httpx.AsyncClient(
            timeout=timeout or settings.fec_timeout_seconds,
            transport=transport,
        )
        self._last_request_at: Optional[float] = None
        self._throttle_lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    async def _throttle(self):
        async with self._throttle_lock:
            loop = asyncio.get_running_loop()
            if self._last_request_at is not None:
                wait = self.request_delay - (loop.time() - self._last_request_at)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request_at = loop.time()

    async def _request(self, endpoint: str, params: Params = None) -> Optional[Dict[str, Any]]:
        """Make FEC API request"""
        if not self.api_key:
            raise ConfigurationError("FEC_API_KEY not configured")

        url = f"{self.base_url}/{endpoint.strip('/')}/"
        request_params: List[Tuple[str, Any]] = [("api_key", self.api_key)]
        if params:
            items = params.items() if isinstance(params, dict) else params
            request_params.extend(items)

        retrying = api_retrying(
            self.retry_attempts, settings.fec_retry_min_wait, settings.fec_retry_max_wait
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._throttle()
                    logger.info("Making FEC API request", endpoint=endpoint)
                    response = await self.client.get(url, params=request_params)
                    if response.status_code == 429:
                        logger.warning("FEC API rate limited", endpoint=endpoint)
                        raise RateLimitedError(endpoint)
        except RateLimitedError:
            logger.error("FEC API rate limit retries exhausted", endpoint=endpoint)
            return None
        except httpx.TransportError as e:
            logger.error("FEC API transport failure", endpoint=endpoint, error=str(e))
            raise FinanceAPITransportError(f"{endpoint}: {e}") from e

        if response.status_code != 200:
            logger.warning("FEC API error response", endpoint=endpoint, status=response.status_code)
            return None

        try:
            return response.json()
        except ValueError:
            logger.warning("FEC API returned invalid JSON", endpoint=endpoint)
            return None

    def _envelope(self, data: Optional[Dict[str, Any]], endpoint: str) -> Optional[APIEnvelope]:
        if data is None:
            return None
        try:
            return APIEnvelope.model_validate(data)
        except ValidationError as e:
            logger.warning("Malformed FEC payload", endpoint=endpoint, error=str(e))
            return None

    async def fetch_committees_for_candidate(self, fec_candidate_id: str) -> List[CommitteeSummary]:
        """Principal and authorized committees for an FEC candidate id"""
        endpoint = f"candidate/{fec_candidate_id}/committees"
        params = [("designation", "P"), ("designation", "A"), ("per_page", 50)]
        envelope = self._envelope(await self._request(endpoint, params), endpoint)
        if envelope is None:
            return []

        committees = []
        for raw in envelope.results:
            try:
                payload = CandidateCommitteePayload.model_validate(raw)
            except ValidationError as e:
                logger.warning("Skipping malformed committee", fec_candidate_id=fec_candidate_id, error=str(e))
                continue
            committees.append(CommitteeSummary(
                fec_committee_id=payload.committee_id,
                name=payload.name,
                designation=payload.designation,
                designation_full=payload.designation_full,
                committee_type=payload.committee_type,
            ))

        logger.info("Retrieved FEC committees", fec_candidate_id=fec_candidate_id, count=len(committees))
        return committees

    async def fetch_committee_totals(self, fec_committee_id: str, cycle: str) -> Optional[CommitteeTotals]:
        """Reported receipt totals for a committee in one cycle, or None"""
        endpoint = f"committee/{fec_committee_id}/totals"
        envelope = self._envelope(
            await self._request(endpoint, {"cycle": cycle, "per_page": 1}), endpoint
        )
        if envelope is None or not envelope.results:
            return None

        try:
            payload = CommitteeTotalsPayload.model_validate(envelope.results[0])
        except ValidationError as e:
            logger.warning("Malformed committee totals", fec_committee_id=fec_committee_id, error=str(e))
            return None

        return CommitteeTotals(
            itemized=payload.individual_itemized_contributions,
            unitemized=payload.individual_unitemized_contributions,
            total_receipts=payload.receipts,
            pac_contributions=payload.other_political_committee_contributions,
            party_contributions=payload.political_party_committee_contributions,
            loans=payload.loans,
            transfers=payload.transfers_from_other_authorized_committee,
            candidate_contribution=payload.candidate_contribution,
            other_receipts=payload.other_receipts,
        )

    async def fetch_itemized_contributions_page(
        self, fec_committee_id: str, cycle: str, cursor: Optional[str] = None
    ) -> Optional[ContributionPage]:
        """One page of Schedule A receipts starting at ``cursor``.

        Returns None when the page could not be fetched or parsed, so the
        caller keeps its stored cursor and retries on the next run.
        """
        params: Dict[str, Any] = {
            "committee_id": fec_committee_id,
            "two_year_transaction_period": cycle,
            "per_page": self.per_page,
            "sort": "-contribution_receipt_date",
            "sort_null_only": "false",
        }
        if cursor:
            try:
                params.update(decode_cursor(cursor))
            except CursorError as e:
                logger.warning("Discarding page request with bad cursor", fec_committee_id=fec_committee_id, error=str(e))
                return None

        endpoint = "schedules/schedule_a"
        envelope = self._envelope(await self._request(endpoint, params), endpoint)
        if envelope is None:
            return None

        records = []
        for raw in envelope.results:
            try:
                item = ScheduleAItem.model_validate(raw)
            except ValidationError as e:
                logger.warning("Skipping malformed receipt", fec_committee_id=fec_committee_id, error=str(e))
                continue
            records.append(ItemizedContribution(
                fec_record_id=item.sub_id,
                fec_committee_id=item.committee_id or fec_committee_id,
                donor_name=item.contributor_name,
                entity_type=item.entity_type,
                amount=item.contribution_receipt_amount,
                receipt_date=item.contribution_receipt_date,
                memo_text=item.memo_text,
                line_number=item.line_number,
                receipt_type=item.receipt_type,
            ))

        last_indexes = envelope.pagination.last_indexes if envelope.pagination else None
        has_more = bool(last_indexes) and len(envelope.results) >= self.per_page
        next_cursor = encode_cursor(last_indexes) if has_more else None

        return ContributionPage(records=records, next_cursor=next_cursor, has_more=has_more)
