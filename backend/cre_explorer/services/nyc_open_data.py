"""
NYC Open Data (Socrata) client for the ingestion job.

Datasets:
    PLUTO           64uk-42ks   tax lots with zoning, assessment, owner
    Rolling sales   usep-8jbt   DOF sales, Manhattan
    HPD violations  wvxf-dwi5   housing maintenance code violations
    DOB violations  3h2n-5cm9   buildings department violations

Queries are SoQL $where clauses. Block lists are sent in chunks so the URL
stays under the gateway's length limit.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import httpx

from cre_explorer.core.config import settings
from cre_explorer.core.exceptions import UpstreamFailure

logger = logging.getLogger(__name__)

PLUTO_LIMIT = 20000
SALES_LIMIT = 20000
VIOLATIONS_LIMIT = 50000
MANHATTAN = "1"
MIN_SALE_PRICE = 100000


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @classmethod
    def from_settings(cls) -> "BoundingBox":
        return cls(
            min_lat=settings.INGEST_MIN_LAT,
            max_lat=settings.INGEST_MAX_LAT,
            min_lng=settings.INGEST_MIN_LNG,
            max_lng=settings.INGEST_MAX_LNG,
        )


@dataclass
class FetchReport:
    """
    Chunks that failed and were skipped during a fetch, and per source the
    blocks whose violation pull came back complete (not failed, not cut off
    at the row limit).
    """
    failed_chunks: list[str] = field(default_factory=list)
    complete_blocks: dict[str, set[int]] = field(default_factory=dict)

    def mark_complete(self, source: str, blocks: list[str]) -> None:
        self.complete_blocks.setdefault(source, set()).update(int(b) for b in blocks)


def chunk_blocks(blocks: list[str], size: int) -> list[list[str]]:
    return [blocks[i:i + size] for i in range(0, len(blocks), size)]


def quoted_list(values: list[str]) -> str:
    return ",".join(f"'{v}'" for v in values)


class NYCOpenDataClient:
    """
    Synchronous Socrata client. Use as a context manager so the connection
    pool is closed:

        with NYCOpenDataClient() as client:
            lots = client.fetch_pluto(BoundingBox.from_settings())
    """

    def __init__(
        self,
        app_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        token = app_token or settings.NYC_OPEN_DATA_APP_TOKEN
        if token:
            headers["X-App-Token"] = token
        self._client = httpx.Client(
            headers=headers,
            timeout=timeout or settings.OPEN_DATA_TIMEOUT,
            transport=transport,
        )
        self.report = FetchReport()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._client.close()

    def _get(self, url: str, params: dict, source: str) -> list[dict]:
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"[OpenData] {source} request failed: {e}")
            raise UpstreamFailure(source, str(e)) from e
        except ValueError as e:
            raise UpstreamFailure(source, f"Invalid JSON response: {e}") from e

    def fetch_pluto(self, bbox: BoundingBox, target_classes: Optional[list[str]] = None) -> list[dict]:
        """Tax lots inside the box whose building class starts with a target letter."""
        target = {c.upper() for c in (target_classes or settings.INGEST_TARGET_CLASSES)}
        params = {
            "$where": (
                f"latitude between {bbox.min_lat} and {bbox.max_lat} "
                f"and longitude between {bbox.min_lng} and {bbox.max_lng}"
            ),
            "$limit": PLUTO_LIMIT,
        }
        rows = self._get(settings.PLUTO_URL, params, "PLUTO")
        filtered = [r for r in rows if (r.get("bldgclass") or "")[:1].upper() in target]
        logger.info(f"[OpenData] PLUTO: {len(rows)} lots, {len(filtered)} in target classes")
        return filtered

    def fetch_sales(self, blocks: list[str], since: date) -> list[dict]:
        """Manhattan sales over $100k after `since` on the given blocks."""
        rows: list[dict] = []
        for chunk in chunk_blocks(blocks, settings.INGEST_BLOCK_CHUNK_SIZE):
            params = {
                "$where": (
                    f"sale_date > '{since.isoformat()}' and sale_price > {MIN_SALE_PRICE} "
                    f"and borough = '{MANHATTAN}' and block in ({quoted_list(chunk)})"
                ),
                "$limit": SALES_LIMIT,
                "$order": "sale_date DESC",
            }
            rows.extend(self._get(settings.SALES_URL, params, "Sales"))
        logger.info(f"[OpenData] Sales: {len(rows)} records for {len(blocks)} blocks")
        return rows

    def _fetch_violation_chunks(self, url: str, source: str, blocks: list[str], where: str, order: str) -> list[dict]:
        rows: list[dict] = []
        for index, chunk in enumerate(chunk_blocks(blocks, settings.INGEST_BLOCK_CHUNK_SIZE)):
            params = {
                "$where": f"{where} and block in ({quoted_list(chunk)})",
                "$limit": VIOLATIONS_LIMIT,
                "$order": order,
            }
            try:
                chunk_rows = self._get(url, params, source)
            except UpstreamFailure as e:
                logger.warning(f"[OpenData] {source} chunk {index} skipped: {e}")
                self.report.failed_chunks.append(f"{source}:{index}")
                continue
            rows.extend(chunk_rows)
            if len(chunk_rows) < VIOLATIONS_LIMIT:
                self.report.mark_complete(source, chunk)
            else:
                logger.warning(f"[OpenData] {source} chunk {index} hit the {VIOLATIONS_LIMIT} row limit")
        logger.info(f"[OpenData] {source}: {len(rows)} records")
        return rows

    def fetch_hpd_violations(self, blocks: list[str]) -> list[dict]:
        if not blocks:
            return []
        return self._fetch_violation_chunks(
            settings.HPD_VIOLATIONS_URL, "HPD", blocks,
            where="violationstatus = 'Open'",
            order="approveddate DESC",
        )

    def fetch_dob_violations(self, blocks: list[str]) -> list[dict]:
        """Undisposed DOB violations. This dataset stores blocks as 5-digit text."""
        if not blocks:
            return []
        padded = [str(b).strip().zfill(5) for b in blocks]
        return self._fetch_violation_chunks(
            settings.DOB_VIOLATIONS_URL, "DOB", padded,
            where="disposition_date IS NULL",
            order="issue_date DESC",
        )
