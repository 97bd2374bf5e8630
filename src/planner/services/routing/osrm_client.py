"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import httpx

from ...config import settings
from ...errors import MatrixUnavailableError
from ...models.domain import Coordinates
from .matrix import MatrixProvider
from .models import MatrixEntry

# OSRM table endpoint has URL length limits; one-to-many lookups are split into
# destination chunks of this size and requested in parallel.
DEFAULT_MAX_COORDINATES_PER_REQUEST = 80

logger = logging.getLogger(__name__)


class OSRMMatrixProvider(MatrixProvider):
    name = "osrm"
    retries_internally = True

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_coordinates_per_request: int = DEFAULT_MAX_COORDINATES_PER_REQUEST,
        max_parallel_requests: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = self.base_url.rstrip("/")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.max_coordinates_per_request = max(2, max_coordinates_per_request)
        self.max_parallel_requests = (
            max_parallel_requests if max_parallel_requests is not None else settings.max_parallel_matrix_requests
        )
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        """Create a client per call; calls arrive from several worker threads."""
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
            transport=self._transport,
        )

    def _table_single_request(
        self,
        coordinates: Sequence[Coordinates],
        sources: Sequence[int],
        destinations: Sequence[int],
    ) -> dict:
        """Make a single OSRM table request with explicit source/destination indices."""
        coordinate_str = ";".join(f"{point.lng},{point.lat}" for point in coordinates)
        params = {
            "annotations": "duration,distance",
            "sources": ";".join(str(i) for i in sources),
            "destinations": ";".join(str(i) for i in destinations),
        }
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise ValueError(f"OSRM table request failed: {data.get('message', data.get('code'))}")
                    if "durations" not in data or "distances" not in data:
                        raise ValueError("OSRM response missing durations/distances.")
                    return data
                except httpx.HTTPStatusError as e:
                    if e.response.status_code == 414:
                        raise MatrixUnavailableError(
                            f"OSRM request URL too large ({len(coordinates)} coordinates). "
                            f"Try reducing max_coordinates_per_request (current: {self.max_coordinates_per_request})"
                        ) from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise MatrixUnavailableError(
                            f"OSRM returned HTTP {e.response.status_code} for table request"
                        ) from e
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request timed out after {self.max_retries} attempts: {e}")
                        raise MatrixUnavailableError(f"OSRM request timed out: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.NetworkError, OSError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise MatrixUnavailableError(
                            f"Failed to connect to OSRM service at {self.base_url}: {e}"
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise MatrixUnavailableError(f"OSRM table request failed: {e}") from e
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            client.close()

    @staticmethod
    def _entry(distance_m: float | None, duration_s: float | None) -> MatrixEntry:
        return MatrixEntry(
            distance_km=distance_m / 1000.0 if distance_m is not None else None,
            duration_min=duration_s / 60.0 if duration_s is not None else None,
        )

    def _chunks(self, points: Sequence[Coordinates]) -> list[list[Coordinates]]:
        size = self.max_coordinates_per_request - 1
        return [list(points[i : i + size]) for i in range(0, len(points), size)]

    def _one_to_many(self, origin: Coordinates, destinations: Sequence[Coordinates]) -> list[MatrixEntry]:
        data = self._table_single_request(
            [origin, *destinations], [0], list(range(1, len(destinations) + 1))
        )
        row_d, row_m = data["durations"][0], data["distances"][0]
        return [self._entry(row_m[i], row_d[i]) for i in range(len(destinations))]

    def _many_to_one(self, origins: Sequence[Coordinates], destination: Coordinates) -> list[MatrixEntry]:
        data = self._table_single_request(
            [*origins, destination], list(range(len(origins))), [len(origins)]
        )
        return [
            self._entry(data["distances"][i][0], data["durations"][i][0]) for i in range(len(origins))
        ]

    def query(self, origin: Coordinates, destinations: Sequence[Coordinates]) -> list[MatrixEntry]:
        if not destinations:
            return []
        chunks = self._chunks(destinations)
        if len(chunks) == 1:
            return self._one_to_many(origin, chunks[0])
        logger.info(f"Chunking OSRM 1x{len(destinations)} request into {len(chunks)} requests")
        with ThreadPoolExecutor(max_workers=min(self.max_parallel_requests, len(chunks))) as executor:
            parts = list(executor.map(lambda chunk: self._one_to_many(origin, chunk), chunks))
        return [entry for part in parts for entry in part]

    def query_reverse(self, origins: Sequence[Coordinates], destination: Coordinates) -> list[MatrixEntry]:
        if not origins:
            return []
        chunks = self._chunks(origins)
        if len(chunks) == 1:
            return self._many_to_one(chunks[0], destination)
        logger.info(f"Chunking OSRM {len(origins)}x1 request into {len(chunks)} requests")
        with ThreadPoolExecutor(max_workers=min(self.max_parallel_requests, len(chunks))) as executor:
            parts = list(executor.map(lambda chunk: self._many_to_one(chunk, destination), chunks))
        return [entry for part in parts for entry in part]


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by making a simple table request.

    Public OSRM endpoints may not have a /health endpoint, so we test
    connectivity by making a minimal table request with two coordinates.
    """
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base.rstrip('/')}/table/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(
            url, params={"annotations": "duration"}, timeout=settings.osrm_health_timeout_seconds
        )
        response.raise_for_status()
        data = response.json()
        return "durations" in data and isinstance(data.get("durations"), list)
    except (httpx.HTTPError, ValueError):
        return False
