"""HTTP client for the WooCommerce REST API."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from typing import Any

import httpx

from app.config import Settings, settings as default_settings
from app.services.woocommerce.errors import (
    ConfigurationError,
    RemoteNotFound,
    RemoteRejection,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100
BODY_TRUNCATE = 700


def clamp_per_page(value: int | None, default: int = 50) -> int:
    try:
        per_page = int(value) if value is not None else default
    except (TypeError, ValueError):
        per_page = default
    return max(1, min(MAX_PER_PAGE, per_page))


def _truncate(text: str, limit: int = BODY_TRUNCATE) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class WooClient:
    """
    HTTP client for the WooCommerce REST API.

    Features:
    - consumer key/secret auth as query parameters or HTTP basic auth
    - retry with exponential backoff on network errors, 5xx and 429
    - page-by-page iteration bounded by max pages
    """

    def __init__(
        self,
        base_url: str | None,
        consumer_key: str | None,
        consumer_secret: str | None,
        *,
        enabled: bool = True,
        api_version: str = "wc/v3",
        auth_mode: str = "query",
        timeout: float = 30,
        connect_timeout: float = 10,
        verify_ssl: bool = True,
        retries: int = 2,
        retry_delay_ms: int = 200,
        per_page: int = 50,
        max_pages: int = 200,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.consumer_key = consumer_key or ""
        self.consumer_secret = consumer_secret or ""
        self.enabled = enabled
        self.api_version = api_version.strip("/")
        self.auth_mode = auth_mode
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.verify_ssl = verify_ssl
        self.retries = max(0, retries)
        self.retry_delay = max(0, retry_delay_ms) / 1000.0
        self.per_page = clamp_per_page(per_page)
        self.max_pages = max(1, max_pages)
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_settings(cls, config: Settings | None = None, **overrides: Any) -> WooClient:
        config = config or default_settings
        options: dict[str, Any] = {
            "enabled": config.woo_enabled,
            "api_version": config.woo_api_version,
            "auth_mode": config.woo_auth_mode,
            "timeout": config.woo_timeout,
            "connect_timeout": config.woo_connect_timeout,
            "verify_ssl": config.woo_verify_ssl,
            "retries": config.woo_http_retries,
            "retry_delay_ms": config.woo_http_retry_delay_ms,
            "per_page": config.woo_per_page,
            "max_pages": config.woo_max_pages,
        }
        options.update(overrides)
        return cls(config.woo_base_url, config.woo_consumer_key, config.woo_consumer_secret, **options)

    def is_configured(self) -> bool:
        return bool(self.base_url and self.consumer_key and self.consumer_secret)

    def assert_ready(self) -> None:
        if not self.enabled:
            raise ConfigurationError("WooCommerce integration is disabled")
        if not self.is_configured():
            raise ConfigurationError("WooCommerce base URL or API credentials are missing")

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            auth = None
            if self.auth_mode == "basic":
                auth = httpx.BasicAuth(self.consumer_key, self.consumer_secret)
            self._client = httpx.Client(
                base_url=f"{self.base_url}/wp-json/{self.api_version}/",
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                verify=self.verify_ssl,
                auth=auth,
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "woo-sync/1.0",
                },
            )
        return self._client

    def close(self):
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def _auth_params(self) -> dict[str, str]:
        if self.auth_mode == "basic":
            return {}
        return {"consumer_key": self.consumer_key, "consumer_secret": self.consumer_secret}

    def _handle_response(self, method: str, path: str, response: httpx.Response) -> Any:
        status = response.status_code
        if 200 <= status < 300:
            if status == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise TransientRemoteError(
                    f"Woo {method} {path} returned invalid JSON",
                    status_code=status,
                    response_body=_truncate(response.text),
                ) from exc

        body = _truncate(response.text or "")
        message = body
        try:
            data = response.json()
            if isinstance(data, dict) and data.get("message"):
                message = str(data["message"])
        except ValueError:
            pass
        text = f"Woo HTTP {status} - {message} | body: {body}"

        if status == 429 or status >= 500:
            retry_after = response.headers.get("Retry-After")
            try:
                retry_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            raise TransientRemoteError(text, status_code=status, response_body=body, retry_after=retry_seconds)
        if status == 404:
            raise RemoteNotFound(text, status_code=status, response_body=body)
        raise RemoteRejection(text, status_code=status, response_body=body)

    def request(
        self,
        method: str,
        path: str,
        query: dict | None = None,
        body: dict | list | None = None,
    ) -> Any:
        """Send one request, retrying transient failures.

        Args:
            method: HTTP method
            path: resource path relative to the API root (e.g. "products/12")
            query: query parameters
            body: JSON body

        Returns:
            Decoded JSON, or None for empty responses
        """
        self.assert_ready()
        client = self._get_client()
        path = path.lstrip("/")
        params = {**self._auth_params(), **(query or {})}

        for attempt in range(self.retries + 1):
            try:
                response = client.request(method, path, params=params, json=body)
                return self._handle_response(method, path, response)
            except TransientRemoteError as exc:
                if attempt >= self.retries:
                    raise
                # Never wait longer than one request timeout.
                wait_time = min(exc.retry_after or self.retry_delay * (2**attempt), self.timeout)
                logger.warning(
                    "woo_http_retry method=%s path=%s status=%s wait=%s",
                    method,
                    path,
                    exc.status_code,
                    wait_time,
                )
                time.sleep(wait_time)
            except (httpx.TransportError, httpx.TimeoutException) as exc:
                if attempt >= self.retries:
                    raise TransientRemoteError(
                        f"Woo {method} {path} failed after {self.retries + 1} attempts: {exc}"
                    ) from exc
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("woo_http_retry method=%s path=%s error=%s wait=%s", method, path, exc, wait_time)
                time.sleep(wait_time)
        return None

    def get(self, path: str, query: dict | None = None) -> Any:
        return self.request("GET", path, query=query)

    def post(self, path: str, body: dict | list | None = None, query: dict | None = None) -> Any:
        return self.request("POST", path, query=query, body=body)

    def put(self, path: str, body: dict | list | None = None, query: dict | None = None) -> Any:
        return self.request("PUT", path, query=query, body=body)

    def delete(self, path: str, query: dict | None = None) -> Any:
        return self.request("DELETE", path, query=query)

    def get_page(self, path: str, page: int, per_page: int | None = None, query: dict | None = None) -> list[dict]:
        params = dict(query or {})
        params["page"] = max(1, int(page))
        params["per_page"] = clamp_per_page(per_page, self.per_page)
        data = self.get(path, params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise RemoteRejection(f"Woo GET {path} expected a list, got {type(data).__name__}")
        return data

    def get_all_pages(
        self,
        path: str,
        query: dict | None = None,
        per_page: int | None = None,
        max_pages: int | None = None,
    ) -> Iterator[dict]:
        """Yield every item across pages.

        Stops on an empty page, a short page or the max page count.
        """
        size = clamp_per_page(per_page, self.per_page)
        limit = max_pages or self.max_pages
        page = 1
        while page <= limit:
            batch = self.get_page(path, page, size, query)
            if not batch:
                break
            yield from batch
            if len(batch) < size:
                break
            page += 1

    # ============ Resource helpers ============

    def get_product(self, product_id: int) -> dict:
        return self.get(f"products/{int(product_id)}") or {}

    def get_product_variations(self, product_id: int) -> list[dict]:
        return list(self.get_all_pages(f"products/{int(product_id)}/variations", per_page=MAX_PER_PAGE))

    def get_order(self, order_id: int) -> dict:
        return self.get(f"orders/{int(order_id)}") or {}

    def get_customer(self, customer_id: int) -> dict:
        return self.get(f"customers/{int(customer_id)}") or {}

    def list_products(self, page: int = 1, per_page: int | None = None, **filters: Any) -> list[dict]:
        return self.get_page("products", page, per_page, _clean(filters))

    def list_orders(self, page: int = 1, per_page: int | None = None, **filters: Any) -> list[dict]:
        return self.get_page("orders", page, per_page, _clean(filters))

    def list_customers(self, page: int = 1, per_page: int | None = None, **filters: Any) -> list[dict]:
        return self.get_page("customers", page, per_page, _clean(filters))


def _clean(filters: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in filters.items() if value not in (None, "")}
