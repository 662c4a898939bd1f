"""HTTP client for the internal application API."""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

import requests

from fieldsales.compose.envelopes import (
    parse_customers, parse_local_id, parse_packagings, parse_products,
    parse_reference_codes, parse_reference_policies, parse_stored_order, unwrap_data,
)
from fieldsales.blueprints.metrics import track_remote_call
from fieldsales.compose.types import Customer, Packaging, Policy, Product, StoredOrder
from fieldsales.exceptions import MalformedResponseError, NetworkError, SessionExpiredError

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the internal API (customers, catalog, local sales orders).

    Every response is decoded into typed values before it is returned.
    Transport failures become NetworkError; an ``Invalid token`` answer
    becomes SessionExpiredError.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15,
        cache=None,
        packagings_ttl: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache = cache
        self.packagings_ttl = packagings_ttl
        self.session = session or requests.Session()
        self.headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        if token:
            self.headers['Authorization'] = f'Bearer {token}'

    @classmethod
    def from_config(cls, config, cache=None) -> 'BackendClient':
        return cls(
            base_url=config['API_BASE_URL'],
            token=config.get('API_TOKEN'),
            timeout=config.get('HTTP_TIMEOUT', 15),
            cache=cache,
            packagings_ttl=config.get('CACHE_PACKAGINGS_TTL', 300),
        )

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        require_json_content_type: bool = False,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            NetworkError: on transport failure or an HTTP error status.
            MalformedResponseError: when the body is not JSON.
            SessionExpiredError: when the API rejects the bearer token.
        """
        logger.debug(f"[API] {method} {endpoint} params={params}")
        with track_remote_call('api', endpoint):
            return self._send(method, endpoint, params, json, headers, require_json_content_type)

    def _send(self, method, endpoint, params, json, headers, require_json_content_type):
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(
                method, url, params=params, json=json,
                headers={**self.headers, **(headers or {})}, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[API] {method} {endpoint} failed: {e}")
            raise NetworkError(f'Unable to reach {endpoint}: {e}', endpoint=endpoint) from e

        content_type = response.headers.get('Content-Type', '')
        if require_json_content_type and 'application/json' not in content_type:
            raise MalformedResponseError(
                f'Expected JSON, but got: {response.text[:200]}', endpoint=endpoint
            )
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f'{endpoint} answered HTTP {response.status_code} without JSON', endpoint=endpoint
            ) from e

        if isinstance(body, dict) and body.get('message') == 'Invalid token':
            logger.warning(f"[API] Session expired on {endpoint}")
            raise SessionExpiredError(endpoint=endpoint)

        if response.status_code >= 400:
            message = body.get('message') if isinstance(body, dict) else None
            logger.error(f"[API] {method} {endpoint} -> HTTP {response.status_code}: {message}")
            raise NetworkError(
                message or f'{endpoint} answered HTTP {response.status_code}',
                endpoint=endpoint,
                payload={'upstream_status': response.status_code},
            )
        return body

    # ------------------------------------------------------------------
    # Selection lookups
    # ------------------------------------------------------------------

    def get_customers(self, territory_id: int) -> List[Customer]:
        endpoint = '/customers/territory'
        body = self.request('GET', endpoint, params={'territory_id': territory_id})
        return parse_customers(unwrap_data(body, endpoint), endpoint)

    def get_reference_policies(self) -> List[Policy]:
        endpoint = '/policy/reference/'
        body = self.request('GET', endpoint)
        return parse_reference_policies(unwrap_data(body, endpoint), endpoint)

    def get_related_reference_codes(self, policy_id: int, codes: Iterable[str]) -> Set[str]:
        """Codes among ``codes`` the server allows as reference for ``policy_id``."""
        endpoint = '/policy/reference-related'
        body = self.request('GET', endpoint, params={'policy': policy_id, 'refpolicies': ','.join(codes)})
        return parse_reference_codes(unwrap_data(body, endpoint), endpoint)

    def get_products(self, policy_id: int, policy_type: str) -> List[Product]:
        endpoint = '/products/get'
        body = self.request('GET', endpoint, params={'policy': policy_id, 'policyType': policy_type})
        return parse_products(body, endpoint)

    def get_packagings(self, product_id: int) -> List[Packaging]:
        endpoint = f'/products/packagings/{product_id}'

        def load():
            return unwrap_data(self.request('GET', endpoint), endpoint)

        if self.cache is not None:
            data = self.cache.memoize('api', 'packagings', str(product_id), load, ttl=self.packagings_ttl)
        else:
            data = load()
        return parse_packagings(data, endpoint)

    # ------------------------------------------------------------------
    # Local sales orders
    # ------------------------------------------------------------------

    def create_sales_order(self, payload: Dict[str, Any]) -> int:
        """Record an order in the local store and return its local id."""
        endpoint = '/sales'
        body = self.request('POST', endpoint, json=payload)
        local_id = parse_local_id(unwrap_data(body, endpoint), endpoint)
        logger.info(f"[API] Sales order stored locally as #{local_id} (ERP {payload.get('order_sequence')})")
        return local_id

    def get_sales_order(self, sales_order_id: int) -> StoredOrder:
        endpoint = f'/sales/{sales_order_id}'
        body = self.request('GET', endpoint)
        return parse_stored_order(unwrap_data(body, endpoint), endpoint)

    def assign_warehouse(
        self,
        sales_order_id: int,
        warehouse_id: int,
        order_id: Optional[int] = None,
        order_sequence: Optional[str] = None,
    ) -> None:
        endpoint = f'/sales/{sales_order_id}/warehouse'
        payload: Dict[str, Any] = {'warehouse_id': warehouse_id}
        if order_id:
            payload['order_id'] = order_id
        if order_sequence:
            payload['order_sequence'] = order_sequence
        self.request('PUT', endpoint, json=payload)
        logger.info(f"[API] Warehouse {warehouse_id} assigned to sales order #{sales_order_id}")
