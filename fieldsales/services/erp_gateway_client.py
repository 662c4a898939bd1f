"""ERP client - calls reach the ERP through the internal API's gateway endpoint."""
import logging
import time
from typing import Any, Dict, List, Optional

from fieldsales.blueprints.metrics import track_remote_call
from fieldsales.compose.envelopes import (
    parse_order_receipt, parse_policy_balances, parse_pricing, unwrap_data,
    unwrap_expense, unwrap_message,
)
from fieldsales.compose.types import OrderReceipt, Policy, Pricing
from fieldsales.exceptions import NetworkError

logger = logging.getLogger(__name__)

GATEWAY_ENDPOINT = '/web/call-odoo-api'
AUTH_ENDPOINT = '/web/authenticate-odoo-server'


def _expiry_timestamp(expires, fallback_ttl: int) -> float:
    """Epoch seconds at which the ERP session ends."""
    now = time.time()
    try:
        value = float(expires)
    except (TypeError, ValueError):
        return now + fallback_ttl
    if value > 1e11:  # epoch milliseconds
        return value / 1000
    if value > 1e9:  # epoch seconds
        return value
    return now + value if value > 0 else now + fallback_ttl


class ErpGatewayClient:
    """
    Client for the ERP (balances, pricing, order submission).

    The gateway forwards ``{method, url, headers, bodyParams}`` to the ERP
    with the session cookie obtained from the authentication endpoint. The
    cookie is kept until it expires, in memory and in Redis when available.
    """

    def __init__(
        self,
        api,
        erp_url: str,
        credential_id: str,
        admin_user_id: int,
        cache=None,
        session_ttl: int = 3600,
    ):
        self.api = api
        self.erp_url = erp_url.rstrip('/')
        self.credential_id = credential_id
        self.admin_user_id = admin_user_id
        self.cache = cache
        self.session_ttl = session_ttl
        self._cookie: Optional[str] = None
        self._expires_at: float = 0.0

    @classmethod
    def from_config(cls, config, api, cache=None) -> 'ErpGatewayClient':
        return cls(
            api=api,
            erp_url=config['ODOO_URL'],
            credential_id=config['ODOO_CREDENTIAL_ID'],
            admin_user_id=config.get('ODOO_ADMIN_USER_ID'),
            cache=cache,
            session_ttl=config.get('ODOO_SESSION_TTL', 3600),
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def session_cookie(self) -> str:
        if self._cookie and time.time() < self._expires_at:
            return self._cookie

        if self.cache is not None:
            cached = self.cache.get('erp', 'session', str(self.credential_id))
            if cached and cached.get('expires_at', 0) > time.time():
                self._cookie, self._expires_at = cached['cookie'], cached['expires_at']
                return self._cookie

        return self.authenticate()

    def authenticate(self) -> str:
        """
        Fetch a fresh ERP session cookie.

        Raises:
            NetworkError: if the server does not hand out a cookie.
        """
        self._cookie, self._expires_at = None, 0.0
        body = self.api.request('GET', AUTH_ENDPOINT, params={'id': self.credential_id})
        data = unwrap_data(body, AUTH_ENDPOINT)
        cookie = data.get('cookie') if isinstance(data, dict) else None
        if not cookie:
            logger.error("[ERP] Authentication returned no session cookie")
            raise NetworkError(
                'Unable to communicate with Server. Please contact your administrator.',
                endpoint=AUTH_ENDPOINT,
            )

        self._cookie = cookie
        self._expires_at = _expiry_timestamp(data.get('expires'), self.session_ttl)
        ttl = int(self._expires_at - time.time())
        if self.cache is not None and ttl > 0:
            self.cache.set(
                'erp', 'session', str(self.credential_id),
                {'cookie': cookie, 'expires_at': self._expires_at}, ttl=ttl
            )
        logger.info(f"[ERP] Session established, valid for {ttl}s")
        return cookie

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------

    def call(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """Forward one ERP call through the gateway and return the decoded body."""
        cookie = self.session_cookie()
        headers = {
            'Content-Type': 'application/json',
            'Cookie': f'session_id={cookie}',
        }
        if data is not None:
            body_params: Dict[str, Any] = {'data': {**data, 'user_id': self.admin_user_id}}
        else:
            body_params = {'user_id': self.admin_user_id}

        payload = {
            'method': method,
            'url': f'{self.erp_url}/api{endpoint}',
            'headers': headers,
            'bodyParams': body_params,
        }
        logger.debug(f"[ERP] {method} {endpoint}")
        with track_remote_call('erp', endpoint):
            return self.api.request(
                'POST', GATEWAY_ENDPOINT, json=payload,
                headers={'Cookie': headers['Cookie']}, require_json_content_type=True
            )

    def get_policy_balances(self, partner_id: int, policy_type: str) -> List[Policy]:
        endpoint = '/get/advance/policy/balance'
        body = self.call('POST', endpoint, {'partner_id': partner_id, 'policy_type': policy_type})
        return parse_policy_balances(unwrap_expense(body, endpoint), endpoint)

    def get_pricing(self, partner_id: int, policy_id: int, product_id: int) -> Pricing:
        endpoint = '/policy/discount'
        body = self.call('POST', endpoint, {
            'partner_id': partner_id,
            'policy_id': policy_id,
            'product_tmpl_id': product_id,
        })
        return parse_pricing(unwrap_expense(body, endpoint), endpoint)

    def post_order(self, payload: Dict[str, Any]) -> OrderReceipt:
        endpoint = '/post/order'
        body = self.call('POST', endpoint, payload)
        receipt = parse_order_receipt(unwrap_message(body, endpoint), endpoint)
        logger.info(f"[ERP] Order submitted: id={receipt.order_id} sequence={receipt.order_sequence}")
        return receipt
