import json
import logging
from datetime import date
from typing import Optional

import plaid
import urllib3
from plaid.api import plaid_api
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

import config
from errors import UpstreamProviderError
from models import Account, Balances, DeltaPage, RangePage, Transaction

logger = logging.getLogger(__name__)

# --- Plaid Client Setup ---
HOSTS = {
    "sandbox": plaid.Environment.Sandbox,
    "production": plaid.Environment.Production,
}


def _host(env: str) -> str:
    host = HOSTS.get((env or "").lower())
    if host is None:
        logger.warning("Unknown PLAID_ENV %r, using sandbox", env)
        host = plaid.Environment.Sandbox
    return host


def build_client():
    """Return a PlaidApi client, or None when credentials are not configured."""
    if not config.PLAID_CLIENT_ID or not config.PLAID_SECRET:
        return None

    configuration = plaid.Configuration(
        host=_host(config.PLAID_ENV),
        api_key={
            "clientId": config.PLAID_CLIENT_ID,
            "secret": config.PLAID_SECRET,
        },
    )
    api_client = plaid.ApiClient(configuration)
    return plaid_api.PlaidApi(api_client)


# --- Response conversion ---

def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def transaction_from_plaid(t: dict) -> Transaction:
    """Convert a Plaid transaction dict, keeping Plaid's sign convention."""
    categories = list(t.get("category") or [])
    if not categories and t.get("personal_finance_category"):
        pfc = t["personal_finance_category"]
        categories = [c for c in (pfc.get("primary"), pfc.get("detailed")) if c]

    location = t.get("location")
    if location:
        location = {k: v for k, v in location.items() if v is not None} or None

    return Transaction(
        id=t["transaction_id"],
        account_id=t.get("account_id") or "",
        amount=float(t.get("amount") or 0),
        date=t.get("date"),
        name=t.get("name") or "Plaid Transaction",
        merchant_name=t.get("merchant_name"),
        pending=bool(t.get("pending", False)),
        category=[str(c) for c in categories],
        location=location,
        payment_channel=_text(t.get("payment_channel")),
    )


def account_from_plaid(a: dict) -> Account:
    balances = a.get("balances") or {}
    return Account(
        id=a["account_id"],
        name=a.get("name") or "",
        type=_text(a.get("type")),
        subtype=_text(a.get("subtype")),
        balances=Balances(
            current=balances.get("current"),
            available=balances.get("available"),
            currency=balances.get("iso_currency_code") or balances.get("unofficial_currency_code"),
        ),
        mask=a.get("mask"),
    )


def _provider_error(exc: plaid.ApiException) -> UpstreamProviderError:
    """Extract Plaid's error_code / error_message from an API exception body."""
    code, message = None, exc.reason or "Plaid request failed"
    try:
        body = json.loads(exc.body or "{}")
        code = body.get("error_code")
        message = body.get("error_message") or message
    except (TypeError, ValueError):
        pass
    return UpstreamProviderError(f"Plaid error ({exc.status}): {message}", provider_code=code)


class PlaidProvider:
    """Transactions provider backed by the Plaid API.

    Every call carries ``timeout`` seconds; expiry and transport failures
    surface as ``UpstreamProviderError`` rather than being retried here.
    """

    def __init__(self, client=None, timeout: float = None, page_size: int = None):
        self.client = client if client is not None else build_client()
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.page_size = page_size or config.SYNC_PAGE_SIZE

    def _require_client(self):
        if not self.client:
            raise UpstreamProviderError("Plaid credentials not set in .env", code="provider_not_configured")
        return self.client

    def _call(self, method, request):
        try:
            return method(request, _request_timeout=self.timeout).to_dict()
        except plaid.ApiException as e:
            err = _provider_error(e)
            logger.error("Plaid call failed: %s", err.detail)
            raise err from e
        except urllib3.exceptions.TimeoutError as e:
            logger.error("Plaid call timed out after %ss", self.timeout)
            raise UpstreamProviderError(f"Plaid request timed out after {self.timeout}s", code="timeout") from e
        except urllib3.exceptions.HTTPError as e:
            logger.error("Plaid transport error: %s", e)
            raise UpstreamProviderError(f"Plaid transport error: {e}", code="transport_error") from e

    def create_link_token(self, user_id: str) -> str:
        """
        Generates a Link Token to initialize Plaid Link on the client side.
        """
        client = self._require_client()
        request = LinkTokenCreateRequest(
            products=[Products("transactions")],
            client_name="Transaction Insights",
            country_codes=[CountryCode("US")],
            language="en",
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
        )
        return self._call(client.link_token_create, request)["link_token"]

    def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        """
        Exchanges the public token (from Plaid Link) for an access token.
        """
        client = self._require_client()
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call(client.item_public_token_exchange, request)
        return response["access_token"], response["item_id"]

    def fetch_delta(self, access_token: str, cursor: Optional[str] = None) -> DeltaPage:
        """
        Fetches one page of changes using the /transactions/sync endpoint.
        """
        client = self._require_client()
        kwargs = {
            "access_token": access_token,
            "count": self.page_size,
            "options": TransactionsSyncRequestOptions(
                include_personal_finance_category=True,
                include_original_description=True,
            ),
        }
        # Omitting the cursor requests the full history
        if cursor:
            kwargs["cursor"] = cursor

        data = self._call(client.transactions_sync, TransactionsSyncRequest(**kwargs))
        return DeltaPage(
            added=[transaction_from_plaid(t) for t in data.get("added", [])],
            modified=[transaction_from_plaid(t) for t in data.get("modified", [])],
            removed=[r["transaction_id"] for r in data.get("removed", []) if r.get("transaction_id")],
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more", False)),
        )

    def fetch_range(
        self,
        access_token: str,
        start_date: date,
        end_date: date,
        count: Optional[int] = None,
        offset: int = 0,
    ) -> RangePage:
        """
        Fetches one page of a date range using the /transactions/get endpoint.
        """
        client = self._require_client()
        request = TransactionsGetRequest(
            access_token=access_token,
            start_date=start_date,
            end_date=end_date,
            options=TransactionsGetRequestOptions(
                count=count or self.page_size,
                offset=offset,
                include_personal_finance_category=True,
                include_original_description=True,
            ),
        )
        data = self._call(client.transactions_get, request)
        return RangePage(
            transactions=[transaction_from_plaid(t) for t in data.get("transactions", [])],
            accounts=[account_from_plaid(a) for a in data.get("accounts", [])],
            total_count=int(data.get("total_transactions") or 0),
        )
