"""Forward Email (forwardemail.net) REST client."""

import logging
import time
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import requests

from .gateway import ForwardingProvider, ProviderError
from .models import AliasResult, DomainCheck, ProviderDomain
from .retry import RetryExhaustedError, attempt_with_policy, backoff_policy

logger = logging.getLogger(__name__)

VERIFICATION_PREFIX = "forward-email-site-verification"
CATCHALL_PREFIX = "forward-email"
MAIL_EXCHANGERS = ["mx1.forwardemail.net", "mx2.forwardemail.net"]
MX_PRIORITY = 10
PROTECTED_PLAN = "enhanced_protection"


def _is_throttled(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.status_code == 429


class ForwardEmailClient(ForwardingProvider):
    """Client for the Forward Email API."""

    API_ENDPOINT = "https://api.forwardemail.net/"

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            api_key: Forward Email API token, sent as the basic auth user
            session: Optional requests session. Creates one if not provided.
            timeout: Per-request timeout in seconds
            sleep: Sleep function used while backing off from rate limits
        """
        if not api_key:
            raise ProviderError("Forward Email API key is required")
        self._session = session or requests.Session()
        self._session.auth = (api_key, "")
        self._timeout = timeout
        self._sleep = sleep
        self._throttle_policy = backoff_policy(max_retries=3, base_delay=2.0)

    def _send(self, method: str, path: str, data: Optional[dict] = None) -> requests.Response:
        url = path if path.startswith("http") else urljoin(self.API_ENDPOINT, path)
        logger.debug("Forward Email %s %s", method, url)
        try:
            response = self._session.request(method, url, data=data, timeout=self._timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Forward Email {method} {path} failed: {e}", transient=True) from e

        if response.status_code >= 400:
            message = _error_message(response)
            raise ProviderError(
                f"Forward Email {method} {path} returned {response.status_code}: {message}",
                transient=response.status_code == 429 or response.status_code >= 500,
                status_code=response.status_code,
            )
        return response

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> requests.Response:
        """Send a request, backing off while the API reports rate limiting."""
        try:
            return attempt_with_policy(
                lambda: self._send(method, path, data),
                self._throttle_policy,
                retry_on=_is_throttled,
                sleep=self._sleep,
            )
        except RetryExhaustedError as e:
            raise e.last_error from e

    def _get_domain(self, name_or_id: str) -> Optional[dict]:
        try:
            return _json_body(self._request("GET", f"v1/domains/{name_or_id}"), dict)
        except ProviderError as e:
            if e.status_code == 404:
                return None
            raise

    def add_domain(self, name: str) -> str:
        """
        Register a domain, returning the existing id if it is already there.

        Args:
            name: The domain name

        Returns:
            The provider's domain id
        """
        existing = self._get_domain(name)
        if existing is not None:
            domain_id = _domain_id(existing)
            logger.info("%s already registered with Forward Email (%s)", name, domain_id)
            return domain_id

        try:
            response = self._request("POST", "v1/domains", data={"domain": name})
        except ProviderError as e:
            # Another run may have added it between the lookup and the create.
            if e.status_code in (400, 409) and "exist" in str(e).lower():
                existing = self._get_domain(name)
                if existing is not None:
                    return _domain_id(existing)
            raise

        domain_id = _domain_id(_json_body(response, dict))
        logger.info("Registered %s with Forward Email (%s)", name, domain_id)
        return domain_id

    def enable_protection(self, provider_id: str) -> str:
        """
        Move the domain to the enhanced protection plan.

        Args:
            provider_id: The provider's domain id

        Returns:
            The TXT verification token, "forward-email-site-verification=..."

        Raises:
            ProviderError: Permanent when the account plan does not allow it
        """
        response = self._request(
            "PUT", f"v1/domains/{provider_id}", data={"plan": PROTECTED_PLAN}
        )
        record = _json_body(response, dict).get("verification_record")
        if not record:
            raise ProviderError(f"No verification record returned for {provider_id}")
        return f"{VERIFICATION_PREFIX}={record}"

    def get_domain_status(self, provider_id: str) -> DomainCheck:
        """
        Read the domain's last observed MX/TXT status.

        This reads the domain object only. The provider's verify-records
        endpoint is never used for polling.
        """
        info = self._get_domain(provider_id)
        if info is None:
            raise ProviderError(f"Domain {provider_id} not found at Forward Email", status_code=404)
        return DomainCheck(
            has_mx_record=bool(info.get("has_mx_record")),
            has_txt_record=bool(info.get("has_txt_record")),
        )

    def create_alias(self, provider_id: str, local_part: str, destination: str) -> AliasResult:
        """
        Create an alias forwarding to destination.

        Args:
            provider_id: The provider's domain id
            local_part: Alias name, the part before "@"
            destination: Recipient address

        Returns:
            AliasResult.CREATED, or AliasResult.ALREADY_EXISTS if the alias
            was there already
        """
        data = {"name": local_part, "recipients": destination, "is_enabled": "true"}
        try:
            self._request("POST", f"v1/domains/{provider_id}/aliases", data=data)
        except ProviderError as e:
            if e.status_code in (400, 409) and "already exists" in str(e).lower():
                return AliasResult.ALREADY_EXISTS
            raise
        return AliasResult.CREATED

    def find_domain(self, name: str) -> Optional[ProviderDomain]:
        info = self._get_domain(name)
        if info is None:
            return None
        record = info.get("verification_record")
        return ProviderDomain(
            provider_id=_domain_id(info),
            name=info.get("name", name),
            has_mx_record=bool(info.get("has_mx_record")),
            has_txt_record=bool(info.get("has_txt_record")),
            verification_token=f"{VERIFICATION_PREFIX}={record}" if record else None,
        )

    def count_aliases(self, provider_id: str) -> int:
        """Count aliases, following the Link header across pages."""
        response = self._request("GET", f"v1/domains/{provider_id}/aliases?limit=50")
        item_count = response.headers.get("X-Item-Count")
        if item_count is not None and item_count.isdigit():
            return int(item_count)

        total = len(_json_body(response, list))
        next_url = response.links.get("next", {}).get("url")
        while next_url:
            response = self._request("GET", next_url)
            total += len(_json_body(response, list))
            next_url = response.links.get("next", {}).get("url")
        return total


def _json_body(response: requests.Response, expected: type) -> Any:
    """Decoded JSON body; a body that is not JSON of the expected type is a permanent error."""
    try:
        body = response.json()
    except ValueError as e:
        raise ProviderError(f"Forward Email returned a non-JSON body: {e}",
                            status_code=response.status_code) from e
    if not isinstance(body, expected):
        raise ProviderError(f"Forward Email returned an unexpected body: {body!r:.200}",
                            status_code=response.status_code)
    return body


def _domain_id(body: dict) -> str:
    domain_id = body.get("id")
    if not domain_id:
        raise ProviderError(f"Forward Email domain response has no id: {body!r:.200}")
    return str(domain_id)


def _error_message(response: requests.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text or response.reason or ""
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
