"""DNS host clients: AWS Route 53 and Cloudflare."""

import logging
import time
from typing import Any, Callable, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from .gateway import DnsHost, ProviderError
from .models import DNSRecord
from .retry import RetryExhaustedError, attempt_with_policy, backoff_policy

logger = logging.getLogger(__name__)

THROTTLING_CODES = ("Throttling", "RequestLimitExceeded", "TooManyRequestsException", "PriorRequestNotComplete")


def _is_throttled(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.status_code == 429


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


def _quote(value: str) -> str:
    if value.startswith('"') and value.endswith('"'):
        return value
    return f'"{value}"'


class Route53DnsHost(DnsHost):
    """DNS host backed by Route 53 public hosted zones."""

    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize Route 53 client.

        Args:
            session: Optional boto3 session. Creates default if not provided.
            sleep: Sleep function used while backing off from throttling
        """
        self._session = session or boto3.Session()
        self._client = self._session.client("route53")
        self._sleep = sleep
        self._throttle_policy = backoff_policy(max_retries=3, base_delay=1.0)

    def _call(self, func: Callable[[], Any]) -> Any:
        """Run a Route 53 call, retrying throttling and mapping errors to ProviderError."""

        def _run():
            try:
                return func()
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "")
                throttled = error_code in THROTTLING_CODES
                raise ProviderError(
                    f"Route 53 operation failed: {e}",
                    transient=throttled,
                    status_code=429 if throttled else None,
                ) from e
            except BotoCoreError as e:
                raise ProviderError(f"Route 53 request failed: {e}", transient=True) from e

        try:
            return attempt_with_policy(_run, self._throttle_policy, retry_on=_is_throttled, sleep=self._sleep)
        except RetryExhaustedError as e:
            raise e.last_error from e

    def list_hosted_zones(self) -> list[dict]:
        """
        List all public Route 53 hosted zones.

        Returns:
            List of hosted zone dictionaries with Id and Name
        """

        def _list():
            zones = []
            paginator = self._client.get_paginator("list_hosted_zones")
            for page in paginator.paginate():
                for zone in page.get("HostedZones", []):
                    # Skip private hosted zones
                    if not zone.get("Config", {}).get("PrivateZone", False):
                        zones.append({
                            "Id": zone["Id"].replace("/hostedzone/", ""),
                            "Name": zone["Name"].rstrip("."),
                        })
            return zones

        return self._call(_list)

    def find_zone(self, domain: str) -> Optional[str]:
        for zone in self.list_hosted_zones():
            if zone["Name"].lower() == domain.lower():
                return zone["Id"]
        return None

    def _get_record_set(self, zone_id: str, name: str, record_type: str) -> Optional[dict]:
        record_name = _fqdn(name)
        response = self._call(lambda: self._client.list_resource_record_sets(
            HostedZoneId=zone_id,
            StartRecordName=record_name,
            StartRecordType=record_type,
            MaxItems="1",
        ))
        for record_set in response.get("ResourceRecordSets", []):
            if record_set["Name"] == record_name and record_set["Type"] == record_type:
                return record_set
        return None

    def get_records(self, zone_id: str, name: str, record_type: str) -> list[DNSRecord]:
        """
        Get the records of one name and type.

        Args:
            zone_id: The Route 53 hosted zone ID
            name: The record name (e.g., "example.com")
            record_type: The record type (e.g., "TXT", "MX")

        Returns:
            One DNSRecord per value in the record set
        """
        record_set = self._get_record_set(zone_id, name, record_type)
        if not record_set:
            return []

        records = []
        ttl = record_set.get("TTL", 300)
        for rr in record_set.get("ResourceRecords", []):
            value = rr.get("Value", "")
            priority = None
            if record_type == "MX":
                # MX record format: "priority server"
                parts = value.split()
                if len(parts) >= 2:
                    priority = int(parts[0])
                value = parts[-1].rstrip(".")
            records.append(DNSRecord(
                name=name,
                record_type=record_type,
                value=value,
                ttl=ttl,
                priority=priority,
            ))
        return records

    def upsert_record(self, zone_id: str, record: DNSRecord) -> bool:
        """
        Merge a record into its record set.

        Route 53 keeps all values of a name and type in one record set, so the
        existing values are read, the sibling with the same identity is
        replaced, and the whole set is written back with UPSERT.

        Args:
            zone_id: The Route 53 hosted zone ID
            record: The DNSRecord to create or replace

        Returns:
            True if the record set was written or already matched
        """
        existing = self.get_records(zone_id, record.name, record.record_type)
        if any(r.identity == record.identity and r.value.strip('"') == record.value.strip('"')
               and r.priority == record.priority for r in existing):
            logger.debug("%s already present in %s", record.label, record.name)
            return True

        merged = [r for r in existing if r.identity != record.identity] + [record]

        values = []
        for r in merged:
            if r.record_type == "MX":
                values.append({"Value": f"{r.priority if r.priority is not None else 10} {r.value}"})
            elif r.record_type == "TXT":
                values.append({"Value": _quote(r.value)})
            else:
                values.append({"Value": r.value})

        change_batch = {
            "Changes": [
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": _fqdn(record.name),
                        "Type": record.record_type,
                        "TTL": record.ttl,
                        "ResourceRecords": values,
                    },
                }
            ]
        }

        self._call(lambda: self._client.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch=change_batch,
        ))
        logger.info("Upserted %s in %s", record.label, record.name)
        return True


class CloudflareDnsHost(DnsHost):
    """DNS host backed by Cloudflare zones. Records are always DNS-only."""

    BASE_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        api_token: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_token:
            raise ProviderError("Cloudflare API token is required")
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        })
        self._timeout = timeout
        self._sleep = sleep
        self._throttle_policy = backoff_policy(max_retries=3, base_delay=1.0)

    def _send(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        url = f"{self.BASE_URL}{endpoint}"
        logger.debug("Cloudflare API %s %s", method, url)
        try:
            response = self._session.request(
                method, url, params=params, json=json_data, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise ProviderError(f"Cloudflare {method} {endpoint} failed: {e}", transient=True) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400 or not data.get("success", False):
            errors = data.get("errors", [])
            error_msg = errors[0].get("message", "Unknown error") if errors else response.reason
            raise ProviderError(
                f"Cloudflare API error: {error_msg}",
                transient=response.status_code == 429 or response.status_code >= 500,
                status_code=response.status_code,
            )
        return data

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        try:
            return attempt_with_policy(
                lambda: self._send(method, endpoint, params, json_data),
                self._throttle_policy,
                retry_on=_is_throttled,
                sleep=self._sleep,
            )
        except RetryExhaustedError as e:
            raise e.last_error from e

    def find_zone(self, domain: str) -> Optional[str]:
        data = self._request("GET", "/zones", params={"name": domain})
        zones = data.get("result") or []
        if not zones:
            return None
        zone_id = zones[0].get("id") if isinstance(zones[0], dict) else None
        if not zone_id:
            raise ProviderError(f"Cloudflare zone response for {domain} has no id")
        return zone_id

    def _list_records(self, zone_id: str, name: str, record_type: str) -> list[dict]:
        data = self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"type": record_type, "name": name, "per_page": 100},
        )
        return data.get("result") or []

    def get_records(self, zone_id: str, name: str, record_type: str) -> list[DNSRecord]:
        return [
            DNSRecord(
                name=name,
                record_type=record_type,
                value=item.get("content", ""),
                ttl=item.get("ttl", 1),
                priority=item.get("priority"),
                proxied=bool(item.get("proxied", False)),
            )
            for item in self._list_records(zone_id, name, record_type)
        ]

    def upsert_record(self, zone_id: str, record: DNSRecord) -> bool:
        """
        Update the record with the same identity, or create it.

        Args:
            zone_id: The Cloudflare zone id
            record: The DNSRecord to create or replace

        Returns:
            True if the record was written or already matched
        """
        payload: dict[str, Any] = {
            "type": record.record_type,
            "name": record.name,
            "content": record.value,
            "ttl": record.ttl,
            "proxied": False,
        }
        if record.priority is not None:
            payload["priority"] = record.priority

        for item in self._list_records(zone_id, record.name, record.record_type):
            current = DNSRecord(
                name=record.name,
                record_type=record.record_type,
                value=item.get("content", ""),
                priority=item.get("priority"),
            )
            if current.identity != record.identity:
                continue
            if (current.value.strip('"') == record.value.strip('"')
                    and current.priority == record.priority
                    and not item.get("proxied", False)):
                logger.debug("%s already present in %s", record.label, record.name)
                return True
            self._request("PUT", f"/zones/{zone_id}/dns_records/{item['id']}", json_data=payload)
            logger.info("Updated %s in %s", record.label, record.name)
            return True

        self._request("POST", f"/zones/{zone_id}/dns_records", json_data=payload)
        logger.info("Created %s in %s", record.label, record.name)
        return True
