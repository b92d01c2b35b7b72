import json
import logging

import httpx
from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from srv_proxy.dns.errors import TransportError, ValidationError
from srv_proxy.dns.models import DNSJSON, RecordType, SUPPORTED_RECORD_TYPES
from srv_proxy.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

DOH_ENDPOINT = "https://1.1.1.1/dns-query"
DOH_ACCEPT = "application/dns-json"


def build_doh_request(
    client: httpx.AsyncClient, name: str, record_type: RecordType
) -> httpx.Request:
    if not name:
        raise ValueError("DNS name must not be empty")
    if record_type not in SUPPORTED_RECORD_TYPES:
        raise ValueError(
            f"Unsupported record type {record_type!r}, expected one of {SUPPORTED_RECORD_TYPES}"
        )
    return client.build_request(
        "GET",
        DOH_ENDPOINT,
        params={"name": name, "type": record_type},
        headers={"accept": DOH_ACCEPT},
    )


async def lookup_record(
    name: str, record_type: RecordType, client: httpx.AsyncClient
) -> DNSJSON:
    """
    Ask the DoH resolver for ``record_type`` records of ``name``.

    A single request is made. Network failures and non-2xx answers raise
    TransportError; a body that is not JSON or not shaped like DNSJSON raises
    ValidationError.
    """
    request = build_doh_request(client, name, record_type)

    with traced_request(
        tracer,
        "doh_lookup",
        f"[DoH] Looking up {record_type} {name}",
        {"dns.name": name, "dns.type": record_type},
    ) as span:
        try:
            response = await client.send(request)
        except httpx.HTTPError as e:
            span.set_attribute("dns.error", "transport")
            raise TransportError(f"DoH request for {name} ({record_type}) failed: {e}") from e

        if response.is_error:
            span.set_attribute("dns.error", f"http_{response.status_code}")
            raise TransportError(
                f"DoH resolver answered {response.status_code} for {name} ({record_type})"
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            span.set_attribute("dns.error", "invalid_json")
            raise ValidationError(f"DoH body for {name} is not valid JSON") from e

        try:
            result = DNSJSON.model_validate(payload)
        except PydanticValidationError as e:
            span.set_attribute("dns.error", "invalid_schema")
            raise ValidationError(
                f"DoH body for {name} does not match the dns-json schema: {e.error_count()} error(s)"
            ) from e

        span.set_attribute("dns.status", result.Status)
        span.set_attribute("dns.answers", len(result.Answer))
        return result
