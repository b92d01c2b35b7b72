import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from srv_proxy.dns.doh_client import lookup_record
from srv_proxy.dns.errors import RecordNotFoundError, ResolutionError, ValidationError
from srv_proxy.dns.models import SRVRecord

logger = logging.getLogger("uvicorn.error")

SRV_FIELDS = ("priority", "weight", "port", "host")


@dataclass(frozen=True)
class SRVLookup:
    """Outcome of an SRV resolution: either ``record`` or ``error`` is set."""

    name: str
    record: Optional[SRVRecord] = None
    error: Optional[ResolutionError] = None

    @property
    def found(self) -> bool:
        return self.record is not None


def parse_srv_data(data: str) -> SRVRecord:
    """Parse ``"priority weight port host"`` into an SRVRecord."""
    tokens = data.split(" ")
    if len(tokens) != len(SRV_FIELDS):
        raise ValidationError(
            f"SRV data {data!r} has {len(tokens)} field(s), expected {len(SRV_FIELDS)}"
        )
    try:
        return SRVRecord.model_validate(dict(zip(SRV_FIELDS, tokens)))
    except PydanticValidationError as e:
        raise ValidationError(f"SRV data {data!r} is malformed") from e


async def lookup_srv(name: str, client: httpx.AsyncClient) -> SRVRecord:
    """
    Resolve the SRV record for ``name`` (e.g. ``_https._tcp.example.com``).

    Only the first answer is used; priority and weight do not take part in
    the selection. Raises RecordNotFoundError when the answer set is empty
    and lets DoH errors propagate unchanged.
    """
    res = await lookup_record(name, "SRV", client)

    if not res.Answer:
        raise RecordNotFoundError()

    answer = res.Answer[0]
    record = parse_srv_data(answer.data)
    logger.debug(f"[SRV] {name} -> {record.host}:{record.port}")
    return record


async def resolve_srv(name: str, client: httpx.AsyncClient) -> SRVLookup:
    """Same as lookup_srv, but reports resolution failures as an SRVLookup."""
    try:
        record = await lookup_srv(name, client)
    except ResolutionError as e:
        return SRVLookup(name=name, error=e)
    return SRVLookup(name=name, record=record)
