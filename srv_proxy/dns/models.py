from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordType = Literal["A", "SRV"]

SUPPORTED_RECORD_TYPES = ("A", "SRV")


class DNSQuestion(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    name: str
    type: int


class DNSAnswer(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    name: str
    type: int
    TTL: int
    data: str


class DNSJSON(BaseModel):
    """
    Body of an ``application/dns-json`` answer.

    Fields beyond the ones below (Authority, Comment, ...) are ignored.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    Status: int
    TC: bool
    RD: bool
    RA: bool
    AD: bool
    CD: bool
    Question: List[DNSQuestion]
    Answer: List[DNSAnswer]


class SRVRecord(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    priority: str
    weight: str
    port: str = Field(pattern=r"^\d+$")
    host: str = Field(min_length=1)
    ip: Optional[str] = None

    @field_validator("port")
    @classmethod
    def port_in_range(cls, value: str) -> str:
        if not 1 <= int(value) <= 65535:
            raise ValueError(f"port {value} is outside 1-65535")
        return value
