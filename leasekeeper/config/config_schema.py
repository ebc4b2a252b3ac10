from ipaddress import IPv4Address
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, model_validator


class DHCPOptionSet(BaseModel):
    subnet_mask: IPv4Address
    router: IPv4Address
    dns: IPv4Address


class DHCPOptionSets(BaseModel):
    allowed: DHCPOptionSet
    denied: DHCPOptionSet


class DHCPTimeouts(BaseModel):
    worker_get: float = Field(gt=0)
    worker_join: float = Field(gt=0)


class DHCPDedup(BaseModel):
    size: int = Field(gt=0)
    ttl: float = Field(gt=0)


class DHCP(BaseModel):
    interface: str
    port: int
    ip: IPv4Address
    mac: str
    broadcast_ip: IPv4Address
    broadcast_mac: str
    pool_start: IPv4Address
    pool_size: int = Field(gt=0)
    lease_time_seconds: int = Field(gt=0)
    offer_hold_seconds: int = Field(ge=0)
    renewal_time_ratio: float = Field(gt=0, lt=1)
    rebinding_time_ratio: float = Field(gt=0, lt=1)
    workers: int = Field(gt=0)
    rcvd_queue_size: int = Field(gt=0)
    dedup: DHCPDedup
    timeouts: DHCPTimeouts
    options: DHCPOptionSets

    @model_validator(mode="after")
    def _check_pool(self) -> "DHCP":
        if int(self.pool_start) + self.pool_size - 1 > int(IPv4Address("255.255.255.255")):
            raise ValueError("Dynamic pool runs past 255.255.255.255.")
        if self.renewal_time_ratio >= self.rebinding_time_ratio:
            raise ValueError("renewal_time_ratio must be below rebinding_time_ratio.")
        return self


class Static(BaseModel):
    source: Literal["sqlite", "json"]
    path: str
    network_base: IPv4Address
    strict: bool = True


class Libs(BaseModel):
    metrics_max_size: int = Field(gt=0)


class ConfigSchema(BaseModel):
    dhcp: DHCP
    static: Static
    libs: Libs
    logging: Dict[str, Any]
