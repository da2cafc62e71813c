"""Egress strategy selection and the resource counts it implies.

A private subnet reaches the internet through exactly one NAT mechanism:

  - ManagedGateway: an AWS NAT gateway plus one elastic IP per private subnet.
  - SelfManagedInstance: one NAT EC2 instance per private subnet, a single
    shared security group, and elastic IPs only when explicitly requested.

Everything downstream (resource counts, route targets, published IPs) is
derived from the chosen variant, never from raw flag arithmetic.
"""

from dataclasses import dataclass
from typing import ClassVar, NamedTuple, Optional, Union

from .errors import ConfigError

DEFAULT_NAT_INSTANCE_TYPE = "t3.micro"


@dataclass(frozen=True)
class ManagedGateway:
    """AWS-managed NAT gateway in each hosting public subnet."""

    route_target: ClassVar[str] = "nat_gateway_id"


@dataclass(frozen=True)
class SelfManagedInstance:
    """NAT EC2 instances we run ourselves."""

    instance_type: str = DEFAULT_NAT_INSTANCE_TYPE
    ssh_key: Optional[str] = None
    use_eip: bool = False

    route_target: ClassVar[str] = "network_interface_id"


EgressStrategy = Union[ManagedGateway, SelfManagedInstance]


class ResourceCounts(NamedTuple):
    nat_gateways: int
    nat_instances: int
    nat_security_groups: int
    elastic_ips: int
    eip_associations: int


def parse_flag(value, name: str) -> int:
    # accepts bools, 0/1 ints, and the usual string spellings from CLI / env
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return 1
        if lowered in ("0", "false", "no", "off", ""):
            return 0
        raise ConfigError(f"{name} must be 0 or 1, got {value!r}")

    if value in (0, 1):
        return int(value)

    raise ConfigError(f"{name} must be 0 or 1, got {value!r}")


def strategy_from_flags(
    use_nat_instances=False,
    use_eip_with_nat_instances=False,
    instance_type: str = DEFAULT_NAT_INSTANCE_TYPE,
    ssh_key: Optional[str] = None,
) -> EgressStrategy:
    """Turn the two NAT feature flags into a single egress variant.

    `use_eip_with_nat_instances` only means something when NAT instances are
    selected; with managed gateways every gateway gets an elastic IP anyway.
    """
    if not parse_flag(use_nat_instances, "use_nat_instances"):
        # asking for EIPs without instances still means "one EIP per gateway"
        parse_flag(use_eip_with_nat_instances, "use_eip_with_nat_instances")
        return ManagedGateway()

    return SelfManagedInstance(
        instance_type=instance_type or DEFAULT_NAT_INSTANCE_TYPE,
        ssh_key=ssh_key or None,
        use_eip=bool(parse_flag(use_eip_with_nat_instances, "use_eip_with_nat_instances")),
    )


def count_resources(strategy: EgressStrategy, private_subnet_count: int) -> ResourceCounts:
    """Exact instantiation count of every NAT-related resource group."""
    n = private_subnet_count
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ConfigError(f"private subnet count must be a non-negative int, got {n!r}")

    if isinstance(strategy, ManagedGateway):
        return ResourceCounts(
            nat_gateways=n,
            nat_instances=0,
            nat_security_groups=0,
            elastic_ips=n,
            eip_associations=0,
        )

    if isinstance(strategy, SelfManagedInstance):
        eips = n if strategy.use_eip else 0
        return ResourceCounts(
            nat_gateways=0,
            nat_instances=n,
            # one shared group whenever instances are selected, even for n == 0
            nat_security_groups=1,
            elastic_ips=eips,
            eip_associations=eips,
        )

    raise ConfigError(f"Unknown egress strategy: {strategy!r}")


def describe(strategy: EgressStrategy) -> str:
    if isinstance(strategy, ManagedGateway):
        return "managed NAT gateways"

    eip = "with" if strategy.use_eip else "without"
    return f"NAT instances ({strategy.instance_type}) {eip} elastic IPs"
