import importlib.util
import ipaddress
import itertools
import pathlib

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from .egress import (
    DEFAULT_NAT_INSTANCE_TYPE,
    EgressStrategy,
    ManagedGateway,
    parse_flag,
    strategy_from_flags,
)
from .errors import ConfigError, SubnetAlignmentError


@dataclass(frozen=True)
class SubnetSpec:
    cidr: str
    availability_zone: str

    @property
    def placeholder(self) -> bool:
        """Blank entries keep their position (and route table) but get no route."""
        return not (self.cidr or "").strip()


@dataclass
class TopologyConfig:
    """Everything needed to plan one VPC. Built once per planner invocation."""

    name: str = "main"
    """Prefix for every Name tag"""

    environment: str = "dev"
    """Environment tag applied to every resource"""

    cidr: str = "10.0.0.0/16"
    """VPC CIDR block; every subnet must fit inside it"""

    public_subnets: list[SubnetSpec] = field(default_factory=list)
    """Public subnets, one per availability zone, in order"""

    private_subnets: list[SubnetSpec] = field(default_factory=list)
    """Private subnets, one per availability zone, in order"""

    egress: EgressStrategy = field(default_factory=ManagedGateway)
    """How private subnets reach the internet"""

    region: Optional[str] = None
    """Only used for availability zone discovery"""

    enable_dns_hostnames: bool = True
    enable_dns_support: bool = True
    map_public_ip_on_launch: bool = True

    tags: dict[str, str] = field(default_factory=dict)
    vpc_tags: dict[str, str] = field(default_factory=dict)
    public_subnet_tags: dict[str, str] = field(default_factory=dict)
    private_subnet_tags: dict[str, str] = field(default_factory=dict)
    public_route_table_tags: dict[str, str] = field(default_factory=dict)
    private_route_table_tags: dict[str, str] = field(default_factory=dict)

    @property
    def availability_zones(self) -> list[str]:
        """Distinct zones in use, in first-seen order."""
        seen = dict.fromkeys(
            s.availability_zone
            for s in itertools.chain(self.public_subnets, self.private_subnets)
        )
        return list(seen)

    def validate(self) -> "TopologyConfig":
        """Fail at plan time for anything that would otherwise plan silently wrong."""
        try:
            vpc = ipaddress.ip_network(self.cidr)
        except ValueError as e:
            raise ConfigError(f"Invalid VPC CIDR {self.cidr!r}: {e}") from e

        planned = []
        for kind, subnets in (
            ("public", self.public_subnets),
            ("private", self.private_subnets),
        ):
            for i, s in enumerate(subnets):
                if s.placeholder:
                    if kind == "public":
                        raise ConfigError(f"public subnet {i} has no CIDR")
                    continue

                if not s.availability_zone:
                    raise ConfigError(f"{kind} subnet {i} ({s.cidr}) has no availability zone")

                try:
                    net = ipaddress.ip_network(s.cidr)
                except ValueError as e:
                    raise ConfigError(f"Invalid {kind} subnet CIDR {s.cidr!r}: {e}") from e

                if net.version != vpc.version or not net.subnet_of(vpc):
                    raise ConfigError(f"{kind} subnet {s.cidr} is outside VPC {self.cidr}")

                planned.append((kind, i, net))

        for (ka, ia, a), (kb, ib, b) in itertools.combinations(planned, 2):
            if a.overlaps(b):
                raise ConfigError(f"{ka} subnet {ia} ({a}) overlaps {kb} subnet {ib} ({b})")

        # NAT resources live in public subnets
        if self.private_subnets and not self.public_subnets:
            raise ConfigError("private subnets need at least one public subnet to host NAT egress")

        return self


def pair_subnets(
    cidrs: Optional[list[Any]], availability_zones: Optional[list[str]], kind: str
) -> list[SubnetSpec]:
    """Build subnet records from either structured entries or parallel lists.

    Structured entries are dicts with `cidr` and `availability_zone` (or
    `az`) keys; bare CIDR strings are paired index-by-index with
    `availability_zones`, and the two lists must be the same length.
    """
    cidrs = list(cidrs or [])
    availability_zones = list(availability_zones or [])

    if not cidrs:
        return []

    if all(isinstance(c, dict) for c in cidrs):
        records = []
        for i, c in enumerate(cidrs):
            az = c.get("availability_zone", c.get("az"))
            if "cidr" not in c or az is None:
                raise ConfigError(f"{kind} subnet {i} needs 'cidr' and 'availability_zone': {c!r}")

            records.append(SubnetSpec(cidr=c["cidr"] or "", availability_zone=az))

        return records

    if any(isinstance(c, dict) for c in cidrs):
        raise ConfigError(f"{kind} subnets mix structured records and bare CIDRs")

    if len(cidrs) != len(availability_zones):
        raise SubnetAlignmentError(
            f"{len(cidrs)} {kind} subnets but {len(availability_zones)} availability zones "
            f"(each {kind} subnet needs exactly one zone, in order)"
        )

    return [
        SubnetSpec(cidr=(c or "").strip(), availability_zone=az)
        for c, az in zip(cidrs, availability_zones)
    ]


def load_config_module(config_file) -> Optional[Any]:
    """Load a python config file (like mytopology.py) as a module, if it exists."""
    if not config_file:
        return None

    path = pathlib.Path(config_file)
    if not path.is_file():
        logger.info("[{}] No config file, using arguments and defaults", path)
        return None

    spec = importlib.util.spec_from_file_location(f"_plantopo_config_{path.stem}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    logger.info("[{}] Loaded config file", path)
    return module


def _setting(value, module, name: str, default):
    """CLI value, else UPPER_CASE constant from the config file, else default."""
    if value is not None:
        return value

    if module is not None and hasattr(module, name):
        return getattr(module, name)

    return default


def establish_config(
    config_file="mytopology.py",
    zone_discovery=None,
    **overrides,
) -> TopologyConfig:
    """Resolve command line arguments, config file settings, and defaults.

    `overrides` use the lower_case spelling of the config file constants
    (e.g. `use_nat_instances` overrides `USE_NAT_INSTANCES`); None means
    "not given". `zone_discovery(region, count)` is called when subnets are
    bare CIDRs and no availability zones were configured anywhere.
    """
    known = {
        "name",
        "environment",
        "cidr",
        "region",
        "public_subnets",
        "private_subnets",
        "availability_zones",
        "use_nat_instances",
        "nat_instance_type",
        "nat_instance_ssh_key_name",
        "use_eip_with_nat_instances",
        "enable_dns_hostnames",
        "enable_dns_support",
        "map_public_ip_on_launch",
        "tags",
        "vpc_tags",
        "public_subnet_tags",
        "private_subnet_tags",
        "public_route_table_tags",
        "private_route_table_tags",
    }
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"Unknown settings: {sorted(unknown)}")

    module = load_config_module(config_file)
    defaults = TopologyConfig()

    def get(name, default):
        return _setting(overrides.get(name), module, name.upper(), default)

    def flag(name, default) -> bool:
        return bool(parse_flag(get(name, default), name))

    region = get("region", defaults.region)
    public = get("public_subnets", []) or []
    private = get("private_subnets", []) or []
    azs = get("availability_zones", []) or []

    needs_zones = any(not isinstance(c, dict) for c in list(public) + list(private))
    if needs_zones and not azs and region and zone_discovery is not None:
        azs = zone_discovery(region, max(len(public), len(private)))

    config = TopologyConfig(
        name=get("name", defaults.name),
        environment=get("environment", defaults.environment),
        cidr=get("cidr", defaults.cidr),
        public_subnets=pair_subnets(public, azs, "public"),
        private_subnets=pair_subnets(private, azs, "private"),
        egress=strategy_from_flags(
            get("use_nat_instances", False),
            get("use_eip_with_nat_instances", False),
            instance_type=get("nat_instance_type", DEFAULT_NAT_INSTANCE_TYPE),
            ssh_key=get("nat_instance_ssh_key_name", None),
        ),
        region=region,
        enable_dns_hostnames=flag("enable_dns_hostnames", defaults.enable_dns_hostnames),
        enable_dns_support=flag("enable_dns_support", defaults.enable_dns_support),
        map_public_ip_on_launch=flag("map_public_ip_on_launch", defaults.map_public_ip_on_launch),
        tags=dict(get("tags", {}) or {}),
        vpc_tags=dict(get("vpc_tags", {}) or {}),
        public_subnet_tags=dict(get("public_subnet_tags", {}) or {}),
        private_subnet_tags=dict(get("private_subnet_tags", {}) or {}),
        public_route_table_tags=dict(get("public_route_table_tags", {}) or {}),
        private_route_table_tags=dict(get("private_route_table_tags", {}) or {}),
    )

    logger.info(
        "Configuring with NAME={} ENVIRONMENT={} CIDR={} REGION={}",
        config.name,
        config.environment,
        config.cidr,
        config.region,
    )
    logger.info(
        "Configuring with PUBLIC_SUBNETS={} PRIVATE_SUBNETS={} EGRESS={}",
        len(config.public_subnets),
        len(config.private_subnets),
        config.egress,
    )

    return config.validate()
