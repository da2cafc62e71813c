"""Resolved resource graph for one VPC.

`assemble()` turns a validated TopologyConfig into concrete resource
declarations. All conditional counts are decided here, so the result has no
count arithmetic left for the provisioning engine to evaluate.
"""

import graphlib

from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd
from loguru import logger

from .config import TopologyConfig
from .egress import ManagedGateway, SelfManagedInstance, count_resources, describe
from .errors import TopologyError
from .tags import resource_tags

DEFAULT_ROUTE = "0.0.0.0/0"

# Amazon Linux NAT AMI family, owned by Amazon
NAT_AMI_NAME_FILTER = "amzn-ami-vpc-nat-*"
NAT_AMI_OWNER = "amazon"


@dataclass(frozen=True)
class Ref:
    """Reference to an attribute of another planned resource."""

    type: str
    name: str
    attr: str = "id"
    index: Optional[int] = None
    mode: str = "managed"

    @property
    def address(self) -> str:
        base = f"{self.type}.{self.name}"
        if self.mode == "data":
            base = f"data.{base}"

        return base if self.index is None else f"{base}[{self.index}]"

    def hcl(self) -> str:
        label = self.name if self.index is None else f"{self.name}_{self.index}"
        base = f"{self.type}.{label}"
        if self.mode == "data":
            base = f"data.{base}"

        return f"{base}.{self.attr}"


@dataclass
class Block:
    """Nested configuration block (ingress { ... }, filter { ... })."""

    attributes: dict[str, Any]


@dataclass
class Resource:
    type: str
    name: str
    attributes: dict[str, Any]
    index: Optional[int] = None
    depends_on: list[Ref] = field(default_factory=list)
    mode: str = "managed"

    @property
    def address(self) -> str:
        return self.ref().address

    @property
    def label(self) -> str:
        """Terraform block label; indexed resources are flattened to name_index."""
        return self.name if self.index is None else f"{self.name}_{self.index}"

    def ref(self, attr: str = "id") -> Ref:
        return Ref(self.type, self.name, attr, self.index, self.mode)

    def references(self) -> list[Ref]:
        found = list(self.depends_on)

        def walk(value):
            if isinstance(value, Ref):
                found.append(value)
            elif isinstance(value, Block):
                walk(value.attributes)
            elif isinstance(value, dict):
                for v in value.values():
                    walk(v)
            elif isinstance(value, (list, tuple)):
                for v in value:
                    walk(v)

        walk(self.attributes)
        return found


@dataclass
class Topology:
    config: TopologyConfig
    resources: list[Resource] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)

    def add(self, resource: Resource) -> Resource:
        self.resources.append(resource)
        return resource

    def get(self, address: str) -> Resource:
        for r in self.resources:
            if r.address == address:
                return r

        raise KeyError(address)

    def by_type(self, type_: str, name: Optional[str] = None) -> list[Resource]:
        return [
            r
            for r in self.resources
            if r.type == type_ and (name is None or r.name == name)
        ]

    def count(self, type_: str, name: Optional[str] = None) -> int:
        return len(self.by_type(type_, name))

    def validate_references(self) -> "Topology":
        addresses = {r.address for r in self.resources}
        if len(addresses) != len(self.resources):
            raise TopologyError("Duplicate resource addresses in topology")

        for r in self.resources:
            for ref in r.references():
                if ref.address not in addresses:
                    raise TopologyError(f"{r.address} references unplanned {ref.address}")

        for name, value in self.outputs.items():
            for ref in value if isinstance(value, list) else [value]:
                if isinstance(ref, Ref) and ref.address not in addresses:
                    raise TopologyError(f"output {name} references unplanned {ref.address}")

        return self

    def dependency_order(self) -> list[str]:
        """Resource addresses such that every dependency comes before its dependents."""
        sorter = graphlib.TopologicalSorter()
        for r in self.resources:
            sorter.add(r.address, *(ref.address for ref in r.references()))

        try:
            return list(sorter.static_order())
        except graphlib.CycleError as e:
            raise TopologyError(f"Dependency cycle: {e.args[1]}") from e

    def summary(self) -> pd.DataFrame:
        """Instance count per resource type and name."""
        df = pd.DataFrame(
            [{"type": r.type, "name": r.name, "mode": r.mode} for r in self.resources],
            columns=["type", "name", "mode"],
        )
        return df.groupby(["mode", "type", "name"], sort=False).size().reset_index(name="count")


def _hosting_public_index(i: int, public_count: int) -> int:
    # NAT i sits in public subnet i, wrapping when there are fewer public subnets
    return i % public_count


def assemble(config: TopologyConfig) -> Topology:
    """Build every resource declaration with positional references resolved."""
    topo = Topology(config=config)
    name, env = config.name, config.environment
    public, private = config.public_subnets, config.private_subnets
    strategy = config.egress
    counts = count_resources(strategy, len(private))

    logger.info(
        "[{}] Planning {} public / {} private subnets with {}",
        name,
        len(public),
        len(private),
        describe(strategy),
    )

    vpc = topo.add(
        Resource(
            "aws_vpc",
            "this",
            {
                "cidr_block": config.cidr,
                "enable_dns_hostnames": config.enable_dns_hostnames,
                "enable_dns_support": config.enable_dns_support,
                "tags": resource_tags(config.tags, config.vpc_tags, name, env),
            },
        )
    )

    # ================================================================================
    # Public side: internet gateway, subnets, one shared route table
    # ================================================================================
    public_subnets = []
    igw = topo.add(
        Resource(
            "aws_internet_gateway",
            "this",
            {
                "vpc_id": vpc.ref(),
                "tags": resource_tags(config.tags, None, name, env),
            },
        )
    )

    for i, s in enumerate(public):
        public_subnets.append(
            topo.add(
                Resource(
                    "aws_subnet",
                    "public",
                    {
                        "vpc_id": vpc.ref(),
                        "cidr_block": s.cidr,
                        "availability_zone": s.availability_zone,
                        "map_public_ip_on_launch": config.map_public_ip_on_launch,
                        "tags": resource_tags(
                            config.tags,
                            config.public_subnet_tags,
                            f"{name}-public-{s.availability_zone}",
                            env,
                        ),
                    },
                    index=i,
                )
            )
        )

    public_rt = topo.add(
        Resource(
            "aws_route_table",
            "public",
            {
                "vpc_id": vpc.ref(),
                "tags": resource_tags(
                    config.tags, config.public_route_table_tags, f"{name}-public", env
                ),
            },
        )
    )
    topo.add(
        Resource(
            "aws_route",
            "public_internet_gateway",
            {
                "route_table_id": public_rt.ref(),
                "destination_cidr_block": DEFAULT_ROUTE,
                "gateway_id": igw.ref(),
            },
        )
    )

    # ================================================================================
    # Private side: subnets and one route table per subnet
    # ================================================================================
    private_subnets = []
    private_rts = []
    for i, s in enumerate(private):
        if s.placeholder:
            logger.warning(
                "[{}] Private subnet {} is a placeholder: planning subnet and route table without a default route",
                name,
                i,
            )

        private_subnets.append(
            topo.add(
                Resource(
                    "aws_subnet",
                    "private",
                    {
                        "vpc_id": vpc.ref(),
                        "cidr_block": s.cidr,
                        "availability_zone": s.availability_zone,
                        "tags": resource_tags(
                            config.tags,
                            config.private_subnet_tags,
                            f"{name}-private-{s.availability_zone}",
                            env,
                        ),
                    },
                    index=i,
                )
            )
        )
        private_rts.append(
            topo.add(
                Resource(
                    "aws_route_table",
                    "private",
                    {
                        "vpc_id": vpc.ref(),
                        "tags": resource_tags(
                            config.tags,
                            config.private_route_table_tags,
                            f"{name}-private-{s.availability_zone}",
                            env,
                        ),
                    },
                    index=i,
                )
            )
        )

    # ================================================================================
    # Egress: exactly one NAT mechanism, counts decided by the strategy
    # ================================================================================
    nat_targets: list[Ref] = []
    nat_public_ips: list[Ref] = []

    if isinstance(strategy, ManagedGateway):
        for i in range(counts.nat_gateways):
            az = private[i].availability_zone
            eip = topo.add(
                Resource(
                    "aws_eip",
                    "nat",
                    {
                        "domain": "vpc",
                        "tags": resource_tags(config.tags, None, f"{name}-nat-{az}", env),
                    },
                    index=i,
                    depends_on=[Ref("aws_internet_gateway", "this")],
                )
            )
            nat = topo.add(
                Resource(
                    "aws_nat_gateway",
                    "this",
                    {
                        "allocation_id": eip.ref(),
                        "subnet_id": public_subnets[
                            _hosting_public_index(i, len(public_subnets))
                        ].ref(),
                        "tags": resource_tags(config.tags, None, f"{name}-nat-{az}", env),
                    },
                    index=i,
                    depends_on=[Ref("aws_internet_gateway", "this")],
                )
            )
            nat_targets.append(nat.ref())
            nat_public_ips.append(eip.ref("public_ip"))

    elif isinstance(strategy, SelfManagedInstance):
        if counts.nat_security_groups:
            sg = topo.add(
                Resource(
                    "aws_security_group",
                    "nat_instances",
                    {
                        "name_prefix": f"{name}-nat-instances-",
                        "description": "NAT instances: all traffic from the VPC, all traffic out",
                        "vpc_id": vpc.ref(),
                        "ingress": [
                            Block(
                                {
                                    "from_port": 0,
                                    "to_port": 0,
                                    "protocol": "-1",
                                    "cidr_blocks": [vpc.ref("cidr_block")],
                                }
                            )
                        ],
                        "egress": [
                            Block(
                                {
                                    "from_port": 0,
                                    "to_port": 0,
                                    "protocol": "-1",
                                    "cidr_blocks": [DEFAULT_ROUTE],
                                }
                            )
                        ],
                        "tags": resource_tags(
                            config.tags, None, f"{name}-nat-instances", env
                        ),
                    },
                )
            )

        if counts.nat_instances:
            ami = topo.add(
                Resource(
                    "aws_ami",
                    "nat",
                    {
                        "most_recent": True,
                        "owners": [NAT_AMI_OWNER],
                        "filter": [
                            Block({"name": "name", "values": [NAT_AMI_NAME_FILTER]}),
                            Block({"name": "owner-alias", "values": [NAT_AMI_OWNER]}),
                        ],
                    },
                    mode="data",
                )
            )

        for i in range(counts.nat_instances):
            az = private[i].availability_zone
            attrs = {
                "ami": ami.ref(),
                "instance_type": strategy.instance_type,
                "subnet_id": public_subnets[
                    _hosting_public_index(i, len(public_subnets))
                ].ref(),
                "vpc_security_group_ids": [sg.ref()],
                "source_dest_check": False,
                "associate_public_ip_address": True,
                "tags": resource_tags(config.tags, None, f"{name}-nat-{az}", env),
            }
            if strategy.ssh_key:
                attrs["key_name"] = strategy.ssh_key

            instance = topo.add(Resource("aws_instance", "nat", attrs, index=i))
            nat_targets.append(instance.ref("primary_network_interface_id"))

            if i < counts.elastic_ips:
                eip = topo.add(
                    Resource(
                        "aws_eip",
                        "nat",
                        {
                            "domain": "vpc",
                            "tags": resource_tags(config.tags, None, f"{name}-nat-{az}", env),
                        },
                        index=i,
                        depends_on=[Ref("aws_internet_gateway", "this")],
                    )
                )
                topo.add(
                    Resource(
                        "aws_eip_association",
                        "nat",
                        {
                            "instance_id": instance.ref(),
                            "allocation_id": eip.ref(),
                        },
                        index=i,
                    )
                )
                nat_public_ips.append(eip.ref("public_ip"))
            else:
                nat_public_ips.append(instance.ref("public_ip"))

    # Placeholders are compacted out of route creation only; tables and NAT stay
    route_name = (
        "private_nat_gateway"
        if isinstance(strategy, ManagedGateway)
        else "private_nat_instance"
    )
    for i, s in enumerate(private):
        if s.placeholder:
            continue

        topo.add(
            Resource(
                "aws_route",
                route_name,
                {
                    "route_table_id": private_rts[i].ref(),
                    "destination_cidr_block": DEFAULT_ROUTE,
                    strategy.route_target: nat_targets[i],
                },
                index=i,
            )
        )

    # ================================================================================
    # Associations
    # ================================================================================
    for i, subnet in enumerate(public_subnets):
        topo.add(
            Resource(
                "aws_route_table_association",
                "public",
                {"subnet_id": subnet.ref(), "route_table_id": public_rt.ref()},
                index=i,
            )
        )

    for i, subnet in enumerate(private_subnets):
        topo.add(
            Resource(
                "aws_route_table_association",
                "private",
                {"subnet_id": subnet.ref(), "route_table_id": private_rts[i].ref()},
                index=i,
            )
        )

    topo.outputs = {
        "vpc_id": vpc.ref(),
        "vpc_cidr_block": vpc.ref("cidr_block"),
        "public_subnets": [s.ref() for s in public_subnets],
        "private_subnets": [s.ref() for s in private_subnets],
        "default_security_group_id": vpc.ref("default_security_group_id"),
        "availability_zones": config.availability_zones,
        "private_route_table_ids": [rt.ref() for rt in private_rts],
        "public_route_table_id": public_rt.ref(),
        "nat_public_ips": nat_public_ips,
    }

    logger.info(
        "[{}] Planned {} resources ({} NAT gateways, {} NAT instances, {} elastic IPs)",
        name,
        len(topo.resources),
        counts.nat_gateways,
        counts.nat_instances,
        counts.elastic_ips,
    )

    return topo.validate_references()
