"""
Tests for topology assembly.
"""

import pytest

from plantopo.config import SubnetSpec, TopologyConfig
from plantopo.egress import ManagedGateway, SelfManagedInstance
from plantopo.errors import TopologyError
from plantopo.topology import DEFAULT_ROUTE, Block, Ref, Resource, Topology, assemble

from conftest import make_config


def default_routes(topo, table: Resource) -> list[Resource]:
    return [
        r
        for r in topo.by_type("aws_route")
        if r.attributes["route_table_id"] == table.ref()
        and r.attributes["destination_cidr_block"] == DEFAULT_ROUTE
    ]


class TestRef:
    """Tests for Ref addressing."""

    def test_indexed_address_and_hcl(self) -> None:
        """Indexed refs flatten to name_index in Terraform."""
        ref = Ref("aws_subnet", "public", "id", 1)

        assert ref.address == "aws_subnet.public[1]"
        assert ref.hcl() == "aws_subnet.public_1.id"

    def test_data_source(self) -> None:
        """Data source refs carry the data. prefix."""
        ref = Ref("aws_ami", "nat", mode="data")

        assert ref.address == "data.aws_ami.nat"
        assert ref.hcl() == "data.aws_ami.nat.id"


class TestAssembleManagedGateway:
    """Scenario: two private subnets behind managed NAT gateways."""

    def test_counts(self, gateway_config) -> None:
        """2 gateways, 2 EIPs, no instances or security groups."""
        topo = assemble(gateway_config)

        assert topo.count("aws_nat_gateway") == 2
        assert topo.count("aws_eip") == 2
        assert topo.count("aws_instance") == 0
        assert topo.count("aws_security_group") == 0
        assert topo.count("aws_route", "private_nat_gateway") == 2
        assert topo.count("aws_route", "private_nat_instance") == 0

    def test_fixed_topology(self, gateway_config) -> None:
        """One VPC, IGW and public table; a table per private subnet."""
        topo = assemble(gateway_config)

        assert topo.count("aws_vpc") == 1
        assert topo.count("aws_internet_gateway") == 1
        assert topo.count("aws_subnet", "public") == 2
        assert topo.count("aws_subnet", "private") == 2
        assert topo.count("aws_route_table", "public") == 1
        assert topo.count("aws_route_table", "private") == 2
        assert topo.count("aws_route_table_association") == 4

    def test_routes_point_at_same_index(self, gateway_config) -> None:
        """Private table i routes through NAT gateway i."""
        topo = assemble(gateway_config)

        for i in range(2):
            table = topo.get(f"aws_route_table.private[{i}]")
            (route,) = default_routes(topo, table)

            assert route.attributes["nat_gateway_id"] == Ref("aws_nat_gateway", "this", index=i)
            assert "network_interface_id" not in route.attributes

    def test_gateways_live_in_public_subnets(self, gateway_config) -> None:
        """NAT gateway i sits in public subnet i with EIP i."""
        topo = assemble(gateway_config)
        nat = topo.get("aws_nat_gateway.this[1]")

        assert nat.attributes["subnet_id"] == Ref("aws_subnet", "public", index=1)
        assert nat.attributes["allocation_id"] == Ref("aws_eip", "nat", index=1)

    def test_public_route_to_internet_gateway(self, gateway_config) -> None:
        """The shared public table has one default route to the IGW."""
        topo = assemble(gateway_config)
        (route,) = default_routes(topo, topo.get("aws_route_table.public"))

        assert route.attributes["gateway_id"] == Ref("aws_internet_gateway", "this")

    def test_associations(self, gateway_config) -> None:
        """Each subnet is bound to its own table (public ones share)."""
        topo = assemble(gateway_config)

        assoc = topo.get("aws_route_table_association.private[1]")
        assert assoc.attributes == {
            "subnet_id": Ref("aws_subnet", "private", index=1),
            "route_table_id": Ref("aws_route_table", "private", index=1),
        }

        public = topo.get("aws_route_table_association.public[0]")
        assert public.attributes["route_table_id"] == Ref("aws_route_table", "public")

    def test_tags(self, gateway_config) -> None:
        """Subnets are tagged with name, zone and environment."""
        gateway_config.tags = {"Owner": "ops", "Name": "ignored"}
        gateway_config.private_subnet_tags = {"Tier": "private"}
        topo = assemble(gateway_config)

        assert topo.get("aws_subnet.private[0]").attributes["tags"] == {
            "Owner": "ops",
            "Name": "main-private-us-east-1a",
            "Tier": "private",
            "Environment": "test",
        }

    def test_outputs(self, gateway_config) -> None:
        """Published values reference the planned resources."""
        topo = assemble(gateway_config)

        assert topo.outputs["vpc_id"] == Ref("aws_vpc", "this")
        assert topo.outputs["default_security_group_id"] == Ref(
            "aws_vpc", "this", "default_security_group_id"
        )
        assert topo.outputs["availability_zones"] == ["us-east-1a", "us-east-1b"]
        assert topo.outputs["nat_public_ips"] == [
            Ref("aws_eip", "nat", "public_ip", 0),
            Ref("aws_eip", "nat", "public_ip", 1),
        ]


class TestAssembleNatInstances:
    """Scenarios: two private subnets behind NAT instances."""

    def test_without_eip(self, instance_config) -> None:
        """2 instances, 1 security group, no EIPs, routes via instances."""
        topo = assemble(instance_config)

        assert topo.count("aws_nat_gateway") == 0
        assert topo.count("aws_instance", "nat") == 2
        assert topo.count("aws_security_group", "nat_instances") == 1
        assert topo.count("aws_eip") == 0
        assert topo.count("aws_eip_association") == 0
        assert topo.count("aws_route", "private_nat_instance") == 2
        assert topo.outputs["nat_public_ips"] == [
            Ref("aws_instance", "nat", "public_ip", 0),
            Ref("aws_instance", "nat", "public_ip", 1),
        ]

    def test_with_eip(self, instance_eip_config) -> None:
        """2 instances, 1 security group, 2 EIPs, 2 associations."""
        topo = assemble(instance_eip_config)

        assert topo.count("aws_instance", "nat") == 2
        assert topo.count("aws_security_group", "nat_instances") == 1
        assert topo.count("aws_eip", "nat") == 2
        assert topo.count("aws_eip_association", "nat") == 2

        assoc = topo.get("aws_eip_association.nat[1]")
        assert assoc.attributes == {
            "instance_id": Ref("aws_instance", "nat", index=1),
            "allocation_id": Ref("aws_eip", "nat", index=1),
        }

    def test_instance_attributes(self, instance_eip_config) -> None:
        """Instances forward traffic and use the NAT AMI lookup."""
        topo = assemble(instance_eip_config)
        instance = topo.get("aws_instance.nat[0]").attributes

        assert instance["source_dest_check"] is False
        assert instance["instance_type"] == "t3.nano"
        assert instance["key_name"] == "ops"
        assert instance["ami"] == Ref("aws_ami", "nat", mode="data")
        assert instance["vpc_security_group_ids"] == [Ref("aws_security_group", "nat_instances")]
        assert topo.get("data.aws_ami.nat").mode == "data"

    def test_no_key_name_without_ssh_key(self, instance_config) -> None:
        """key_name is omitted when no SSH key is configured."""
        topo = assemble(instance_config)

        assert "key_name" not in topo.get("aws_instance.nat[0]").attributes

    def test_routes_use_network_interface(self, instance_config) -> None:
        """Private table i routes through instance i's interface."""
        topo = assemble(instance_config)
        (route,) = default_routes(topo, topo.get("aws_route_table.private[1]"))

        assert route.attributes["network_interface_id"] == Ref(
            "aws_instance", "nat", "primary_network_interface_id", 1
        )
        assert "nat_gateway_id" not in route.attributes

    def test_security_group_allows_vpc(self, instance_config) -> None:
        """Ingress comes from the VPC CIDR; egress goes anywhere."""
        sg = assemble(instance_config).get("aws_security_group.nat_instances").attributes

        assert sg["ingress"] == [
            Block({"from_port": 0, "to_port": 0, "protocol": "-1", "cidr_blocks": [Ref("aws_vpc", "this", "cidr_block")]})
        ]
        assert sg["egress"][0].attributes["cidr_blocks"] == [DEFAULT_ROUTE]

    def test_security_group_without_private_subnets(self) -> None:
        """Selecting instances with no private subnets still plans the group."""
        config = TopologyConfig(
            public_subnets=[SubnetSpec("10.0.101.0/24", "us-east-1a")],
            egress=SelfManagedInstance(),
        ).validate()
        topo = assemble(config)

        assert topo.count("aws_security_group") == 1
        assert topo.count("aws_instance") == 0
        assert topo.count("aws_ami") == 0


class TestInvariants:
    """Properties that hold for every egress strategy."""

    @pytest.mark.parametrize(
        "egress",
        [ManagedGateway(), SelfManagedInstance(), SelfManagedInstance(use_eip=True)],
    )
    def test_every_private_table_has_one_default_route(self, egress) -> None:
        """Exactly one default route per private table, never both mechanisms."""
        topo = assemble(make_config(egress))

        for table in topo.by_type("aws_route_table", "private"):
            routes = default_routes(topo, table)

            assert len(routes) == 1
            targets = {"nat_gateway_id", "network_interface_id"} & set(routes[0].attributes)
            assert len(targets) == 1

    @pytest.mark.parametrize("egress", [ManagedGateway(), SelfManagedInstance(use_eip=True)])
    def test_dependencies_come_first(self, egress) -> None:
        """Every referenced resource is ordered before its referrer."""
        topo = assemble(make_config(egress))
        order = topo.dependency_order()
        position = {address: i for i, address in enumerate(order)}

        assert set(order) == {r.address for r in topo.resources}
        for r in topo.resources:
            for ref in r.references():
                assert position[ref.address] < position[r.address]

    def test_assembly_is_deterministic(self, instance_eip_config) -> None:
        """Assembling twice gives the same resources."""
        first = assemble(instance_eip_config)
        second = assemble(instance_eip_config)

        assert first.resources == second.resources
        assert first.outputs == second.outputs


class TestPlaceholderPrivateSubnets:
    """Blank private subnet entries are compacted out of route creation only."""

    def test_placeholder_keeps_subnet_and_table_but_no_route(self) -> None:
        """Subnet and table exist for the placeholder; its route doesn't."""
        topo = assemble(make_config(private=("10.0.1.0/24", "")))

        assert topo.count("aws_subnet", "private") == 2
        assert topo.count("aws_route_table", "private") == 2
        assert topo.count("aws_nat_gateway") == 2
        assert [r.index for r in topo.by_type("aws_route", "private_nat_gateway")] == [0]
        assert default_routes(topo, topo.get("aws_route_table.private[1]")) == []

    def test_placeholder_keeps_nat_instance_but_no_route(self) -> None:
        """On the instance path the placeholder keeps its instance and table, not a route."""
        topo = assemble(make_config(SelfManagedInstance(), private=("10.0.1.0/24", "")))

        assert topo.count("aws_instance", "nat") == 2
        assert topo.count("aws_route_table", "private") == 2
        assert [r.index for r in topo.by_type("aws_route", "private_nat_instance")] == [0]
        assert default_routes(topo, topo.get("aws_route_table.private[1]")) == []


class TestEmptyTopology:
    """A VPC with no subnets still has its gateway and public route table."""

    def test_fixed_public_resources_always_planned(self) -> None:
        """IGW, public table and its default route exist without any subnets."""
        topo = assemble(TopologyConfig().validate())

        assert topo.count("aws_internet_gateway") == 1
        assert topo.count("aws_route_table", "public") == 1
        assert topo.count("aws_subnet") == 0
        (route,) = default_routes(topo, topo.get("aws_route_table.public"))
        assert route.attributes["gateway_id"] == Ref("aws_internet_gateway", "this")

    def test_public_route_table_output_always_published(self) -> None:
        """public_route_table_id is published even with no subnets."""
        topo = assemble(TopologyConfig().validate())

        assert topo.outputs["public_route_table_id"] == Ref("aws_route_table", "public")
        assert topo.outputs["public_subnets"] == []


class TestTopology:
    """Tests for Topology helpers."""

    def test_dangling_reference_raises(self) -> None:
        """References to unplanned resources are rejected."""
        topo = Topology(config=TopologyConfig())
        topo.add(Resource("aws_subnet", "public", {"vpc_id": Ref("aws_vpc", "this")}, index=0))

        with pytest.raises(TopologyError, match="unplanned aws_vpc.this"):
            topo.validate_references()

    def test_cycle_raises(self) -> None:
        """Cyclic references can't be ordered."""
        topo = Topology(config=TopologyConfig())
        topo.add(Resource("aws_a", "x", {"b": Ref("aws_b", "y")}))
        topo.add(Resource("aws_b", "y", {"a": Ref("aws_a", "x")}))

        with pytest.raises(TopologyError, match="cycle"):
            topo.dependency_order()

    def test_get_unknown_address(self, gateway_config) -> None:
        """Unknown addresses raise KeyError."""
        with pytest.raises(KeyError):
            assemble(gateway_config).get("aws_vpc.other")

    def test_summary(self, instance_eip_config) -> None:
        """Summary counts instances per type and name."""
        df = assemble(instance_eip_config).summary()
        counts = {(t, n): c for t, n, c in zip(df["type"], df["name"], df["count"])}

        assert counts[("aws_instance", "nat")] == 2
        assert counts[("aws_vpc", "this")] == 1
        assert counts[("aws_ami", "nat")] == 1
