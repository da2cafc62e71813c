import json
import pathlib

from functools import cached_property

from loguru import logger

from .config import TopologyConfig, establish_config
from .egress import count_resources
from .render import plan_json, terraform_fmt, to_terraform
from .topology import Topology, assemble
from .zones import ZoneDiscovery


class TopologyPlanner:
    """Plan a VPC with public/private subnets and NAT egress, then emit Terraform for it."""

    def __init__(
        self,
        config_file: str = "mytopology.py",
        name: str = None,
        environment: str = None,
        cidr: str = None,
        region: str = None,
        public_subnets: list = None,
        private_subnets: list = None,
        availability_zones: list[str] = None,
        use_nat_instances: bool = None,
        nat_instance_type: str = None,
        nat_instance_ssh_key_name: str = None,
        use_eip_with_nat_instances: bool = None,
        enable_dns_hostnames: bool = None,
        enable_dns_support: bool = None,
        map_public_ip_on_launch: bool = None,
        tags: dict = None,
        vpc_tags: dict = None,
        public_subnet_tags: dict = None,
        private_subnet_tags: dict = None,
        public_route_table_tags: dict = None,
        private_route_table_tags: dict = None,
        profile: str = None,
        zones_cache: str = "cache.myzones.json",
        plan_result: str = "planned.mytopology.json",
    ):
        self.config_file = config_file
        self.overrides = dict(
            name=name,
            environment=environment,
            cidr=cidr,
            region=region,
            public_subnets=public_subnets,
            private_subnets=private_subnets,
            availability_zones=availability_zones,
            use_nat_instances=use_nat_instances,
            nat_instance_type=nat_instance_type,
            nat_instance_ssh_key_name=nat_instance_ssh_key_name,
            use_eip_with_nat_instances=use_eip_with_nat_instances,
            enable_dns_hostnames=enable_dns_hostnames,
            enable_dns_support=enable_dns_support,
            map_public_ip_on_launch=map_public_ip_on_launch,
            tags=tags,
            vpc_tags=vpc_tags,
            public_subnet_tags=public_subnet_tags,
            private_subnet_tags=private_subnet_tags,
            public_route_table_tags=public_route_table_tags,
            private_route_table_tags=private_route_table_tags,
        )
        self.profile = profile
        self.zone_discovery = ZoneDiscovery(cache=zones_cache, profile=profile)
        self.plan_result = pathlib.Path(plan_result)

    @cached_property
    def config(self) -> TopologyConfig:
        return establish_config(
            self.config_file, zone_discovery=self.zone_discovery, **self.overrides
        )

    @cached_property
    def topology(self) -> Topology:
        return assemble(self.config)

    def counts(self) -> dict:
        """NAT-related resource counts for the configured egress strategy."""
        return count_resources(
            self.config.egress, len(self.config.private_subnets)
        )._asdict()

    def summary(self) -> str:
        """Table of planned resource instances per type."""
        return self.topology.summary().to_string(index=False)

    def outputs(self) -> dict:
        """Published values as Terraform expressions."""
        rendered = {}
        for name, value in self.topology.outputs.items():
            if isinstance(value, list):
                rendered[name] = [v if isinstance(v, str) else v.hcl() for v in value]
            elif value is not None:
                rendered[name] = value.hcl()

        return rendered

    def plan(self):
        """Save the resolved topology as JSON."""
        self.plan_result.write_text(plan_json(self.topology))
        logger.info(
            "[{}] Saved topology plan ({} resources)",
            self.plan_result,
            len(self.topology.resources),
        )

    def generate_terraform_config(
        self, output: str = "suggested.mytopology.tf", fmt: bool = True
    ):
        """Generate a Terraform config from the plan saved by 'plan'."""
        if not self.plan_result.is_file():
            self.plan()

        # header hashes come from the saved plan so the .tf can be matched to it
        src = self.plan_result.read_text()
        if json.loads(src) != json.loads(plan_json(self.topology)):
            logger.warning(
                "[{}] Saved plan is stale, re-planning from current config", self.plan_result
            )
            self.plan()
            src = self.plan_result.read_text()

        layout = to_terraform(self.topology, plan_source=src, profile=self.profile)
        if fmt:
            layout = terraform_fmt(layout)

        pathlib.Path(output).write_text(layout)
        logger.info("[{}] Wrote terraform config", output)


def cmd():
    import fire

    fire.Fire(TopologyPlanner)


if __name__ == "__main__":
    cmd()
