import pytest

from plantopo.config import SubnetSpec, TopologyConfig
from plantopo.egress import ManagedGateway, SelfManagedInstance

AZS = ["us-east-1a", "us-east-1b"]


def make_config(egress=None, private=("10.0.1.0/24", "10.0.2.0/24"), **kwargs) -> TopologyConfig:
    return TopologyConfig(
        name="main",
        environment="test",
        cidr="10.0.0.0/16",
        public_subnets=[
            SubnetSpec("10.0.101.0/24", AZS[0]),
            SubnetSpec("10.0.102.0/24", AZS[1]),
        ],
        private_subnets=[SubnetSpec(c, az) for c, az in zip(private, AZS)],
        egress=egress or ManagedGateway(),
        **kwargs,
    ).validate()


@pytest.fixture
def gateway_config() -> TopologyConfig:
    return make_config(ManagedGateway())


@pytest.fixture
def instance_config() -> TopologyConfig:
    return make_config(SelfManagedInstance(instance_type="t3.nano", use_eip=False))


@pytest.fixture
def instance_eip_config() -> TopologyConfig:
    return make_config(SelfManagedInstance(instance_type="t3.nano", ssh_key="ops", use_eip=True))
