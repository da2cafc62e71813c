# ============================================================================
# Configuration File for VPC Topology Planning
# ============================================================================
# Copy this file to the directory you run `plantopo` from (or point at it with
# --config_file). Every setting here can also be overridden on the command line
# using its lower_case name, e.g. --use_nat_instances=True

# ============================================================================
# Network
# ============================================================================

# Prefix for every Name tag: the VPC is "main", subnets are "main-public-<az>", ...
NAME = "main"

# Added as the Environment tag on every resource.
ENVIRONMENT = "dev"

# AWS allows VPC CIDR blocks between /16 and /28.
# Every subnet below must fit inside this block and subnets must not overlap.
CIDR = "10.0.0.0/16"

# Only used to discover availability zones when AVAILABILITY_ZONES is empty.
REGION = "us-east-1"

# ============================================================================
# Subnets
# ============================================================================
# Subnets pair with AVAILABILITY_ZONES by position: PUBLIC_SUBNETS[0] goes in
# AVAILABILITY_ZONES[0], and so on. A non-empty subnet list must have exactly
# as many entries as AVAILABILITY_ZONES or planning fails.
#
# You can skip the pairing and give structured records instead:
#   PUBLIC_SUBNETS = [{"cidr": "10.0.101.0/24", "availability_zone": "us-east-1a"}, ...]
#
# A private subnet with an empty CIDR ("") keeps its position, subnet, route
# table and NAT, but gets no default route.
AVAILABILITY_ZONES = ["us-east-1a", "us-east-1b"]

PUBLIC_SUBNETS = ["10.0.101.0/24", "10.0.102.0/24"]

PRIVATE_SUBNETS = ["10.0.1.0/24", "10.0.2.0/24"]

ENABLE_DNS_HOSTNAMES = True
ENABLE_DNS_SUPPORT = True

# Instances launched in public subnets get a public IP by default.
MAP_PUBLIC_IP_ON_LAUNCH = True

# ============================================================================
# NAT Egress
# ============================================================================
# Private subnets reach the internet through exactly one of:
#   - managed NAT gateways (USE_NAT_INSTANCES = False)
#       - one NAT gateway and one elastic IP per private subnet
#       - no servers to patch, but billed per gateway-hour plus per GB processed
#   - NAT instances (USE_NAT_INSTANCES = True)
#       - one EC2 instance per private subnet, sharing one security group
#       - much cheaper for low traffic, but you own the instance
#       - public IPs are auto-assigned (and change on stop/start) unless
#         USE_EIP_WITH_NAT_INSTANCES = True
# NAT resource N lives in public subnet N (wrapping if there are fewer public subnets).
USE_NAT_INSTANCES = False

NAT_INSTANCE_TYPE = "t3.micro"

# Empty means no SSH key on the NAT instances.
NAT_INSTANCE_SSH_KEY_NAME = ""

# Ignored for managed NAT gateways (they always get elastic IPs).
USE_EIP_WITH_NAT_INSTANCES = False

# ============================================================================
# Tags
# ============================================================================
# Applied in order: TAGS < category tags below < Name/Environment.
TAGS = {"ManagedBy": "terraform"}

VPC_TAGS = {}
PUBLIC_SUBNET_TAGS = {"Tier": "public"}
PRIVATE_SUBNET_TAGS = {"Tier": "private"}
PUBLIC_ROUTE_TABLE_TAGS = {}
PRIVATE_ROUTE_TABLE_TAGS = {}
