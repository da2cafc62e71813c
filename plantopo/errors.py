class PlannerError(Exception):
    """Base class for everything the topology planner refuses to plan."""


class ConfigError(PlannerError, ValueError):
    """Configuration can't produce a valid topology."""


class SubnetAlignmentError(ConfigError):
    """Subnet list and availability zone list don't pair up positionally."""


class TopologyError(PlannerError):
    """Assembled topology is internally inconsistent (dangling reference, cycle)."""
