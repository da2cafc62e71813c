import hashlib
import json
import shutil
import subprocess

from loguru import logger

from .egress import count_resources
from .topology import Block, Ref, Topology

GENERATED_BY = "plantopo"


def to_plan(topo: Topology) -> dict:
    """JSON-ready plan: resources in declaration order, outputs, NAT counts."""

    def plain(value):
        if isinstance(value, Ref):
            return {"ref": value.address, "attr": value.attr}
        if isinstance(value, Block):
            return {"block": plain(value.attributes)}
        if isinstance(value, dict):
            return {k: plain(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [plain(v) for v in value]
        return value

    config = topo.config
    return {
        "name": config.name,
        "environment": config.environment,
        "cidr": config.cidr,
        "egress": type(config.egress).__name__,
        "counts": count_resources(config.egress, len(config.private_subnets))._asdict(),
        "resources": [
            {
                "address": r.address,
                "mode": r.mode,
                "type": r.type,
                "name": r.name,
                "index": r.index,
                "attributes": plain(r.attributes),
                "depends_on": [d.address for d in r.depends_on],
            }
            for r in topo.resources
        ],
        "outputs": plain(topo.outputs),
    }


def plan_json(topo: Topology) -> str:
    return json.dumps(to_plan(topo), indent=4)


def _hcl_string(value: str) -> str:
    # literal ${ and %{ would otherwise be read as template sequences
    return json.dumps(value.replace("${", "$${").replace("%{", "%%{"))


def _hcl_value(value, indent: int) -> str:
    pad = "  " * indent
    if isinstance(value, Ref):
        return value.hcl()
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return _hcl_string(value)
    if isinstance(value, dict):
        if not value:
            return "{}"
        inner = "".join(
            f"{pad}  {_hcl_string(k)} = {_hcl_value(v, indent + 1)}\n"
            for k, v in value.items()
        )
        return "{\n" + inner + pad + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_hcl_value(v, indent) for v in value) + "]"

    raise TypeError(f"Can't render {value!r} as HCL")


def _hcl_body(attributes: dict, indent: int) -> str:
    pad = "  " * indent
    lines = []
    for key, value in attributes.items():
        # lists of blocks become repeated nested blocks
        if isinstance(value, list) and value and all(isinstance(v, Block) for v in value):
            for block in value:
                lines.append(f"{pad}{key} {{\n{_hcl_body(block.attributes, indent + 1)}{pad}}}\n")
        else:
            lines.append(f"{pad}{key} = {_hcl_value(value, indent)}\n")

    return "".join(lines)


def to_provider(topo: Topology, profile: str = None) -> str:
    """aws provider block pinned to the planned region and profile."""
    settings = {}
    if profile:
        settings["profile"] = profile
    if topo.config.region:
        settings["region"] = topo.config.region

    body = _hcl_body(settings, 1)
    default_tags = _hcl_value({"GeneratedBy": GENERATED_BY}, 2)
    return (
        f'\nprovider "aws" {{\n{body}'
        f"  default_tags {{\n    tags = {default_tags}\n  }}\n}}\n"
    )


def to_terraform(topo: Topology, plan_source: str = None, profile: str = None) -> str:
    """Render the topology as Terraform with every count already resolved."""
    src = (plan_source if plan_source is not None else plan_json(topo)).encode()

    layout = [
        f"# Autogenerated VPC topology for {topo.config.name} ({topo.config.environment})\n",
        f"# plan sha256: {hashlib.sha256(src).hexdigest()}\n",
        f"# plan md5: {hashlib.md5(src).hexdigest()}\n",
        f"# Generated by {GENERATED_BY}\n",
    ]
    layout.append(to_provider(topo, profile))

    for r in topo.resources:
        body = _hcl_body(r.attributes, 1)
        if r.depends_on:
            # depends_on takes resource addresses, not attributes
            targets = ", ".join(d.hcl().rsplit(".", 1)[0] for d in r.depends_on)
            body += f"  depends_on = [{targets}]\n"

        keyword = "data" if r.mode == "data" else "resource"
        layout.append(
            f'\n{keyword} "{r.type}" "{r.label}" {{\n{body}}}\n'
        )

    for name, value in topo.outputs.items():
        if value is None:
            continue

        layout.append(f'\noutput "{name}" {{\n  value = {_hcl_value(value, 1)}\n}}\n')

    return "".join(layout)


def terraform_fmt(text: str) -> str:
    """Pass through `terraform fmt -` when terraform is installed."""
    if shutil.which("terraform") is None:
        logger.warning("terraform not found on PATH, skipping terraform fmt")
        return text

    cleanup = subprocess.run(
        "terraform fmt -".split(),
        stdout=subprocess.PIPE,
        input=text.encode(),
        check=True,
    ).stdout
    return cleanup.decode()
