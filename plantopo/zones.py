import json
import pathlib

import boto3
import botocore.exceptions
import pandas as pd
from loguru import logger

from .errors import ConfigError


class ZoneDiscovery:
    """Cached (or live) region to availability zone mapping your AWS profile can see."""

    def __init__(self, cache: str = "cache.myzones.json", profile: str = None):
        self.cache = pathlib.Path(cache)
        self.profile = profile

        # region-name => {'ZoneName': [zones-by-name], 'ZoneId': [zones-by-id]}
        self.myzones: dict[str, dict[str, list[str]]] = dict()

    def _load_cache(self):
        if self.myzones or not self.cache.is_file():
            return

        logger.info("[{}] Loading cached zones...", self.cache)
        try:
            self.myzones = json.loads(self.cache.read_text())
        except json.JSONDecodeError:
            logger.error("[{}] Loading cache failed, will fetch live zones again.", self.cache)
            self.myzones = dict()

    def _fetch(self, region: str) -> dict[str, list[str]]:
        logger.info("[{}] Asking for zones...", region)
        session = boto3.session.Session(profile_name=self.profile)
        found = session.client("ec2", region_name=region).describe_availability_zones(
            Filters=[{"Name": "zone-type", "Values": ["availability-zone"]}]
        )["AvailabilityZones"]

        if not found:
            return {"ZoneName": [], "ZoneId": []}

        # pandas flattens the describe output down to the two columns we keep
        return pd.json_normalize(found)[["ZoneName", "ZoneId"]].to_dict("list")

    def zones(self, region: str) -> dict[str, list[str]]:
        self._load_cache()
        if region in self.myzones:
            return self.myzones[region]

        try:
            self.myzones[region] = self._fetch(region)
        except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as e:
            # regions we don't have access to are reported, not cached
            logger.warning("[{}] Failed to access: {}", region, e)
            return {"ZoneName": [], "ZoneId": []}

        self.cache.write_text(json.dumps(self.myzones, indent=4))
        logger.info("[{}] Cached zones for {}", self.cache, region)
        return self.myzones[region]

    def __call__(self, region: str, count: int) -> list[str]:
        """First `count` zone names in `region`, sorted by name."""
        names = sorted(self.zones(region)["ZoneName"])
        if len(names) < count:
            raise ConfigError(
                f"[{region}] needs {count} availability zones but only {len(names)} are visible"
            )

        return names[:count]
