import logging

from fabjoin.common.errors import NotFoundError, ProfileError
from fabjoin.cli.output import print_cli


logger = logging.getLogger(__name__)


MONITORING_MEMBERSHIP = "sys--mon"
CA_SERVICE = "fabric-ca"


class ResolvedTopology:
    """The slice of control plane state one client needs.

    Resources are kept as the dicts decoded from the API replies.
    """

    def __init__(self, consortium, environment, membership, channel, ca, nodes):
        self.consortium = consortium
        self.environment = environment
        self.membership = membership
        self.channel = channel
        self.ca = ca
        self.nodes = list(nodes)

    @property
    def consortium_id(self):
        return self.consortium.get("_id")

    @property
    def environment_id(self):
        return self.environment.get("_id")

    @property
    def membership_id(self):
        return self.membership.get("_id")

    @property
    def channel_name(self):
        return self.channel.get("name")

    @property
    def ca_id(self):
        return self.ca.get("_id")

    @property
    def ca_url(self):
        return self.ca.get("urls", {}).get("http")

    def member_nodes(self):
        return [
            node
            for node in self.nodes
            if node.get("membership_id") != MONITORING_MEMBERSHIP
        ]

    def check(self):
        fields = {
            "consortium": self.consortium,
            "environment": self.environment,
            "membership": self.membership,
            "channel": self.channel,
            "ca": self.ca,
        }
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ProfileError(f"Topology is missing {', '.join(missing)}")

        roles = [node.get("role") for node in self.member_nodes()]
        if "peer" not in roles:
            raise NotFoundError("The environment does not have any peers")
        if "orderer" not in roles:
            raise NotFoundError("The environment does not have any orderers")
        return True


class TopologySelector:
    def __init__(self, resolver, url, consortium=None, environment=None, membership=None):
        self.resolver = resolver
        self.url = url
        self.preferred = {
            "consortia": consortium,
            "environments": environment,
            "memberships": membership,
        }
        self.consortium = None
        self.environment = None
        self.membership = None
        self.channel = None
        self.ca = None
        self.nodes = []

    def consortium_url(self):
        return f"{self.url}/c/{self.consortium.get('_id')}"

    def environment_url(self):
        return f"{self.consortium_url()}/e/{self.environment.get('_id')}"

    def _live(self, resources):
        return [res for res in resources if res.get("state") != "deleted"]

    def select_consortium(self):
        consortia = self._live(self.resolver.fetch_collection(f"{self.url}/c"))
        self.consortium = self.resolver.select_one(
            consortia, "consortia", "name", preferred=self.preferred["consortia"]
        )
        return self.consortium

    def select_environment(self):
        environments = self._live(
            self.resolver.fetch_collection(f"{self.consortium_url()}/e")
        )
        self.environment = self.resolver.select_one(
            environments,
            "environments",
            "name",
            preferred=self.preferred["environments"],
        )
        return self.environment

    def select_membership(self):
        memberships = self.resolver.fetch_collection(f"{self.consortium_url()}/m")
        self.membership = self.resolver.select_one(
            memberships,
            "memberships",
            "org_name",
            preferred=self.preferred["memberships"],
        )
        return self.membership

    def select_channel(self):
        channels = self.resolver.fetch_collection(f"{self.environment_url()}/channels")
        self.channel = self.resolver.select_one(channels, "channels", "name")
        return self.channel

    def locate_ca(self):
        services = self.resolver.fetch_collection(f"{self.environment_url()}/services")
        membership_id = self.membership.get("_id")

        for service in services:
            if service.get("service", CA_SERVICE) != CA_SERVICE:
                continue
            if service.get("membership_id") == membership_id:
                print_cli(
                    f"Found certificate authority \"{service.get('_id')}\" for the membership",
                    style="normal",
                )
                self.ca = service
                return self.ca

        raise NotFoundError(
            f"No Certificate Authority found for membership {membership_id}"
        )

    def list_nodes(self):
        self.nodes = self.resolver.fetch_collection(f"{self.environment_url()}/n")
        for node in self.nodes:
            logger.debug(
                "Found %s %s (membership=%s)",
                node.get("role"),
                node.get("_id"),
                node.get("membership_id"),
            )
        return self.nodes

    def build(self):
        logger.info("Resolving topology from %s", self.url)
        self.select_consortium()
        self.select_environment()
        self.select_membership()
        self.select_channel()
        self.locate_ca()
        self.list_nodes()

        topology = ResolvedTopology(
            self.consortium,
            self.environment,
            self.membership,
            self.channel,
            self.ca,
            self.nodes,
        )
        topology.check()
        return topology
