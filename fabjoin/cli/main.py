import os
import sys
import random
import logging

from fabjoin.common.cfg import Config
from fabjoin.common.logs import Logs
from fabjoin.common.errors import FabjoinError
from fabjoin.cli.chooser import TerminalChooser
from fabjoin.cli.output import print_cli
from fabjoin.network.resolver import RemoteResourceResolver
from fabjoin.network.topology import TopologySelector
from fabjoin.network.tls import TLSMaterialProvider
from fabjoin.fabric.ca import CAClient
from fabjoin.fabric.identity import FileSystemWallet, IdentityEnroller
from fabjoin.fabric.profile import ConnectionProfileBuilder
from fabjoin.fabric.ledger import ContractGateway


logger = logging.getLogger(__name__)


class CLIRunner:
    """Runs the bootstrap steps in order, each one feeding the next."""

    def __init__(
        self,
        info,
        chooser,
        session=None,
        fetcher=None,
        ca_client_factory=CAClient,
        gateway_factory=ContractGateway,
    ):
        self.info = info
        self.chooser = chooser
        self.fetcher = fetcher
        self.ca_client_factory = ca_client_factory
        self.gateway_factory = gateway_factory
        self.resolver = RemoteResourceResolver(info["apikey"], chooser, session=session)
        self.topology = None
        self.tls_provider = None
        self.enroller = None
        self.identity = None
        self.profile = None
        self.profile_path = None

    def datadir(self):
        return os.path.join(self.info["root"], self.topology.environment_id)

    def resolve(self):
        print_cli(f"Resolving network topology at {self.info['url']}")
        selector = TopologySelector(
            self.resolver,
            self.info["url"],
            consortium=self.info.get("consortium"),
            environment=self.info.get("environment"),
            membership=self.info.get("membership"),
        )
        self.topology = selector.build()
        self.tls_provider = TLSMaterialProvider(self.datadir(), fetcher=self.fetcher)
        return self.topology

    def enroll(self):
        print_cli(f"Ensuring identity {self.info['username']} in the wallet")
        wallet = FileSystemWallet(
            os.path.join(self.datadir(), self.topology.membership_id)
        )
        self.enroller = IdentityEnroller(
            self.resolver,
            self.info["url"],
            self.topology,
            wallet,
            self.tls_provider,
            self.ca_client_factory,
        )
        self.identity = self.enroller.ensure_user(self.info["username"])
        return self.identity

    def build_profile(self):
        print_cli("Building connection profile")
        builder = ConnectionProfileBuilder(self.info["root"], self.enroller, self.tls_provider)
        self.profile = builder.build(self.topology, self.info["username"])
        self.profile_path = builder.write(self.topology, self.profile)
        print_cli(f"Writing connection profile at {self.profile_path}", style="normal")
        return self.profile_path

    def transact(self):
        gateway = self.gateway_factory(
            self.profile,
            self.identity,
            os.path.join(self.datadir(), self.topology.membership_id, self.info["username"]),
            self.topology.channel_name,
            self.info["contract"],
        )
        gateway.prepare(self.enroller.get_ca_cert())

        if self.chooser.confirm("Call \"InitLedger\"?"):
            print_cli(gateway.init_ledger(), style="normal")

        asset_id = "asset-" + str(random.randint(0, 1000 * 1000 - 1))
        print_cli(f"Submit Transaction: CreateAsset {asset_id}")
        print_cli(gateway.create_asset(asset_id), style="normal")

        print_cli("Evaluate Transaction: GetAllAssets")
        result = gateway.get_all_assets()
        print_cli(result, style="normal")
        return result

    def run(self):
        self.resolve()
        self.enroll()
        self.build_profile()
        self.transact()


def main(argv=None, environ=None, chooser=None, **runner_kwargs):
    config = Config()
    if not config.parse(argv, environ):
        return 1

    info = config.get()
    Logs(os.path.join(info["root"], "logs", "fabjoin.log"), debug=info["debug"])
    logger.info("fabjoin started - url %s - user %s", info["url"], info["username"])

    runner = CLIRunner(info, chooser or TerminalChooser(), **runner_kwargs)

    try:
        runner.run()
    except FabjoinError as e:
        logger.error("Bootstrap failed (%s): %s", e.kind, e)
        print_cli(None, err=str(e))
        return e.exit_code

    logger.info("fabjoin finished")
    return 0


if __name__ == "__main__":
    sys.exit(main())
