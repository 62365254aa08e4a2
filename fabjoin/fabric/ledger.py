import os
import json
import shutil
import logging
import subprocess

import yaml

from fabjoin.common.errors import LedgerError


logger = logging.getLogger(__name__)


PEER_BINARY = "peer"


def core_config(msp_id):
    return {
        "peer": {
            "localMspId": msp_id,
            "mspConfigPath": "msp",
            "tls": {"enabled": True, "clientAuthRequired": True},
            "BCCSP": {
                "Default": "SW",
                "SW": {"Hash": "SHA2", "Security": 256},
            },
        },
    }


def strip_scheme(url):
    return url.split("://", 1)[-1]


class ContractGateway:
    """Submits and evaluates contract transactions through the peer CLI.

    The connection profile provides the endpoints and TLS roots, the wallet
    identity signs and authenticates the requests.
    """

    def __init__(self, profile, identity, workdir, channel, contract, binary=PEER_BINARY):
        self.profile = profile
        self.identity = identity
        self.workdir = workdir
        self.channel = channel
        self.contract = contract
        self.binary = binary
        self.organization = profile.get("client", {}).get("organization")
        self._files = None

    def _write(self, filepath, content, mode=None):
        os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "w") as f:
            f.write(content)
        if mode:
            os.chmod(filepath, mode)
        return filepath

    def prepare(self, ca_cert):
        """Lays out the MSP folder, TLS roots and core.yaml under workdir."""
        if self._files:
            return self._files

        msp_dir = os.path.join(self.workdir, "msp")
        files = {
            "msp": msp_dir,
            "cert": self._write(os.path.join(msp_dir, "signcerts", "cert.pem"), self.identity.certificate),
            "key": self._write(os.path.join(msp_dir, "keystore", "key_sk"), self.identity.private_key, 0o600),
            "cacert": self._write(os.path.join(msp_dir, "cacerts", "ca.pem"), ca_cert),
            "tlscacert": self._write(os.path.join(msp_dir, "tlscacerts", "ca.pem"), ca_cert),
            "nodes": {},
        }

        for section in ("peers", "orderers"):
            for node_id, node in self.profile.get(section, {}).items():
                pem = node.get("tlsCACerts", {}).get("pem", "")
                files["nodes"][node_id] = self._write(
                    os.path.join(self.workdir, "nodeMSPs", node_id, "ca.pem"), pem
                )

        core_path = os.path.join(self.workdir, "core.yaml")
        with open(core_path, "w") as f:
            yaml.safe_dump(core_config(self.organization), f, default_flow_style=False)

        self._files = files
        return files

    def environment(self):
        files = self._files
        env = {
            "PATH": os.environ.get("PATH", ""),
            "FABRIC_CFG_PATH": self.workdir,
            "CORE_PEER_LOCALMSPID": self.organization,
            "CORE_PEER_MSPCONFIGPATH": files["msp"],
            "CORE_PEER_TLS_ENABLED": "true",
            "CORE_PEER_TLS_CLIENTAUTHREQUIRED": "true",
            "CORE_PEER_TLS_CLIENTCERT_FILE": files["cert"],
            "CORE_PEER_TLS_CLIENTKEY_FILE": files["key"],
        }
        return env

    def organization_entry(self):
        return self.profile.get("organizations", {}).get(self.organization, {})

    def peer_args(self):
        args = []
        peers = self.profile.get("peers", {})
        for peer_id in self.organization_entry().get("peers", []):
            args.extend(
                [
                    "--peerAddresses",
                    strip_scheme(peers[peer_id]["url"]),
                    "--tlsRootCertFiles",
                    self._files["nodes"][peer_id],
                ]
            )
        return args

    def invoke_args(self, function, *params, is_init=False):
        orderer_id = self.organization_entry().get("orderers", [None])[0]
        orderer = self.profile.get("orderers", {}).get(orderer_id)
        if not orderer:
            raise LedgerError(f"No orderer available for organization {self.organization}")

        args = [
            self.binary,
            "chaincode",
            "invoke",
            "--channelID",
            self.channel,
            "--name",
            self.contract,
            "-o",
            strip_scheme(orderer["url"]),
            "--tls",
            "--clientauth",
            "--cafile",
            self._files["nodes"][orderer_id],
            "--keyfile",
            self._files["key"],
            "--certfile",
            self._files["cert"],
        ]
        args.extend(self.peer_args())
        if is_init:
            args.append("--isInit")
        args.extend(["-c", json.dumps({"Args": [function] + list(params)})])
        return args

    def query_args(self, function, *params):
        args = [
            self.binary,
            "chaincode",
            "query",
            "--channelID",
            self.channel,
            "--name",
            self.contract,
            "--tls",
        ]
        args.extend(self.peer_args()[:4])
        args.extend(["-c", json.dumps({"Args": [function] + list(params)})])
        return args

    def _call(self, args):
        if shutil.which(self.binary, path=os.environ.get("PATH")) is None:
            raise LedgerError(f"Must add \"{self.binary}\" command to system path")

        logger.debug("Calling %s", args)
        try:
            p = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.workdir,
                env=self.environment(),
            )
            logger.debug("process started %s", p.pid)
            out, err = p.communicate()
            return_code = p.returncode
        except OSError as e:
            raise LedgerError(f"Could not run {self.binary}", e)

        logger.debug("Return code %s - output %s - error %s", return_code, out, err)
        if return_code != 0:
            raise LedgerError(
                f"{self.binary} exited with code {return_code}: {err.decode(errors='replace').strip()}"
            )
        return (out or err).decode(errors="replace").strip()

    def init_ledger(self):
        logger.info("Submit Transaction: InitLedger creates the initial set of assets on the ledger")
        return self._call(self.invoke_args("InitLedger", is_init=True))

    def create_asset(self, asset_id):
        logger.info("Submit Transaction: CreateAsset %s", asset_id)
        return self._call(
            self.invoke_args("CreateAsset", asset_id, "yellow", "5", "Tom", "1300")
        )

    def get_all_assets(self):
        logger.info("Evaluate Transaction: GetAllAssets")
        return self._call(self.query_args("GetAllAssets"))
