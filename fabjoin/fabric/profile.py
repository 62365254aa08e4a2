import os
import json
import logging
import binascii
from urllib.parse import urlsplit

import yaml

from fabjoin.common.errors import MalformedInputError, NotFoundError, ProfileError


logger = logging.getLogger(__name__)


PROFILE_VERSION = "1.1.0"
PROFILE_NAME = "fabjoin-connection-profile"
PROFILE_FILE = "ccp.yaml"
NODE_SCHEME = "grpcs"
NODE_PORT = 443
ENDORSER_TIMEOUT = "3000"
ORG_CRYPTO_PATH = "/tmp/msp"
CHANNEL_PEER_ROLES = ("endorsingPeer", "chaincodeQuery", "ledgerQuery", "eventSource")


def rewrite_node_url(url):
    """Re-hosts an advertised node address under grpcs on port 443.

    http://host:port/path -> grpcs://host:443
    """
    address = url
    for scheme in ("http://", "https://"):
        if address.startswith(scheme):
            address = address[len(scheme) :]
            break

    host = urlsplit("//" + address).hostname
    if not host:
        raise MalformedInputError(f"Cannot extract a host from node url {url}")
    return f"{NODE_SCHEME}://{host}:{NODE_PORT}"


def decode_node_identity(node):
    """Extracts the orgCA PEM out of the hex encoded node_identity_data."""
    node_id = node.get("_id")
    try:
        decoded = binascii.unhexlify(node.get("node_identity_data", ""))
        identity = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedInputError(f"Failed to parse node info for node {node_id}", e)

    org_ca = identity.get("orgCA") if isinstance(identity, dict) else None
    if not org_ca:
        raise MalformedInputError(f"Node info for node {node_id} carries no orgCA")
    return org_ca


def node_url(node):
    role = node.get("role")
    url = node.get("urls", {}).get(role)
    if not url:
        raise MalformedInputError(f"Node {node.get('_id')} advertises no {role} url")
    return url


def build_node(node, key_file, cert_file):
    return {
        "url": rewrite_node_url(node_url(node)),
        "tlsCACerts": {
            "pem": decode_node_identity(node),
        },
        "grpcOptions": {
            "clientCertFile": cert_file,
            "clientKeyFile": key_file,
        },
    }


def build_nodes(nodes, key_file, cert_file):
    peers, orderers = {}, {}

    for node in nodes:
        role = node.get("role")
        if role == "peer":
            peers[node.get("_id")] = build_node(node, key_file, cert_file)
        elif role == "orderer":
            orderers[node.get("_id")] = build_node(node, key_file, cert_file)
        else:
            logger.debug("Skipping node %s with role %s", node.get("_id"), role)

    if not orderers:
        raise NotFoundError("No orderers found for the membership")
    if not peers:
        raise NotFoundError("No peers found for the membership")

    return peers, orderers


def build_client(membership_id):
    return {
        "organization": membership_id,
        "connection": {
            "timeout": {
                "peer": {
                    "endorser": ENDORSER_TIMEOUT,
                },
            },
        },
    }


def build_certificate_authorities(ca, ca_tls_path):
    return {
        ca.get("membership_id"): {
            "url": ca.get("urls", {}).get("http"),
            "tlsCACerts": {
                "path": ca_tls_path,
            },
        }
    }


def build_organizations(membership_id, ca, peers, orderers):
    # one representative of each node kind, the channel section lists them all
    return {
        membership_id: {
            "mspid": membership_id,
            "cryptoPath": ORG_CRYPTO_PATH,
            "peers": [next(iter(peers))],
            "orderers": [next(iter(orderers))],
            "certificateAuthorities": [ca.get("membership_id")],
        }
    }


def build_channels(channel_name, peers, orderers):
    channel_peers = {
        peer_id: {role: True for role in CHANNEL_PEER_ROLES} for peer_id in peers
    }
    return {
        channel_name: {
            "orderers": list(orderers),
            "peers": channel_peers,
        }
    }


def build_profile(topology, key_file, cert_file, ca_tls_path):
    peers, orderers = build_nodes(topology.member_nodes(), key_file, cert_file)

    profile = {
        "version": PROFILE_VERSION,
        "name": PROFILE_NAME,
        "client": build_client(topology.membership_id),
        "certificateAuthorities": build_certificate_authorities(topology.ca, ca_tls_path),
        "peers": peers,
        "orderers": orderers,
        "organizations": build_organizations(
            topology.membership_id, topology.ca, peers, orderers
        ),
        "channels": build_channels(topology.channel_name, peers, orderers),
    }

    check_profile(profile)
    return profile


def check_profile(profile):
    peers = profile.get("peers", {})
    orderers = profile.get("orderers", {})

    for section in ("certificateAuthorities", "organizations", "channels"):
        if len(profile.get(section, {})) != 1:
            raise ProfileError(f"Profile must hold exactly one entry in {section}")

    for org_name, org in profile["organizations"].items():
        for peer_id in org.get("peers", []):
            if peer_id not in peers:
                raise ProfileError(f"Organization {org_name} references unknown peer {peer_id}")
        for orderer_id in org.get("orderers", []):
            if orderer_id not in orderers:
                raise ProfileError(
                    f"Organization {org_name} references unknown orderer {orderer_id}"
                )
        for ca_id in org.get("certificateAuthorities", []):
            if ca_id not in profile["certificateAuthorities"]:
                raise ProfileError(f"Organization {org_name} references unknown CA {ca_id}")

    for channel_name, channel in profile["channels"].items():
        for peer_id in channel.get("peers", {}):
            if peer_id not in peers:
                raise ProfileError(f"Channel {channel_name} references unknown peer {peer_id}")
        for orderer_id in channel.get("orderers", []):
            if orderer_id not in orderers:
                raise ProfileError(
                    f"Channel {channel_name} references unknown orderer {orderer_id}"
                )

    return True


class ProfileDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        return True


def _represent_str(dumper, data):
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


ProfileDumper.add_representer(str, _represent_str)


def dump_profile(profile):
    return yaml.dump(
        profile,
        Dumper=ProfileDumper,
        indent=4,
        default_flow_style=False,
        explicit_start=False,
        sort_keys=False,
    )


def profile_path(root, environment_id):
    return os.path.join(root, environment_id, PROFILE_FILE)


def write_profile(profile, filepath):
    dirname = os.path.dirname(filepath)
    if dirname:
        os.makedirs(dirname, exist_ok=True)

    with open(filepath, "w") as f:
        f.write(dump_profile(profile))

    logger.info("Connection profile written to %s", filepath)
    return filepath


def read_profile(filepath):
    with open(filepath, "r") as f:
        return yaml.load(f, Loader=yaml.SafeLoader)


class ConnectionProfileBuilder:
    """Assembles and persists the connection profile of one environment."""

    def __init__(self, root, enroller, tls_provider):
        self.root = root
        self.enroller = enroller
        self.tls_provider = tls_provider

    def build(self, topology, username):
        key_file, cert_file = self.enroller.export_key_and_cert(username)
        ca_tls_path = self.tls_provider.get_trust_anchor(topology.ca_url)
        return build_profile(topology, key_file, cert_file, ca_tls_path)

    def write(self, topology, profile):
        filepath = profile_path(self.root, topology.environment_id)
        return write_profile(profile, filepath)
