import os
import json
import logging

from fabjoin.common.errors import RejectionError, NotFoundError
from fabjoin.cli.output import print_cli


logger = logging.getLogger(__name__)


ADMIN_USER = "admin"
ADMIN_ENROLLMENT_ID = "admin-local"
ADMIN_TLS_USER = "admin-tls"
ADMIN_TLS_ENROLLMENT_ID = "admin-local-tls"
TLS_PROFILE = "tls"
REGISTRATION_ROLE = "admin"


class Identity:
    def __init__(self, username, certificate, private_key, msp_id):
        self.username = username
        self.certificate = certificate
        self.private_key = private_key
        self.msp_id = msp_id

    def to_dict(self):
        return {
            "credentials": {
                "certificate": self.certificate,
                "privateKey": self.private_key,
            },
            "mspId": self.msp_id,
            "type": "X.509",
            "version": 1,
        }

    @classmethod
    def from_dict(cls, username, data):
        credentials = data.get("credentials", {})
        return cls(
            username,
            credentials.get("certificate"),
            credentials.get("privateKey"),
            data.get("mspId"),
        )


class FileSystemWallet:
    """Identities stored as <username>.id JSON files, one directory per wallet."""

    suffix = ".id"

    def __init__(self, path):
        self.path = path

    def filepath(self, username):
        return os.path.join(self.path, username + FileSystemWallet.suffix)

    def exists(self, username):
        return os.path.isfile(self.filepath(username))

    def get(self, username):
        filepath = self.filepath(username)
        if not os.path.isfile(filepath):
            return None
        with open(filepath, "r") as f:
            data = json.load(f)
        return Identity.from_dict(username, data)

    def put(self, username, identity):
        os.makedirs(self.path, exist_ok=True)
        filepath = self.filepath(username)
        with open(filepath, "w") as f:
            json.dump(identity.to_dict(), f, indent=4)
        os.chmod(filepath, 0o600)
        logger.debug("Identity %s written to %s", username, filepath)

    def list(self):
        if not os.path.isdir(self.path):
            return []
        return sorted(
            name[: -len(FileSystemWallet.suffix)]
            for name in os.listdir(self.path)
            if name.endswith(FileSystemWallet.suffix)
        )


class IdentityEnroller:
    """Registers identities with the membership CA and enrolls them.

    An identity already in the wallet is never registered again, the
    check is made against the wallet files so it holds across runs.
    """

    def __init__(self, resolver, url, topology, wallet, tls_provider, ca_client_factory):
        self.resolver = resolver
        self.url = url
        self.topology = topology
        self.wallet = wallet
        self.tls_provider = tls_provider
        self.ca_client_factory = ca_client_factory

    def register_url(self):
        return f"{self.url}/fabric-ca/{self.topology.ca_id}/register"

    def register(self, username, enrollment_id):
        payload = {
            "registrations": [
                {"enrollmentID": enrollment_id, "role": REGISTRATION_ROLE}
            ]
        }
        result = self.resolver.post_document(self.register_url(), payload)

        registrations = result.get("registrations")
        if not registrations:
            error = result.get("errorMessage")
            if error:
                raise RejectionError(
                    f"Attempt to register user with Fabric CA failed: {error}"
                )
            raise RejectionError(
                f"Fabric CA returned no registration for {enrollment_id}"
            )

        secret = registrations[0].get("enrollmentSecret")
        if not secret:
            raise RejectionError(
                f"Fabric CA registration for {enrollment_id} carries no enrollment secret"
            )

        print_cli(
            f"Successfully registered user \"{username}\" using enrollmentId \"{enrollment_id}\"",
            style="normal",
        )
        return secret

    def enroll(self, username, enrollment_id, secret, profile=None):
        trust_anchor = self.tls_provider.get_trust_anchor(self.topology.ca_url)
        ca_client = self.ca_client_factory(self.topology.ca_url, trust_anchor)
        certificate, private_key = ca_client.enroll(enrollment_id, secret, profile)

        identity = Identity(username, certificate, private_key, self.topology.membership_id)
        self.wallet.put(username, identity)
        print_cli(
            f"Successfully enrolled user \"{username}\" and imported it into the wallet",
            style="normal",
        )
        return identity

    def ensure_identity(self, username, enrollment_id, profile=None):
        identity = self.wallet.get(username)
        if identity is not None:
            logger.info("User %s already exists in the wallet", username)
            return identity

        logger.info("User %s does not exist. Will register and enroll", username)
        secret = self.register(username, enrollment_id)
        return self.enroll(username, enrollment_id, secret, profile)

    def ensure_user(self, username):
        self.ensure_identity(ADMIN_USER, ADMIN_ENROLLMENT_ID)
        self.ensure_identity(ADMIN_TLS_USER, ADMIN_TLS_ENROLLMENT_ID, TLS_PROFILE)
        return self.ensure_identity(username, username)

    def export_key_and_cert(self, username):
        identity = self.wallet.get(username)
        if identity is None:
            raise NotFoundError(f"User {username} not found in the wallet")

        cert_file = os.path.join(self.wallet.path, username + ".crt")
        key_file = os.path.join(self.wallet.path, username + ".key")

        with open(cert_file, "w") as f:
            f.write(identity.certificate)
        with open(key_file, "w") as f:
            f.write(identity.private_key)
        os.chmod(key_file, 0o600)

        return key_file, cert_file

    def get_ca_cert(self):
        url = f"{self.url}/fabric-ca/{self.topology.ca_id}/cacert"
        reply = self.resolver.fetch_document(url)
        cert = reply.get("cert")
        if not cert:
            raise NotFoundError(f"No CA certificate returned for {self.topology.ca_id}")
        return cert
