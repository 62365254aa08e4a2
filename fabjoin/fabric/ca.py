import ssl
import base64
import logging

import requests
from requests.adapters import HTTPAdapter
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from fabjoin.common.errors import TransportError, RejectionError


logger = logging.getLogger(__name__)


ENROLL_PATH = "/api/v1/enroll"


def generate_key():
    return ec.generate_private_key(ec.SECP256R1())


def create_csr(private_key, enrollment_id):
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, enrollment_id)])
    csr = x509.CertificateSigningRequestBuilder().subject_name(subject).sign(
        private_key, hashes.SHA256()
    )
    return csr.public_bytes(serialization.Encoding.PEM).decode()


def private_key_pem(private_key):
    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return key_pem.decode()


class TrustAnchorAdapter(HTTPAdapter):
    """Verifies servers against the harvested anchor file.

    The anchor may hold the leaf or an intermediate instead of a self-signed
    root, so partial chains are accepted.
    """

    def __init__(self, trust_anchor, **kwargs):
        self.trust_anchor = trust_anchor
        super().__init__(**kwargs)

    def ssl_context(self):
        context = ssl.create_default_context(cafile=self.trust_anchor)
        context.verify_flags |= ssl.VERIFY_X509_PARTIAL_CHAIN
        return context

    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_context"] = self.ssl_context()
        return super().init_poolmanager(*args, **kwargs)


class CAClient:
    """Enrollment against a Fabric CA server.

    A fresh EC P-256 key pair is generated locally, only the CSR leaves
    the process. The CA endpoint is trusted through the harvested anchor.
    """

    def __init__(self, ca_url, trust_anchor, session=None):
        self.ca_url = ca_url.rstrip("/")
        self.trust_anchor = trust_anchor
        self.session = session or requests.Session()
        self.session.mount("https://", TrustAnchorAdapter(trust_anchor))

    def enroll(self, enrollment_id, secret, profile=None):
        key = generate_key()
        csr_pem = create_csr(key, enrollment_id)

        body = {"certificate_request": csr_pem}
        if profile:
            body["profile"] = profile

        url = self.ca_url + ENROLL_PATH
        logger.info("Enrolling %s at %s (profile=%s)", enrollment_id, url, profile or "default")

        try:
            response = self.session.post(
                url,
                json=body,
                auth=(enrollment_id, secret),
            )
        except requests.RequestException as e:
            raise TransportError(f"Enrollment request to {url} failed", e)

        try:
            reply = response.json()
        except ValueError as e:
            raise TransportError(
                f"Malformed enrollment reply from {url} (status {response.status_code})", e
            )

        if not reply.get("success"):
            errors = reply.get("errors") or []
            messages = [err.get("message", str(err)) for err in errors if err]
            raise RejectionError(
                f"Enrollment of {enrollment_id} rejected: {'; '.join(messages) or response.status_code}"
            )

        cert_b64 = reply.get("result", {}).get("Cert")
        if not cert_b64:
            raise TransportError(f"Enrollment reply from {url} carries no certificate")

        cert_pem = base64.b64decode(cert_b64).decode()
        logger.debug("Enrollment of %s returned certificate", enrollment_id)
        return cert_pem, private_key_pem(key)
