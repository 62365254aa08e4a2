import os
import base64
import socket
import logging
import ipaddress
from urllib.parse import urlsplit

from OpenSSL import SSL
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from fabjoin.common.errors import TransportError


logger = logging.getLogger(__name__)


PEM_LINE_LENGTH = 64
PEM_BEGIN = "-----BEGIN CERTIFICATE-----\n"
PEM_END = "-----END CERTIFICATE-----\n"
TRUST_ANCHOR_FILE = "ca_tls.pem"


def normalize_pem(encoded):
    """Breaks a single-line base64 body into PEM lines of 64 characters."""
    output = ""
    for i in range(0, len(encoded), PEM_LINE_LENGTH):
        output += encoded[i : i + PEM_LINE_LENGTH]
        output += "\n"
    return output


def der_to_pem(der):
    encoded = base64.b64encode(der).decode("ascii")
    return PEM_BEGIN + normalize_pem(encoded) + PEM_END


def chain_to_pem(chain):
    return "".join(der_to_pem(der) for der in chain)


def is_ip_address(host):
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def check_hostname(der, host):
    """Matches host against the subjectAltName entries of a DER certificate."""
    cert = x509.load_der_x509_certificate(der)
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        raise TransportError(f"Certificate of {host} carries no subjectAltName")

    if is_ip_address(host):
        if ipaddress.ip_address(host) in san.get_values_for_type(x509.IPAddress):
            return True
    else:
        hostname = host.lower()
        for name in san.get_values_for_type(x509.DNSName):
            name = name.lower()
            if name == hostname:
                return True
            # single label wildcard only
            if name.startswith("*.") and "." in hostname and hostname.split(".", 1)[1] == name[2:]:
                return True

    raise TransportError(f"Certificate presented by {host} does not match the host name")


def fetch_certificate_chain(host, port, cafile=None):
    """Returns the DER certificates the server presents during the handshake.

    The chain is verified against cafile, or the system trust store, and
    kept in the order the server sent it. Only the handshake happens, no
    application data is exchanged.
    """
    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_verify(SSL.VERIFY_PEER)
    if cafile:
        context.load_verify_locations(cafile)
    else:
        context.set_default_verify_paths()

    with socket.create_connection((host, port)) as sock:
        connection = SSL.Connection(context, sock)
        if not is_ip_address(host):
            connection.set_tlsext_host_name(host.encode("idna"))
        connection.set_connect_state()
        try:
            connection.do_handshake()
        except SSL.Error as e:
            raise TransportError(f"TLS handshake with {host}:{port} failed", e)

        chain = connection.get_peer_cert_chain() or []
        ders = [
            cert.to_cryptography().public_bytes(serialization.Encoding.DER)
            for cert in chain
        ]

    if ders:
        check_hostname(ders[0], host)
    return ders


class TLSMaterialProvider:
    """Trust-on-first-use anchor for the CA of the ledger network.

    The certificate chain presented by the control plane endpoint is taken
    as the root of trust, written once per environment and memoized.
    """

    def __init__(self, datadir, fetcher=None):
        self.datadir = datadir
        self.fetcher = fetcher or fetch_certificate_chain
        self._path = None
        self._pem = None

    def endpoint(self, ca_http_url):
        parts = urlsplit(ca_http_url)
        if not parts.hostname:
            raise TransportError(f"Cannot extract a host from CA url {ca_http_url}")
        return parts.hostname, parts.port or 443

    def get_trust_anchor(self, ca_http_url):
        if self._path is not None:
            return self._path

        host, port = self.endpoint(ca_http_url)
        logger.info("Harvesting TLS certificate chain of %s:%s", host, port)

        try:
            chain = self.fetcher(host, port)
        except OSError as e:
            raise TransportError(f"TLS handshake with {host}:{port} failed", e)

        if not chain:
            raise TransportError(f"No certificate presented by {host}:{port}")

        pem = chain_to_pem(chain)
        filename = os.path.join(self.datadir, TRUST_ANCHOR_FILE)
        os.makedirs(self.datadir, exist_ok=True)
        with open(filename, "w") as f:
            f.write(pem)

        logger.debug("Saved %s certificate(s) into %s", len(chain), filename)
        self._pem = pem
        self._path = filename
        return self._path

    def get_trust_anchor_pem(self, ca_http_url):
        self.get_trust_anchor(ca_http_url)
        return self._pem
