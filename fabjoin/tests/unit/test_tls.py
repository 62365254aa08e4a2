import os
import math
import base64
import logging
import tempfile
import unittest

from fabjoin.common.errors import TransportError
from fabjoin.network.tls import (
    TLSMaterialProvider,
    normalize_pem,
    der_to_pem,
    chain_to_pem,
    check_hostname,
    fetch_certificate_chain,
)
from fabjoin.tests.unit.utils import CountingFetcher, LocalPKI, LocalCAServer


logger = logging.getLogger(__name__)


class TestPEM(unittest.TestCase):
    def test_normalize_pem(self):
        for length in (1, 63, 64, 65, 128, 1000):
            encoded = "A" * length
            output = normalize_pem(encoded)
            lines = output.split("\n")

            assert output.endswith("\n")
            assert lines[-1] == ""
            lines = lines[:-1]
            assert len(lines) == math.ceil(length / 64)
            assert all(len(line) <= 64 for line in lines)
            assert "".join(lines) == encoded

    def test_normalize_empty(self):
        assert normalize_pem("") == ""

    def test_der_to_pem(self):
        der = os.urandom(200)
        pem = der_to_pem(der)
        lines = pem.strip().split("\n")

        assert lines[0] == "-----BEGIN CERTIFICATE-----"
        assert lines[-1] == "-----END CERTIFICATE-----"
        assert base64.b64decode("".join(lines[1:-1])) == der

    def test_chain_to_pem(self):
        pem = chain_to_pem([b"one", b"two"])
        assert pem.count("-----BEGIN CERTIFICATE-----") == 2
        assert pem.count("-----END CERTIFICATE-----") == 2


class TestTrustAnchor(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.datadir = os.path.join(self.tmp.name, "e1")

    def tearDown(self):
        self.tmp.cleanup()

    def test_endpoint(self):
        provider = TLSMaterialProvider(self.datadir, fetcher=CountingFetcher())
        assert provider.endpoint("https://ca1.example.io") == ("ca1.example.io", 443)
        assert provider.endpoint("https://ca1.example.io:8443/x") == ("ca1.example.io", 8443)

        with self.assertRaises(TransportError):
            provider.endpoint("not a url")

    def test_written_once(self):
        fetcher = CountingFetcher()
        provider = TLSMaterialProvider(self.datadir, fetcher=fetcher)

        path = provider.get_trust_anchor("https://ca1.example.io")
        again = provider.get_trust_anchor("https://ca1.example.io")

        assert path == again == os.path.join(self.datadir, "ca_tls.pem")
        assert fetcher.calls == [("ca1.example.io", 443)]

        with open(path) as f:
            content = f.read()
        assert content == chain_to_pem(fetcher.chain)
        assert provider.get_trust_anchor_pem("https://ca1.example.io") == content

    def test_handshake_failure(self):
        def fetcher(host, port):
            raise ConnectionRefusedError("refused")

        provider = TLSMaterialProvider(self.datadir, fetcher=fetcher)
        with self.assertRaises(TransportError):
            provider.get_trust_anchor("https://ca1.example.io")
        assert not os.path.exists(os.path.join(self.datadir, "ca_tls.pem"))

    def test_empty_chain(self):
        provider = TLSMaterialProvider(self.datadir, fetcher=CountingFetcher(chain=[]))
        with self.assertRaises(TransportError):
            provider.get_trust_anchor("https://ca1.example.io")


class TestChainHarvest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.pki = LocalPKI(os.path.join(self.tmp.name, "pki"))
        self.server = LocalCAServer(self.pki).start()

    def tearDown(self):
        self.server.stop()
        self.tmp.cleanup()

    def test_presented_chain_in_order(self):
        chain = fetch_certificate_chain("localhost", self.server.port, cafile=self.pki.root_file)
        assert chain == self.pki.presented_chain()

    def test_anchor_file_holds_whole_chain(self):
        def fetcher(host, port):
            return fetch_certificate_chain(host, port, cafile=self.pki.root_file)

        provider = TLSMaterialProvider(os.path.join(self.tmp.name, "e1"), fetcher=fetcher)
        path = provider.get_trust_anchor(self.server.url)

        with open(path) as f:
            content = f.read()
        assert content.count("-----BEGIN CERTIFICATE-----") == 2
        assert content == chain_to_pem(self.pki.presented_chain())

    def test_untrusted_server(self):
        other = LocalPKI(os.path.join(self.tmp.name, "other"))
        with self.assertRaises(TransportError):
            fetch_certificate_chain("localhost", self.server.port, cafile=other.root_file)

    def test_check_hostname(self):
        leaf = self.pki.presented_chain()[0]
        assert check_hostname(leaf, "localhost")
        assert check_hostname(leaf, "127.0.0.1")
        with self.assertRaises(TransportError):
            check_hostname(leaf, "ca1.example.io")


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
