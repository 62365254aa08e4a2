import os
import logging
import argparse
import yaml

logger = logging.getLogger(__name__)


DEFAULT_URL = "https://console.kaleido.io/api/v1"
DEFAULT_USERNAME = "user01"
DEFAULT_CONTRACT = "asset_transfer"
DEFAULT_ROOT = os.path.join("~", "fabjoin")

# setting name -> environment variable
ENV_VARS = {
    "url": "KALEIDO_URL",
    "apikey": "APIKEY",
    "username": "USER_ID",
    "contract": "CCNAME",
    "root": "FABJOIN_HOME",
    "consortium": "CONSORTIUM",
    "environment": "ENVIRONMENT",
    "membership": "SUBMITTER",
}

DEFAULTS = {
    "url": DEFAULT_URL,
    "apikey": None,
    "username": DEFAULT_USERNAME,
    "contract": DEFAULT_CONTRACT,
    "root": DEFAULT_ROOT,
    "consortium": None,
    "environment": None,
    "membership": None,
}


class Config:
    """Process settings, built once at start and handed to every component.

    Values are merged from the command line, an optional YAML settings file,
    the process environment and the defaults, in that order of precedence.
    """

    def __init__(self):
        self._info = None
        self.cfg = {}
        self.parser = argparse.ArgumentParser(
            description="fabjoin - join a Fabric network from its control plane"
        )

    def get(self):
        return self._info

    def get_cfg_attrib(self, name):
        try:
            value = getattr(self.cfg, name)
        except AttributeError as e:
            logger.debug(f"Argparser attrib name not found - exception {e}")
            value = None
        return value

    def load(self, filename):
        data = {}
        with open(filename, "r") as f:
            data = yaml.load(f, Loader=yaml.SafeLoader)
        return data or {}

    def parse(self, argv=None, environ=None):
        self.parser.add_argument(
            "--url", type=str, help="Control plane API base URL (default: None)"
        )
        self.parser.add_argument(
            "--apikey", type=str, help="Control plane API key (default: None)"
        )
        self.parser.add_argument(
            "--user",
            dest="username",
            type=str,
            help="Operator username to enroll (default: None)",
        )
        self.parser.add_argument(
            "--contract", type=str, help="Deployed contract name (default: None)"
        )
        self.parser.add_argument(
            "--root", type=str, help="Root directory for local material (default: None)"
        )
        self.parser.add_argument(
            "--consortium", type=str, help="Consortium id to select (default: None)"
        )
        self.parser.add_argument(
            "--environment", type=str, help="Environment id to select (default: None)"
        )
        self.parser.add_argument(
            "--membership", type=str, help="Membership id to select (default: None)"
        )
        self.parser.add_argument(
            "--cfg", type=str, help="YAML settings file (default: None)"
        )
        self.parser.add_argument(
            "--debug",
            action="store_true",
            help="Define the app logging mode (default: False)",
        )

        self.cfg, _ = self.parser.parse_known_args(argv)

        environ = os.environ if environ is None else environ
        info = self.check(environ)
        if info:
            self._info = info
            return True

        return False

    def cfg_args(self):
        cfgFile = self.cfg.cfg
        if cfgFile:
            cfg_data = self.load(cfgFile)
            return cfg_data
        return {}

    def merge(self, environ):
        file_data = self.cfg_args()
        info = {}

        for name, default in DEFAULTS.items():
            value = self.get_cfg_attrib(name)
            if value is None:
                value = file_data.get(name)
            if value is None:
                value = environ.get(ENV_VARS[name]) or None
            if value is None:
                value = default
            info[name] = value

        info["root"] = os.path.abspath(os.path.expanduser(info["root"]))
        info["url"] = info["url"].rstrip("/")
        info["debug"] = bool(self.cfg.debug or file_data.get("debug", False))
        return info

    def check(self, environ):
        info = self.merge(environ)

        if not info.get("apikey"):
            print(
                "Must set environment variable \"%s\" (or --apikey) to proceed"
                % ENV_VARS["apikey"]
            )
            return None

        return info
