import logging
import requests

from fabjoin.common.errors import TransportError, NotFoundError, MalformedInputError
from fabjoin.cli.output import print_cli


logger = logging.getLogger(__name__)


class RemoteResourceResolver:
    """Reads resource collections from the control plane REST API.

    Every call blocks and any transport problem is raised as TransportError,
    nothing is retried.
    """

    headers = {"Content-Type": "application/json"}

    def __init__(self, apikey, chooser, session=None):
        self.chooser = chooser
        self.session = session or requests.Session()
        self.session.headers.update(RemoteResourceResolver.headers)
        self.session.headers["Authorization"] = "Bearer " + apikey

    def send_msg(self, _type, url, message=None):
        try:
            if _type == "post":
                response = self.session.post(url, json=message)
            else:
                response = self.session.get(url)
        except requests.RequestException as exception:
            logger.info("Requests fail - url %s - exception %s", url, exception)
            raise TransportError(f"Request to {url} failed", exception)

        logger.debug("Requests - %s %s - status %s", _type, url, response.status_code)
        return response

    def parse_body(self, url, response):
        try:
            return response.json()
        except ValueError as exception:
            raise TransportError(f"Malformed JSON reply from {url}", exception)

    def check_status(self, url, response):
        try:
            response.raise_for_status()
        except requests.HTTPError as exception:
            raise TransportError(
                f"Request to {url} returned status {response.status_code}", exception
            )

    def fetch_collection(self, url):
        response = self.send_msg("get", url)
        self.check_status(url, response)
        body = self.parse_body(url, response)

        if not isinstance(body, list):
            raise TransportError(f"Expected a JSON array from {url}")

        logger.debug("Fetched %s resources from %s", len(body), url)
        return body

    def fetch_document(self, url):
        response = self.send_msg("get", url)
        self.check_status(url, response)
        body = self.parse_body(url, response)

        if not isinstance(body, dict):
            raise TransportError(f"Expected a JSON object from {url}")
        return body

    def post_document(self, url, payload):
        response = self.send_msg("post", url, payload)

        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = None

            # structured rejections are for the caller to interpret
            if isinstance(body, dict):
                logger.info("Post %s rejected - status %s", url, response.status_code)
                return body

            self.check_status(url, response)

        body = self.parse_body(url, response)
        if not isinstance(body, dict):
            raise TransportError(f"Expected a JSON object from {url}")
        return body

    def select_one(self, collection, label, name_field, preferred=None):
        resource = None

        if preferred:
            for candidate in collection:
                if candidate.get("_id") == preferred:
                    resource = candidate
                    break
            if resource is None:
                raise NotFoundError(f"No {label} found matching id={preferred}")

        elif len(collection) > 1:
            index = self.chooser.select(collection, label, name_field)
            if not isinstance(index, int) or index < 0 or index >= len(collection):
                raise MalformedInputError(
                    f"Selection {index} is out of range for {len(collection)} {label}"
                )
            resource = collection[index]

        elif len(collection) == 1:
            resource = collection[0]

        if resource is None:
            raise NotFoundError(f"No {label} found")

        print_cli(
            f"Selected {label} \"{resource.get(name_field)}\" ({resource.get('_id')})",
            style="normal",
        )
        logger.info("Selected %s %s (%s)", label, resource.get(name_field), resource.get("_id"))
        return resource
