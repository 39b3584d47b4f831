"""Resolve the WANIPConnection:2 control URL from a device description."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from igdp.exceptions import DecodeError, MissingControlUrlError, UnexpectedStatusError
from igdp.http import HttpResponse, format_get_request
from igdp.models import WANIP_CONNECTION_2, Controlled, Discovered, HTTPConfig
from igdp.transport import fetch
from igdp.xml_cursor import parse_document

logger = logging.getLogger(__name__)


def find_control_path(description: str) -> str:
    """Return the ``controlURL`` of the first WANIPConnection:2 service.

    Every ``service`` element is considered in document order; its
    ``serviceType`` is compared case-insensitively. Matching services
    without a control URL are skipped.

    Raises:
        XmlParseError: If ``description`` is not well-formed
        MissingControlUrlError: If no matching service carries a control URL

    """
    document = parse_document(description)
    wanted = WANIP_CONNECTION_2.lower()
    for service in document.descendants("service"):
        service_type = (service.descend("serviceType").text() or "").strip()
        if service_type.lower() != wanted:
            continue
        control_url = (service.descend("controlURL").text() or "").strip()
        if control_url:
            return control_url
    msg = "missing control url"
    raise MissingControlUrlError(msg)


def extract_control_url(discovered: Discovered, response: HttpResponse, body: bytes) -> Controlled:
    """Build the control state from a device description response.

    The control path replaces the path of the discovered URL; scheme, host
    and port are kept, and so is the resolved address.
    """
    if response.status != 200:
        logger.debug("Device description response code = %s", response.status)
        raise UnexpectedStatusError(response.status)
    try:
        description = body.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"error parsing as utf-8: {e}"
        raise DecodeError(msg) from e

    control = urlsplit(find_control_path(description))
    url = discovered.url._replace(
        path=control.path if control.path.startswith("/") else f"/{control.path}",
        query=control.query,
        fragment="",
    )
    return Controlled(url=url, address=discovered.address)


async def resolve_control(discovered: Discovered, config: HTTPConfig) -> Controlled:
    """Fetch the device description and resolve the control URL."""
    request = format_get_request(discovered.address, discovered.target)
    response, body = await fetch(
        discovered.address,
        request,
        timeout=config.request_timeout,
        max_size=config.max_response_size,
    )
    controlled = extract_control_url(discovered, response, body)
    logger.debug("Extracted control url %s", controlled)
    return controlled
