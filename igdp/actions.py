"""SOAP actions on the WANIPConnection:2 service."""

from __future__ import annotations

import html
import ipaddress
import logging
from typing import Any

from igdp.exceptions import DecodeError, UnexpectedStatusError, XmlParseError
from igdp.http import HttpResponse, format_post_request
from igdp.models import (
    WANIP_CONNECTION_2,
    Controlled,
    HTTPConfig,
    IPAddress,
    PortMappingRequest,
    Protocol,
)
from igdp.transport import fetch
from igdp.xml_cursor import Cursor, parse_document

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING = "http://schemas.xmlsoap.org/soap/encoding/"

GET_EXTERNAL_IP_ADDRESS = "GetExternalIPAddress"
ADD_ANY_PORT_MAPPING = "AddAnyPortMapping"
DELETE_PORT_MAPPING = "DeletePortMapping"


def build_soap_envelope(action: str, arguments: dict[str, str]) -> str:
    """Build a SOAP 1.1 request body for ``action``.

    Args:
        action: Action name (e.g. "AddAnyPortMapping")
        arguments: Argument names and values, in wire order

    Returns:
        SOAP envelope XML

    """
    lines = []
    for name, value in arguments.items():
        if value:
            lines.append(f"      <u:{name}>{html.escape(value, quote=False)}</u:{name}>")
        else:
            lines.append(f"      <u:{name}/>")
    if lines:
        action_xml = (
            f'    <u:{action} xmlns:u="{WANIP_CONNECTION_2}">\n'
            + "\n".join(lines)
            + f"\n    </u:{action}>"
        )
    else:
        action_xml = f'    <u:{action} xmlns:u="{WANIP_CONNECTION_2}"/>'

    return f"""<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" s:encodingStyle="{SOAP_ENCODING}">
  <s:Body>
{action_xml}
  </s:Body>
</s:Envelope>
"""


def format_action_request(controlled: Controlled, action: str, envelope: str) -> bytes:
    """Wrap ``envelope`` in an HTTP POST to the control URL."""
    return format_post_request(
        controlled.address,
        controlled.target,
        envelope.encode("utf-8"),
        {
            "Content-Type": "text/xml",
            "SOAPAction": f'"{WANIP_CONNECTION_2}#{action}"',
        },
    )


def port_mapping_arguments(request: PortMappingRequest) -> dict[str, str]:
    """AddAnyPortMapping arguments for ``request``."""
    return {
        "NewRemoteHost": "",
        "NewExternalPort": str(request.external_port),
        "NewProtocol": request.protocol.value,
        "NewInternalPort": str(request.internal_port),
        "NewInternalClient": str(request.internal_client),
        "NewEnabled": "1",
        "NewPortMappingDescription": request.description,
        "NewLeaseDuration": str(request.lease_duration),
    }


def _soap_fault_details(body: bytes) -> dict[str, Any]:
    """Best-effort extraction of SOAP fault information for error reports."""
    try:
        document = parse_document(body.decode("utf-8"))
    except (UnicodeDecodeError, XmlParseError):
        return {}
    fault = document.descend("Envelope").descend("Body").descend("Fault")
    if not fault.exists:
        return {}
    upnp_error = fault.descend("detail").descend("UPnPError")
    details = {
        "fault_code": fault.descend("faultcode").text(),
        "fault_string": fault.descend("faultstring").text(),
        "upnp_error_code": upnp_error.descend("errorCode").text(),
        "upnp_error_description": upnp_error.descend("errorDescription").text(),
    }
    return {key: value.strip() for key, value in details.items() if value}


def parse_action_response(action: str, response: HttpResponse, body: bytes) -> Cursor:
    """Check the status of an action response and locate ``<action>Response``.

    Raises:
        UnexpectedStatusError: If the status is not 200
        DecodeError: If the body is not UTF-8 or not well-formed XML

    """
    if response.status != 200:
        details = _soap_fault_details(body) if response.status is not None else {}
        logger.debug("%s response code = %s %s", action, response.status, details)
        raise UnexpectedStatusError(response.status, details)
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"error parsing as utf-8: {e}"
        raise DecodeError(msg) from e
    return parse_document(text).descend("Envelope").descend("Body").descend(f"{action}Response")


def extract_external_ip(response: HttpResponse, body: bytes) -> IPAddress | None:
    """Read ``NewExternalIPAddress`` from a GetExternalIPAddress response."""
    result = parse_action_response(GET_EXTERNAL_IP_ADDRESS, response, body)
    text = result.descend("NewExternalIPAddress").text()
    if text is None:
        return None
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        logger.debug("Ignoring unparsable external IP %r", text)
        return None


def extract_reserved_port(response: HttpResponse, body: bytes) -> int | None:
    """Read ``NewReservedPort`` from an AddAnyPortMapping response."""
    result = parse_action_response(ADD_ANY_PORT_MAPPING, response, body)
    text = result.descend("NewReservedPort").text()
    if text is None:
        return None
    text = text.strip()
    if not (text.isascii() and text.isdigit()) or int(text) > 65535:
        logger.debug("Ignoring unparsable reserved port %r", text)
        return None
    return int(text)


async def invoke(
    controlled: Controlled,
    action: str,
    arguments: dict[str, str],
    config: HTTPConfig,
) -> tuple[HttpResponse, bytes]:
    """Send one SOAP action over a fresh connection."""
    request = format_action_request(controlled, action, build_soap_envelope(action, arguments))
    logger.debug("Invoking %s at %s", action, controlled)
    return await fetch(
        controlled.address,
        request,
        timeout=config.request_timeout,
        max_size=config.max_response_size,
    )


async def get_external_ip(controlled: Controlled, config: HTTPConfig) -> IPAddress | None:
    """Ask the gateway for its external IP address."""
    response, body = await invoke(controlled, GET_EXTERNAL_IP_ADDRESS, {}, config)
    external_ip = extract_external_ip(response, body)
    logger.debug("External IP address: %s", external_ip)
    return external_ip


async def add_any_port_mapping(
    controlled: Controlled,
    request: PortMappingRequest,
    config: HTTPConfig,
) -> int | None:
    """Request a mapping to ``request.internal_port``; the gateway picks the external port."""
    response, body = await invoke(
        controlled,
        ADD_ANY_PORT_MAPPING,
        port_mapping_arguments(request),
        config,
    )
    port = extract_reserved_port(response, body)
    logger.debug("External port: %s", port)
    return port


async def delete_port_mapping(
    controlled: Controlled,
    protocol: Protocol,
    external_port: int,
    config: HTTPConfig,
) -> None:
    """Remove the mapping of ``external_port``."""
    arguments = {
        "NewRemoteHost": "",
        "NewExternalPort": str(external_port),
        "NewProtocol": protocol.value,
    }
    response, body = await invoke(controlled, DELETE_PORT_MAPPING, arguments, config)
    parse_action_response(DELETE_PORT_MAPPING, response, body)
