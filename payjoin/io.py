"""Fetching OHTTP keys from a payjoin directory through an OHTTP relay."""

from __future__ import annotations

from http import HTTPStatus

import httpx

from payjoin.ohttp import OhttpKeys
from payjoin.urls import UrlError, into_url, join_url

__all__ = [
    "FetchOhttpKeysError",
    "UnexpectedStatusCodeError",
    "InvalidOhttpKeysError",
    "fetch_ohttp_keys",
    "parse_ohttp_keys_response",
]

_GATEWAY_PATH = "/.well-known/ohttp-gateway"


class FetchOhttpKeysError(Exception):
    """OHTTP keys could not be fetched from the payjoin directory."""


def _status_text(code: int) -> str:
    try:
        return f"{code} {HTTPStatus(code).phrase}"
    except ValueError:
        return str(code)


class UnexpectedStatusCodeError(FetchOhttpKeysError):
    """The directory answered with a non-success status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(
            f"Unexpected status code from payjoin directory: {_status_text(status_code)}"
        )
        self.status_code = status_code


class InvalidOhttpKeysError(FetchOhttpKeysError):
    """The directory returned a body that is not a valid key configuration."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid ohttp keys returned from payjoin directory: {detail}")
        self.detail = detail


async def fetch_ohttp_keys(ohttp_relay, payjoin_directory) -> OhttpKeys:
    """Fetch the directory's OHTTP keys, proxied through ``ohttp_relay``.

    Proxying keeps the client's IP address hidden from the directory.
    """
    try:
        keys_url = join_url(payjoin_directory, _GATEWAY_PATH)
        relay_url = into_url(ohttp_relay)
    except UrlError as exc:
        raise FetchOhttpKeysError(str(exc)) from exc

    try:
        client = httpx.AsyncClient(proxy=relay_url.geturl())
    except (ValueError, httpx.InvalidURL) as exc:
        raise FetchOhttpKeysError(str(exc)) from exc

    try:
        async with client:
            response = await client.get(
                keys_url.geturl(), headers={"Accept": "application/ohttp-keys"}
            )
            return await parse_ohttp_keys_response(response)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        raise FetchOhttpKeysError(str(exc)) from exc


async def parse_ohttp_keys_response(response: httpx.Response) -> OhttpKeys:
    """Decode the keys in a directory response, checking its status first."""
    if not response.is_success:
        raise UnexpectedStatusCodeError(response.status_code)
    body = await response.aread()
    try:
        return OhttpKeys.decode(body)
    except ValueError as exc:
        raise InvalidOhttpKeysError(str(exc)) from exc