"""openHAB server mocks.

Builds httpx.MockTransport handlers that answer like an openHAB REST API,
so client code runs its real request path without a network.
"""

import json
from collections.abc import Callable
from typing import Any

import httpx

OPENHAB_ITEMS: list[dict[str, Any]] = [
    {
        "name": "LivingRoom_Temperature",
        "type": "Number:Temperature",
        "label": "Living Room Temperature",
        "state": "21.5 °C",
        "category": "temperature",
    },
    {
        "name": "Bathroom_Humidity",
        "type": "Number:Dimensionless",
        "label": "Bathroom Humidity",
        "state": "64",
        "category": "humidity",
    },
    {
        "name": "Boiler_Pressure",
        "type": "Number:Pressure",
        "label": "Boiler Pressure",
        "state": "UNDEF",
        "category": None,
    },
    {
        "name": "Hallway_Light",
        "type": "Switch",
        "label": "Hallway Light",
        "state": "ON",
        "category": "light",
    },
]


class OpenHABServer:
    """In-memory openHAB REST API for httpx.MockTransport.

    Records every request in ``requests`` and every POSTed command in
    ``commands``.
    """

    def __init__(self, items: list[dict[str, Any]] | None = None, token: str | None = None):
        self.items = {item["name"]: dict(item) for item in (items if items is not None else OPENHAB_ITEMS)}
        self.token = token
        self.requests: list[httpx.Request] = []
        self.commands: list[tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.token is not None and request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": {"message": "Unauthorized"}})

        path = request.url.path
        if path == "/rest/items" and request.method == "GET":
            return httpx.Response(200, json=list(self.items.values()))

        if path.startswith("/rest/items/"):
            name = path.removeprefix("/rest/items/")
            item = self.items.get(name)
            if item is None:
                return httpx.Response(404, json={"error": {"message": f"Item {name} does not exist!"}})
            if request.method == "GET":
                return httpx.Response(200, json=item)
            if request.method == "POST":
                command = request.content.decode()
                self.commands.append((name, command))
                return httpx.Response(200)

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def transport_returning(
    status_code: int = 200,
    body: Any = None,
    *,
    text: str | None = None,
) -> httpx.MockTransport:
    """Transport that answers every request with the same response."""

    def handler(request: httpx.Request) -> httpx.Response:
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, content=json.dumps(body).encode())

    return httpx.MockTransport(handler)


def transport_raising(exc_factory: Callable[[httpx.Request], Exception]) -> httpx.MockTransport:
    """Transport whose every request raises the given transport error."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_factory(request)

    return httpx.MockTransport(handler)
