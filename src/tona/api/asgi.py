"""ASGI entrypoint for the Tona control API."""

from tona.api.app import create_app
from tona.containers import build_container

app = create_app(build_container())
