"""Command line client for the fleet telemetry aggregator service.

The Typer application is ``cli.app.app``; it is not re-exported here so that
``cli.app`` keeps resolving to the module when tests patch its attributes.
"""

__all__: list[str] = []
