"""Typer CLI for running and inspecting the chat proxy."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Optional

import typer

from .config import ProxyConfig
from .config_loader import list_env_overrides
from .credentials import StartupError, load_credentials, mask_api_key, validate_model
from .logging_utils import configure_logging
from .runtime_config import RuntimeConfigStore

app = typer.Typer(help="OpenAI-compatible proxy in front of OpenRouter")


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port"),
    model: Optional[str] = typer.Option(
        None, "--model", help="Upstream model id, overriding OPENROUTER_MODEL"
    ),
    debug: bool = typer.Option(False, "--debug", help="Log request and response bodies"),
):
    cfg = ProxyConfig.load()
    if host:
        cfg.host = host
    if port:
        cfg.port = port
    cfg.debug = cfg.debug or debug
    configure_logging(cfg)

    try:
        creds = load_credentials()
        upstream_model = validate_model(model) if model else creds.model
    except StartupError as exc:
        typer.echo(f"Startup error: {exc}", err=True)
        raise typer.Exit(1)

    import uvicorn

    from .app import create_app

    store = RuntimeConfigStore(cfg.upstream_endpoint, upstream_model, creds.api_key)
    uvicorn.run(create_app(cfg, store), host=cfg.host, port=cfg.port)


@app.command("show-config")
def cmd_show_config():
    cfg = ProxyConfig.load()
    data = asdict(cfg)
    try:
        creds = load_credentials()
    except StartupError as exc:
        data["credentials_error"] = str(exc)
    else:
        data["model"] = creds.model
        data["api_key"] = mask_api_key(creds.api_key)
    data["env_overrides"] = list_env_overrides()
    typer.echo(json.dumps(data, indent=2))


if __name__ == "__main__":  # pragma: no cover
    app()
