from __future__ import annotations

import json
import logging
import signal
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
import yaml

from ..common.annotations import DEFAULT_ANNOTATION_NAMESPACE
from ..common.errors import ConfigError, PatchError
from ..config.loader import load_config_directory
from ..config.settings import WebhookSettings
from ..config.store import ConfigStore
from ..mutator.decision import Outcome, decide
from ..mutator.jsonpatch_guard import apply_patch
from ..mutator.patch import build_patch_operations
from .admission import AdmissionHandler
from .server import create_app

logger = logging.getLogger(__name__)

RELOAD_THREAD_NAME = "injector-config-reload"

app = typer.Typer(help="Inject sidecars into Kubernetes pods from named templates.")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(levelname)s: %(message)s")


def install_reload_handler(store: ConfigStore) -> None:
    if not hasattr(signal, "SIGHUP"):  # pragma: no cover - not available on Windows
        return

    def _reload() -> None:
        try:
            store.reload()
        except ConfigError as exc:
            logger.error("Reload failed, keeping previous injection configs: %s", exc)

    def _on_sighup(signum, frame) -> None:  # noqa: ARG001 - signal handler signature
        # Runs on the event loop thread; the reload itself must not block it.
        logger.info("Received SIGHUP, reloading injection configs")
        threading.Thread(target=_reload, name=RELOAD_THREAD_NAME, daemon=True).start()

    signal.signal(signal.SIGHUP, _on_sighup)


@app.command()
def serve(
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        "-c",
        help="Directory of injection config YAML files (env: INJECTOR_CONFIG_DIR).",
    ),
    annotation_namespace: Optional[str] = typer.Option(
        None,
        help="Annotation prefix for request/status keys (env: INJECTOR_ANNOTATION_NAMESPACE).",
    ),
    ignore_namespace: Optional[List[str]] = typer.Option(
        None,
        "--ignore-namespace",
        help="Namespace never injected; repeat to list several (env: INJECTOR_IGNORED_NAMESPACES).",
    ),
    host: Optional[str] = typer.Option(None, help="Bind address (env: INJECTOR_HOST)."),
    port: Optional[int] = typer.Option(None, min=1, max=65535, help="Listen port (env: INJECTOR_PORT)."),
    tls_cert_file: Optional[Path] = typer.Option(None, help="TLS certificate file."),
    tls_key_file: Optional[Path] = typer.Option(None, help="TLS private key file."),
    deny_on_misconfiguration: Optional[bool] = typer.Option(
        None,
        "--deny-on-misconfiguration/--allow-on-misconfiguration",
        help="Deny pods requesting unknown or broken templates instead of admitting them unmodified.",
    ),
    log_level: Optional[str] = typer.Option(None, help="Logging level (env: INJECTOR_LOG_LEVEL)."),
) -> None:
    try:
        settings = WebhookSettings.from_env()
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    overrides = {
        "config_dir": config_dir,
        "annotation_namespace": annotation_namespace,
        "ignored_namespaces": frozenset(ignore_namespace) if ignore_namespace else None,
        "host": host,
        "port": port,
        "tls_cert_file": tls_cert_file,
        "tls_key_file": tls_key_file,
        "deny_on_misconfiguration": deny_on_misconfiguration,
        "log_level": log_level.upper() if log_level else None,
    }
    settings = replace(settings, **{key: value for key, value in overrides.items() if value is not None})
    if (settings.tls_cert_file is None) != (settings.tls_key_file is None):
        raise typer.BadParameter("--tls-cert-file and --tls-key-file must be given together")

    configure_logging(settings.log_level)
    try:
        handler = AdmissionHandler.from_settings(settings)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    install_reload_handler(handler.store)

    logger.info(
        "Serving on %s:%d (tls=%s), ignoring namespaces: %s",
        settings.host,
        settings.port,
        settings.tls_enabled,
        ", ".join(sorted(settings.ignored_namespaces)) or "<none>",
    )
    uvicorn.run(
        create_app(handler),
        host=settings.host,
        port=settings.port,
        ssl_certfile=str(settings.tls_cert_file) if settings.tls_cert_file else None,
        ssl_keyfile=str(settings.tls_key_file) if settings.tls_key_file else None,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


@app.command()
def patch(
    pod: Path = typer.Option(..., "--pod", "-p", help="Pod manifest (YAML or JSON)."),
    config_dir: Path = typer.Option(
        Path("conf/sidecars"),
        "--config-dir",
        "-c",
        help="Directory of injection config YAML files.",
    ),
    template: Optional[str] = typer.Option(
        None,
        "--template",
        "-t",
        help="Injection config to apply (defaults to the pod's request annotation).",
    ),
    annotation_namespace: str = typer.Option(
        DEFAULT_ANNOTATION_NAMESPACE,
        help="Annotation prefix for request/status keys.",
    ),
    apply: bool = typer.Option(
        False,
        "--apply",
        help="Print the patched pod as YAML instead of the JSON patch.",
    ),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write output to a file."),
) -> None:
    try:
        config = load_config_directory(config_dir, annotation_namespace)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    pod_obj = _load_pod(pod)

    if template is None:
        decision = decide(frozenset(), pod_obj, config)
        if decision.outcome is not Outcome.INJECT:
            raise typer.BadParameter(f"Pod {pod} is not eligible for injection: {decision.outcome.value}")
        template = decision.template_name
    injection = config.get(template)
    if injection is None:
        raise typer.BadParameter(f"Injection config {template!r} not found in {config_dir}")

    try:
        operations = build_patch_operations(
            pod_obj, injection, annotation_namespace=config.annotation_namespace
        )
        if apply:
            rendered = yaml.safe_dump(apply_patch(pod_obj, operations), sort_keys=False)
        else:
            rendered = json.dumps(operations, indent=2)
    except PatchError as exc:
        raise typer.BadParameter(f"Unable to inject {template!r}: {exc}") from exc

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(rendered + ("" if rendered.endswith("\n") else "\n"), encoding="utf-8")
        typer.echo(f"Wrote {len(operations)} operation(s) for {template} to {out.resolve()}")
        return
    typer.echo(rendered)


@app.command("check-config")
def check_config(
    config_dir: Path = typer.Option(
        Path("conf/sidecars"),
        "--config-dir",
        "-c",
        help="Directory of injection config YAML files.",
    ),
) -> None:
    try:
        config = load_config_directory(config_dir)
    except ConfigError as exc:
        typer.echo(f"Invalid injection configs: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    for name in config.names():
        injection = config.injections[name]
        typer.echo(
            f"{name}: {len(injection.containers)} container(s), "
            f"{len(injection.volumes)} volume(s), "
            f"{len(injection.volume_mounts)} mount(s), "
            f"{len(injection.env)} env var(s), "
            f"{len(injection.host_aliases)} host alias(es), "
            f"{len(injection.init_containers)} init container(s)"
        )
    typer.echo(f"Loaded {len(config.injections)} injection config(s) from {config_dir}")


def _load_pod(path: Path) -> dict:
    try:
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    except FileNotFoundError as exc:
        raise typer.BadParameter(f"Pod manifest not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Pod manifest is not valid YAML: {exc}") from exc
    if not documents or not isinstance(documents[0], dict):
        raise typer.BadParameter(f"Pod manifest {path} must contain a mapping")
    return documents[0]


if __name__ == "__main__":  # pragma: no cover
    app()
