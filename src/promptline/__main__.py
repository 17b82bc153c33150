"""CLI entry point for promptline."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from promptline import __version__
from promptline.config import Config, ConfigError, load_config
from promptline.context.allocator import Segment, SegmentKind, allocate_tokens
from promptline.guardrails.redact import enabled_kinds, redact
from promptline.models.base import CanonicalRequest, Message, ProviderKind
from promptline.models.normalizer import build_provider_body
from promptline.models.registry import MODEL_REGISTRY, get_context_window
from promptline.recovery.errors import RawError, to_user_facing


def _read_text(path: Path | None) -> str:
    if path is None:
        return ""
    return path.read_text(encoding="utf-8", errors="replace")


def _config(ctx: click.Context) -> Config:
    return ctx.obj["config"]


@click.group()
@click.version_option(version=__version__, prog_name="promptline")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to promptline.toml configuration file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """promptline: budgeted, redacted requests to LLM backends."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    ctx.obj["config"] = config
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--system", "system_path", type=click.Path(exists=True, path_type=Path))
@click.option("--user", "user_path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--context", "context_paths", multiple=True,
    type=click.Path(exists=True, path_type=Path),
    help="Context file; repeat for several.",
)
@click.option("--model", "-m", "model_id", default="", help="Model id for the window lookup.")
@click.option("--window", type=int, default=None, help="Context window override.")
@click.option("--output", "desired_output", type=int, default=None, help="Desired output tokens.")
@click.pass_context
def budget(
    ctx: click.Context,
    system_path: Path | None,
    user_path: Path | None,
    context_paths: tuple[Path, ...],
    model_id: str,
    window: int | None,
    desired_output: int | None,
) -> None:
    """Show how the token budget would be split across the inputs."""
    config = _config(ctx)
    segments = [
        Segment(id=str(i), label=path.name, text=_read_text(path), kind=SegmentKind.FILE)
        for i, path in enumerate(context_paths)
    ]
    result = allocate_tokens(
        _read_text(system_path),
        _read_text(user_path),
        segments,
        window if window is not None else get_context_window(model_id),
        desired_output=desired_output,
        allocation=config.allocation,
        model_id=model_id,
    )
    report = result.to_report()
    if result.plan is not None:
        report["reserved_output"] = result.plan.reserved_output_tokens
        report["overflow"] = result.plan.overflow
        report["clamped_output"] = result.plan.clamped_output_tokens
    click.echo(json.dumps(report, indent=2))


@cli.command("redact")
@click.argument("source", type=click.File("r"), default="-")
@click.pass_context
def redact_cmd(ctx: click.Context, source) -> None:
    """Redact secrets, PII, risky commands and exfil URLs from SOURCE."""
    result = redact(source.read(), enabled_kinds(_config(ctx).guardrails))
    click.echo(result.text, nl=False)
    for warning in result.warnings:
        click.echo(f"warning: {warning}", err=True)


@cli.command()
@click.argument("provider")
@click.option("--model", "-m", "model_id", required=True)
@click.option("--system", "system_text", default=None)
@click.option("--user", "user_text", default="")
@click.option("--temperature", type=float, default=None)
@click.option("--top-p", type=float, default=None)
@click.option("--top-k", type=int, default=None)
@click.option("--max-tokens", type=int, default=None)
@click.option("--stop", multiple=True)
@click.option("--json-mode", is_flag=True, default=False)
def body(
    provider: str,
    model_id: str,
    system_text: str | None,
    user_text: str,
    temperature: float | None,
    top_p: float | None,
    top_k: int | None,
    max_tokens: int | None,
    stop: tuple[str, ...],
    json_mode: bool,
) -> None:
    """Print the wire body PROVIDER would receive."""
    try:
        kind = ProviderKind.parse(provider)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="PROVIDER") from None
    request = CanonicalRequest(
        model=model_id,
        messages=(Message("user", user_text),),
        system_text=system_text,
        temperature=temperature,
        top_p=top_p,
        top_k=top_k,
        max_output_tokens=max_tokens,
        stop_sequences=stop or None,
        json_mode=json_mode or None,
    )
    click.echo(json.dumps(build_provider_body(kind, request), indent=2, ensure_ascii=False))


@cli.command()
@click.option("--status", type=int, default=None, help="HTTP status code.")
@click.option("--code", default=None, help="Error code string.")
@click.option("--detail", default=None, help="Provider error text.")
def classify(status: int | None, code: str | None, detail: str | None) -> None:
    """Classify an error and print the message a user would see."""
    facing = to_user_facing(RawError(code=code, http_status=status, detail=detail))
    click.echo(f"{facing.cause.value}: {facing.message}")


@cli.command()
@click.option("--known", is_flag=True, default=False, help="List the built-in registry instead.")
@click.pass_context
def models(ctx: click.Context, known: bool) -> None:
    """List configured models."""
    if known:
        for spec in MODEL_REGISTRY:
            click.echo(f"{spec.id}  {spec.provider.value}  {spec.context_window}")
        return

    configured = _config(ctx).models
    if not configured:
        click.echo("No models configured.")
        return
    for name, model in configured.items():
        window = model.context_window or get_context_window(model.model)
        click.echo(f"{name}  {model.provider.value}  {model.model}  {window}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
