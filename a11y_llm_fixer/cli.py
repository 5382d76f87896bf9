"""Typer CLI for analyzing and fixing accessibility issues in HTML files."""
import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

import orjson
import typer
from dotenv import load_dotenv

from . import conversation, mcp_bridge
from .config import ConfigError, FixerSettings, load_settings
from .contrast import contrast_ratio
from .fixer import apply_fixes
from .schema import (
    ContrastPolicy,
    ConversationMessage,
    ConversationResult,
    FileResult,
    FixPlan,
    RunRecord,
    ToolError,
    parse_fix_plan,
)
from .tools import ToolInvoker, ToolName
from .utils import safe_filename

# loading variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _settings_or_exit(config: Optional[str], **overrides: Any) -> FixerSettings:
    try:
        return load_settings(Path(config) if config else None, overrides=overrides)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)


@contextmanager
def open_server(settings: FixerSettings) -> Iterator[Optional[mcp_bridge.A11yServer]]:
    """Yield a started server, or None in LLM-only mode; always shut it down."""
    server = mcp_bridge.A11yServer(settings.server_command, request_timeout_s=settings.request_timeout_s)
    try:
        server.start()
    except mcp_bridge.BridgeError as e:
        if settings.require_server:
            typer.echo(f"Accessibility server failed to start: {e}", err=True)
            raise typer.Exit(code=1)
        logger.warning("Accessibility server failed to start, continuing in LLM-only mode: %s", e)
        yield None
        return
    try:
        yield server
    finally:
        server.close()


def _violation_count(payload: Any) -> Optional[int]:
    if isinstance(payload, dict) and isinstance(payload.get("violations"), list):
        return len(payload["violations"])
    return None


def _test_html(invoker: ToolInvoker, html: str) -> Optional[Any]:
    if not invoker.connected:
        return None
    result = invoker.invoke(ToolName.TEST_HTML.value, {"html": html})
    if isinstance(result, ToolError):
        logger.warning("Accessibility test failed: %s", result.error)
        return None
    return result


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))


def _write_transcript(path: Path, transcript: List[ConversationMessage]) -> None:
    _write_json(path, [m.model_dump(mode="json") for m in transcript])


def process_file(
    path: Path,
    invoker: ToolInvoker,
    loop: conversation.ConversationLoop,
    settings: FixerSettings,
    dry_run: bool = False,
    deadline: Optional[float] = None,
) -> Tuple[FileResult, ConversationResult]:
    """Analyze one HTML file, apply the proposed fixes and write it back with a backup."""
    original = path.read_text(encoding="utf-8")
    typer.echo(f"Processing {path} ({len(original)} characters)")

    initial = _test_html(invoker, original)
    convo = loop.run(conversation.build_user_prompt(original, str(path), initial), deadline=deadline)
    if convo.exhausted:
        plan = FixPlan(summary=convo.final_text)
    else:
        plan = parse_fix_plan(convo.final_text)

    applied = apply_fixes(
        original,
        plan.fixes,
        validator=invoker.check_contrast,
        policy=settings.contrast_policy,
    )
    changed = applied.content != original
    backup_path = None
    if changed and not dry_run:
        backup = path.with_name(path.name + ".backup")
        backup.write_text(original, encoding="utf-8")
        path.write_text(applied.content, encoding="utf-8")
        backup_path = str(backup)
        typer.echo(f"Applied {applied.applied_count} fixes to {path} (backup: {backup})")
    elif changed:
        typer.echo(f"Dry run: {applied.applied_count} fixes would be applied to {path}")
    else:
        typer.echo(f"No changes needed for {path}")

    final = _test_html(invoker, applied.content) if changed else initial
    result = FileResult(
        path=str(path),
        original_violations=_violation_count(initial),
        remaining_violations=_violation_count(final),
        summary=plan.summary,
        fixes_proposed=len(plan.fixes),
        fixes_applied=applied.applied_count,
        changed=changed,
        backup_path=backup_path,
        tool_call_rounds=convo.tool_call_rounds,
        exhausted=convo.exhausted,
        outcomes=applied.outcomes,
    )
    return result, convo


@app.command()
def fix(
    paths: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="HTML files to fix"),
    config: str = typer.Option(None, help="Settings YAML (default: config/fixer.yaml if present)"),
    out: str = typer.Option("runs", help="Output directory"),
    model: str = typer.Option(None, help="Override the LLM model"),
    max_iterations: int = typer.Option(None, min=1, help="Override the conversation iteration cap"),
    contrast_policy: ContrastPolicy = typer.Option(None, help="What to do with color fixes failing contrast checks"),
    timeout: float = typer.Option(None, min=0, help="Overall deadline in seconds for the LLM conversations"),
    dry_run: bool = typer.Option(False, help="Compute fixes without writing files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Analyze HTML files with the LLM and tool server, then apply the proposed fixes."""
    _configure_logging(verbose)
    settings = _settings_or_exit(
        config, model=model, max_iterations=max_iterations, contrast_policy=contrast_policy
    )
    run_id = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    out_dir = Path(out) / run_id
    record = RunRecord(
        run_id=run_id,
        created_at=datetime.now(timezone.utc),
        model=settings.model,
        settings=settings.public_dict(),
    )
    deadline = time.monotonic() + timeout if timeout is not None else None
    client = conversation.LiteLLMClient(
        settings.model,
        api_key=settings.api_key,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )

    exit_code = 0
    with open_server(settings) as server:
        invoker = ToolInvoker(server, default_tags=settings.wcag_tags)
        loop = conversation.ConversationLoop(client, invoker, max_iterations=settings.max_iterations)
        for path in paths:
            transcript_path = out_dir / "transcripts" / f"{safe_filename(str(path))}.json"
            try:
                file_result, convo = process_file(path, invoker, loop, settings, dry_run=dry_run, deadline=deadline)
            except (conversation.LLMCallError, conversation.ConversationCancelled) as e:
                typer.echo(f"Error processing {path}: {e}", err=True)
                _write_transcript(transcript_path, e.transcript)
                record.error = f"{path}: {e}"
                exit_code = 1
                break
            except (OSError, UnicodeDecodeError) as e:
                # Unreadable or unwritable document: record it and move on
                typer.echo(f"Error processing {path}: {e}", err=True)
                record.files.append(FileResult(path=str(path), error=str(e)))
                exit_code = 1
                continue
            _write_transcript(transcript_path, convo.transcript)
            record.files.append(file_result)

    _write_json(out_dir / "results.json", record.model_dump(mode="json"))
    latest_link = Path(out) / "latest"
    try:
        if latest_link.exists() or latest_link.is_symlink():
            latest_link.unlink()
        latest_link.symlink_to(out_dir.resolve())
    except OSError:
        pass

    total = sum(f.fixes_applied for f in record.files)
    if total:
        typer.echo(f"Completed! Applied {total} fixes across {len(record.files)} files.")
    else:
        typer.echo(f"Completed with no changes across {len(record.files)} files.")
    typer.echo(f"Results: {out_dir / 'results.json'}")
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def analyze(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="HTML file to analyze"),
    config: str = typer.Option(None, help="Settings YAML"),
    model: str = typer.Option(None, help="Override the LLM model"),
    max_iterations: int = typer.Option(None, min=1, help="Override the conversation iteration cap"),
    out: str = typer.Option(None, help="Write the analysis and transcript as JSON to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Let the LLM analyze a file with the accessibility tools, without changing it."""
    _configure_logging(verbose)
    settings = _settings_or_exit(config, model=model, max_iterations=max_iterations)
    client = conversation.LiteLLMClient(
        settings.model,
        api_key=settings.api_key,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    html = path.read_text(encoding="utf-8")
    with open_server(settings) as server:
        invoker = ToolInvoker(server, default_tags=settings.wcag_tags)
        loop = conversation.ConversationLoop(client, invoker, max_iterations=settings.max_iterations)
        try:
            result = loop.run(conversation.build_user_prompt(html, str(path)))
        except conversation.LLMCallError as e:
            typer.echo(f"Error: {e}", err=True)
            if out:
                _write_transcript(Path(out), e.transcript)
            raise typer.Exit(code=1)

    typer.echo(result.final_text)
    typer.echo(f"Analysis complete with {result.tool_call_rounds} tool call rounds")
    if out:
        _write_json(Path(out), result.model_dump(mode="json"))


@app.command()
def contrast(foreground: str, background: str):
    """Print the WCAG contrast ratio of two hex colors."""
    result = contrast_ratio(foreground, background)
    typer.echo(json.dumps(result.model_dump(by_alias=True), indent=2))


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
