"""Command-line interface for writerkit."""
import asyncio
import json
import os
import sys

import click
from dotenv import load_dotenv

from .ai.adapter.factory import AdapterFactory
from .ai.models.common import format_remaining_time
from .ai.resource_registry import ResourceCacheRegistry
from .ai.streaming import CancellationToken
from .core.errors import ConfigurationError, RequiredInputMissing, TransportError, WriterKitError
from .core.executor import ToolContext, execute_tool, parse_option_pairs
from .core.models import Config
from .core.tokenizer import count_words
from .core.tools import get_tool, list_tools
from .core.workspace import read_required
from .utils.console import OutputConsole
from .utils.logging_config import LogContext, setup_logging


def _build_config(ctx: click.Context) -> Config:
    options = ctx.obj or {}
    if options.get("provider"):
        config = Config(provider=options["provider"])
    else:
        config = Config()
    if options.get("model"):
        config.model_name = options["model"]
    config.debug = options.get("debug", False)
    return config


def _console(ctx: click.Context) -> OutputConsole:
    options = ctx.obj or {}
    return OutputConsole(theme=options.get("theme", "manhattan"), force_plain=options.get("plain", False))


def _fail(console: OutputConsole, message: str, debug: bool = False) -> None:
    console.print_error(message)
    if debug:
        console.console.print_exception()
    sys.exit(1)


@click.group()
@click.option('--provider', type=click.Choice(AdapterFactory.get_available_providers()), help='Model provider (default: WRITERKIT_PROVIDER or gemini)')
@click.option('--model', help='Model name (default: WRITERKIT_MODEL)')
@click.option('--theme', '-t', type=click.Choice(['manhattan', 'sunset']), default='manhattan',
              help='Terminal color theme')
@click.option('--plain', is_flag=True, help='Plain text output without colors')
@click.option('--debug', is_flag=True, help='Verbose logging on stderr')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Write JSON logs to this file')
@click.version_option(package_name='writerkit')
@click.pass_context
def main(ctx: click.Context, provider: str, model: str, theme: str, plain: bool,
         debug: bool, log_file: str) -> None:
    """
    Run manuscript analysis and writing tools against a language model.

    Examples:

        writerkit list-tools

        writerkit run rhythm_analyzer --save-dir ~/writing/mybook

        writerkit run chapter_writer --save-dir . --option lang=English
    """
    load_dotenv()
    setup_logging(debug, log_file)
    ctx.ensure_object(dict)
    ctx.obj.update(provider=provider, model=model, theme=theme, plain=plain, debug=debug)


@main.command('list-tools')
@click.option('--category', type=click.Choice(['editing', 'writing']), help='Only list one category')
@click.pass_context
def list_tools_command(ctx: click.Context, category: str) -> None:
    """List the available tools and their inputs."""
    console = _console(ctx)
    rows = []
    for tool in list_tools(category):
        inputs = ", ".join(
            f"{i.name}={i.default}" if i.default else i.name for i in tool.inputs
        )
        rows.append((tool.name, tool.category, inputs, tool.description))
    console.print_table("Tools", ["Name", "Category", "Inputs", "Description"], rows)


@main.command('run')
@click.argument('tool_name')
@click.option('--save-dir', '-s', type=click.Path(file_okay=False), help='Project directory (default: WRITERKIT_SAVE_DIR)')
@click.option('--manuscript', '-m', help='Document file for the tool, relative to the save directory')
@click.option('--option', '-o', 'option_pairs', multiple=True, help='Tool input as key=value; repeatable')
@click.option('--thinking', is_flag=True, help='Ask the model to reason before answering')
@click.option('--lookback', is_flag=True, help='Detect reasoning markers split across chunks')
@click.option('--backup', is_flag=True, help='Back up the manuscript before appending to it')
@click.option('--json', 'export_json', is_flag=True, help='Print the result as JSON when done')
@click.pass_context
def run_command(ctx: click.Context, tool_name: str, save_dir: str, manuscript: str,
                option_pairs: tuple, thinking: bool, lookback: bool, backup: bool,
                export_json: bool) -> None:
    """Run TOOL_NAME against the project in the save directory."""
    console = _console(ctx)
    config = _build_config(ctx)
    config.marker_lookback = lookback
    config.backup_manuscript = backup

    try:
        definition = get_tool(tool_name)
        options = parse_option_pairs(option_pairs)
    except (WriterKitError, ValueError) as e:
        _fail(console, str(e))

    if save_dir:
        options['save_dir'] = save_dir
    if thinking:
        options['thinking'] = 'true'
    if manuscript:
        target = definition.document_input or definition.appends_to
        if target:
            options[target] = manuscript

    async def _run():
        adapter = AdapterFactory.from_config(config)
        context = ToolContext.create(config, adapter, emit=console.emit,
                                     emit_thinking=console.emit_thinking)
        cancel_token = CancellationToken()
        with LogContext(tool=tool_name, document=options.get(definition.document_input or '', '')):
            return await execute_tool(tool_name, options, context, cancel_token)

    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[error]> PROCESS TERMINATED BY USER[/error]")
        sys.exit(1)
    except (ConfigurationError, RequiredInputMissing) as e:
        _fail(console, str(e), config.debug)
    except TransportError as e:
        hint = " (temporary, try again)" if e.recoverable else ""
        _fail(console, f"Generation failed{hint}: {e}", config.debug)

    if export_json:
        console.print(json.dumps(result.to_dict(), indent=2), markup=False, soft_wrap=True)
    if result.success:
        console.print_success(f"{definition.title} complete")
        return
    if result.error_type == 'cancelled':
        console.print_warning("Generation cancelled; partial output saved")
    else:
        for error in result.errors:
            console.print_warning(error)
    sys.exit(2)


@main.command('count-tokens')
@click.argument('file_path', type=click.Path(dir_okay=False))
@click.pass_context
def count_tokens_command(ctx: click.Context, file_path: str) -> None:
    """Count words and model tokens in FILE_PATH."""
    console = _console(ctx)
    config = _build_config(ctx)
    try:
        text = read_required(os.path.expanduser(file_path))
        adapter = AdapterFactory.from_config(config)
    except (ConfigurationError, RequiredInputMissing) as e:
        _fail(console, str(e), config.debug)

    context = ToolContext.create(config, adapter)
    tokens = asyncio.run(context.accountant.count_tokens(text))
    console.print_info(f"Words: {count_words(text):,}")
    console.print_info(f"Tokens: {tokens:,} ({adapter.model})")


@main.command('prepare')
@click.argument('file_path', type=click.Path(dir_okay=False))
@click.pass_context
def prepare_command(ctx: click.Context, file_path: str) -> None:
    """Upload FILE_PATH and create a prompt cache for it, reusing existing ones."""
    console = _console(ctx)
    config = _build_config(ctx)
    try:
        adapter = AdapterFactory.from_config(config)
        registry = ResourceCacheRegistry(adapter, cache_ttl_seconds=config.cache_ttl_seconds)
        result = asyncio.run(registry.prepare(file_path))
    except ConfigurationError as e:
        _fail(console, str(e), config.debug)

    for message in result.messages:
        console.print_info(message)
    for error in result.errors:
        console.print_warning(error)
    if result.fatal:
        sys.exit(1)
    file_name = result.file_handle.name if result.file_handle else "none"
    cache_name = result.cache_handle.name if result.cache_handle else "none"
    console.print_success(f"File: {file_name}  Cache: {cache_name}")


@main.command('cleanup')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def cleanup_command(ctx: click.Context, yes: bool) -> None:
    """Delete every uploaded file and prompt cache for the configured key."""
    console = _console(ctx)
    config = _build_config(ctx)
    if not yes:
        click.confirm("Delete all remote files and caches for this API key?", abort=True)
    try:
        adapter = AdapterFactory.from_config(config)
        registry = ResourceCacheRegistry(adapter)
        report = asyncio.run(registry.clear_all_remote_resources())
    except ConfigurationError as e:
        _fail(console, str(e), config.debug)

    console.print_info(f"Deleted {len(report.caches_deleted)} cache(s) and {len(report.files_deleted)} file(s)")
    for skipped in report.skipped:
        console.print_info(f"Skipped {skipped}: not supported by {adapter.provider_name}")
    for failure in report.failures:
        console.print_warning(failure)
    if report.ok:
        console.print_success("Cleanup complete")


@main.command('resources')
@click.pass_context
def resources_command(ctx: click.Context) -> None:
    """List uploaded files and prompt caches with their remaining lifetime."""
    console = _console(ctx)
    config = _build_config(ctx)
    try:
        adapter = AdapterFactory.from_config(config)
    except ConfigurationError as e:
        _fail(console, str(e), config.debug)

    async def _collect():
        capabilities = adapter.capabilities
        files = await adapter.list_files() if capabilities.supports_file_listing else []
        caches = await adapter.list_caches() if capabilities.supports_cache_listing else []
        return files, caches

    try:
        files, caches = asyncio.run(_collect())
    except Exception as e:
        _fail(console, f"Could not list remote resources: {e}", config.debug)

    console.print_table("Files", ["Name", "Display name", "State"],
                        [(f.name, f.display_name or "", f.state.value) for f in files])
    console.print_table("Caches", ["Name", "Document", "Model", "Remaining"],
                        [(c.name, c.display_name or "", c.model or "", format_remaining_time(c.expire_time))
                         for c in caches])


if __name__ == '__main__':
    main()
