from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Sequence

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .cursor import MemoryStateStore, StateStore
from .errors import ConfigError, FetchError, StorageError, ValidationError
from .provider import Provider
from .run_log import RunLogger
from .sink import JsonlSink, Sink
from .storage import SQLiteStateStore
from .triggers import TriggerActivation, activate_poll_trigger, activate_stream_trigger


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Output directory for events, state and logs.",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use a canned, network-free provider.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="x_ingest")

    subparsers = parser.add_subparsers(dest="command", required=True)

    poll = subparsers.add_parser(
        "poll",
        help="Poll the feed at a fixed interval and emit new posts oldest-first.",
    )
    _add_common_args(poll)
    poll.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted).",
    )
    poll.set_defaults(_handler=_cmd_poll)

    stream = subparsers.add_parser(
        "stream",
        help="Consume the provider stream and emit each post as it arrives.",
    )
    _add_common_args(stream)
    stream.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until the stream ends or is interrupted).",
    )
    stream.set_defaults(_handler=_cmd_stream)

    manual = subparsers.add_parser(
        "manual",
        help="Run one fetch-and-emit cycle without touching the stored cursor.",
    )
    _add_common_args(manual)
    manual.add_argument(
        "--mode",
        choices=("poll", "stream"),
        default="poll",
        help="Which trigger's fields to use.",
    )
    manual.set_defaults(_handler=_cmd_manual)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _build_provider(cfg: AppConfig, args: argparse.Namespace, log: RunLogger) -> Provider:
    if bool(getattr(args, "offline", False)):
        from .offline import OfflineTweetProvider

        return OfflineTweetProvider()

    from .apify_provider import ApifyTweetProvider

    secrets = resolve_runtime_secrets(cfg)
    return ApifyTweetProvider(secrets.apify_token, apify=cfg.apify, logger=log)


def _activate(
    cfg: AppConfig,
    mode: str,
    *,
    provider: Provider,
    store: StateStore,
    sink: Sink,
    log: RunLogger,
    start: bool = True,
) -> TriggerActivation:
    if mode == "poll":
        return activate_poll_trigger(
            cfg.trigger,
            provider=provider,
            store=store,
            sink=sink,
            scope=cfg.state.scope,
            logger=log,
            start=start,
        )
    return activate_stream_trigger(cfg.stream, provider=provider, sink=sink, logger=log, start=start)


async def _serve(
    cfg: AppConfig,
    mode: str,
    *,
    provider: Provider,
    store: StateStore,
    sink: Sink,
    log: RunLogger,
    duration: float | None,
) -> None:
    activation = _activate(cfg, mode, provider=provider, store=store, sink=sink, log=log)
    try:
        if duration is None:
            await activation.wait()
        else:
            await asyncio.wait({activation.task}, timeout=max(0.0, duration))
    finally:
        await activation.close()


def _run_trigger(args: argparse.Namespace, *, mode: str) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    log_path = out_dir / "run.log"
    events_path = out_dir / "events.jsonl"

    with RunLogger.open(log_path, overwrite=True) as log:
        log.info(
            f"{mode}_command_started",
            config_path=str(args.config),
            out_dir=str(out_dir),
            offline=bool(args.offline),
        )

        try:
            cfg = load_config(args.config)
            provider = _build_provider(cfg, args, log)

            with SQLiteStateStore.open(out_dir / "state.sqlite") as store, JsonlSink.open(events_path) as sink:
                activation = store.create_activation(
                    scope=cfg.state.scope,
                    mode=mode,
                    config_hash=config_sha256(cfg),
                )
                log.set_activation_id(activation.activation_id)

                try:
                    asyncio.run(
                        _serve(
                            cfg,
                            mode,
                            provider=provider,
                            store=store,
                            sink=sink,
                            log=log,
                            duration=args.duration,
                        )
                    )
                finally:
                    store.finish_activation(activation.activation_id)

                log.info(f"{mode}_command_completed", emitted=sink.emitted)

            print(f"activation_id={activation.activation_id}")
            print(f"emitted={sink.emitted}")
            print(f"events={events_path}")
            print(f"run_log={log_path}")
            return 0
        except Exception as e:
            log.exception(f"{mode}_command_failed", exc=e)
            raise


def _cmd_poll(args: argparse.Namespace) -> int:
    return _run_trigger(args, mode="poll")


def _cmd_stream(args: argparse.Namespace) -> int:
    return _run_trigger(args, mode="stream")


def _cmd_manual(args: argparse.Namespace) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    log_path = out_dir / "run.log"
    events_path = out_dir / "events.jsonl"

    with RunLogger.open(log_path, overwrite=False) as log:
        try:
            cfg = load_config(args.config)
            provider = _build_provider(cfg, args, log)

            async def _once(sink: Sink) -> int:
                # A manual cycle never reads or writes the cursor, so it gets a throwaway store.
                activation = _activate(
                    cfg,
                    args.mode,
                    provider=provider,
                    store=MemoryStateStore(),
                    sink=sink,
                    log=log,
                    start=False,
                )
                try:
                    items = await activation.manual_trigger()
                finally:
                    await activation.close()
                return len(items)

            with JsonlSink.open(events_path) as sink:
                fetched = asyncio.run(_once(sink))

            print(f"fetched={fetched}")
            print(f"events={events_path}")
            return 0
        except Exception as e:
            log.exception("manual_command_failed", exc=e)
            raise


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except (ConfigError, ValidationError) as e:
        _eprint(str(e))
        return 2
    except (FetchError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
