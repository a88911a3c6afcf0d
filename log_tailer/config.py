"""Configuration loading from CLI args, env vars, and an optional YAML file."""

import argparse
import logging
import os
from dataclasses import dataclass, field, fields

import yaml
from dotenv import dotenv_values

from log_tailer.errors import ConfigurationError
from log_tailer.models import SourceSpec, parse_source_spec
from log_tailer.parsers import get_parser

logger = logging.getLogger(__name__)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    token: str = ""
    sources: list[SourceSpec] = field(default_factory=list)
    table: str = "eliza_logs"
    user_field: str = "user_id"
    fk_field: str = "agent_id"
    fk_claim: str = "agentId"
    fk_value: str | None = None
    content_field: str = "content"
    source_field: str = "source"
    sink_url: str = ""
    sink_key: str = ""
    backoff_ms: int = 1000
    max_retries: int = 10
    exponential_backoff: bool = False
    max_backoff_ms: int = 30000
    poll_interval: float = 0.25
    write_settle_ms: int = 2000
    use_polling_observer: bool = False
    exit_on_delivery_failure: bool = False
    http_timeout: float = 10.0
    shutdown_timeout: float = 5.0
    log_level: str = "INFO"


# env var -> (config field, converter)
_ENV_VARS = {
    "TAILER_JWT": ("token", str),
    "TAILER_TABLE": ("table", str),
    "TAILER_FK_VALUE": ("fk_value", str),
    "SUPABASE_URL": ("sink_url", str),
    "SUPABASE_ANON_KEY": ("sink_key", str),
    "BACKOFF_MS": ("backoff_ms", int),
    "MAX_RETRIES": ("max_retries", int),
    "EXPONENTIAL_BACKOFF": ("exponential_backoff", _parse_bool),
    "MAX_BACKOFF_MS": ("max_backoff_ms", int),
    "POLL_INTERVAL": ("poll_interval", float),
    "WRITE_SETTLE_MS": ("write_settle_ms", int),
    "USE_POLLING": ("use_polling_observer", _parse_bool),
    "EXIT_ON_DELIVERY_FAILURE": ("exit_on_delivery_failure", _parse_bool),
    "HTTP_TIMEOUT": ("http_timeout", float),
    "SHUTDOWN_TIMEOUT": ("shutdown_timeout", float),
    "LOG_LEVEL": ("log_level", str),
}

_CONVERTERS = {
    str: str,
    str | None: str,
    int: int,
    float: float,
    bool: _parse_bool,
}


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="log-tailer",
        description="Tail files (or stdin) and ship their lines to a remote log table",
    )
    parser.add_argument(
        "paths", nargs="*",
        help="Sources to tail: [format:]path-or-glob, or '-' for stdin (format: raw, json)",
    )
    parser.add_argument("--jwt", dest="token", default=None, help="Bearer token identifying the caller")
    parser.add_argument("--table", default=None, help="Destination table (default: eliza_logs)")
    parser.add_argument("--user-field", default=None, help="Column for the caller identity (default: user_id)")
    parser.add_argument("--fk-field", default=None, help="Foreign-key column (default: agent_id)")
    parser.add_argument("--fk-claim", default=None, help="Token claim holding the foreign-key value (default: agentId)")
    parser.add_argument("--fk-value", default=None, help="Explicit foreign-key value, overrides --fk-claim")
    parser.add_argument("--content-field", default=None, help="Column for the line content (default: content)")
    parser.add_argument("--source-field", default=None, help="Column for the source tag (default: source)")
    parser.add_argument("--sink-url", default=None, help="Base URL of the sink (default: $SUPABASE_URL)")
    parser.add_argument("--backoff-ms", type=int, default=None, help="Delay between retries (default: 1000)")
    parser.add_argument("--max-retries", type=int, default=None, help="Insert attempts per batch (default: 10)")
    parser.add_argument(
        "--exponential-backoff", action="store_true", default=None,
        help="Double the delay after each failed attempt",
    )
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between reads of an idle file")
    parser.add_argument("--write-settle-ms", type=int, default=None, help="Quiet period before a new file is tailed")
    parser.add_argument("--polling", dest="use_polling_observer", action="store_true", default=None,
                        help="Use a polling filesystem observer (network filesystems)")
    parser.add_argument("--exit-on-delivery-failure", action="store_true", default=None,
                        help="Stop with status 1 when a batch exhausts its retries")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--env-file", default=".env",
                        help="Dotenv file read for unset environment variables (default: .env)")
    return parser


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_env(env_file: str | None) -> dict:
    """Process environment over the values of env_file. A missing file is ignored."""
    env = {}
    if env_file and os.path.isfile(env_file):
        env = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
        logger.info("Loaded %d variable(s) from %s", len(env), env_file)
    env.update(os.environ)
    return env


def _coerce(name: str, value):
    ftype = {f.name: f.type for f in fields(Config)}[name]
    convert = _CONVERTERS.get(ftype)
    if convert is None or value is None:
        return value
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from None


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars (.env file first) <- CLI args (highest priority)."""
    args = build_cli_parser().parse_args(argv)
    yaml_data = load_yaml_config(args.config)
    env = load_env(args.env_file)

    known = {f.name for f in fields(Config)}
    kwargs: dict = {}

    for key, value in yaml_data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        kwargs[key] = value

    for env_name, (name, convert) in _ENV_VARS.items():
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            kwargs[name] = convert(raw)
        except ValueError:
            raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from None

    for name, value in vars(args).items():
        if name in known and value is not None:
            kwargs[name] = value

    yaml_sources = kwargs.get("sources") or []
    if isinstance(yaml_sources, str):
        yaml_sources = [yaml_sources]
    raw_sources = list(args.paths) or list(yaml_sources)
    kwargs["sources"] = [parse_source_spec(str(s)) for s in raw_sources]

    for name in list(kwargs):
        if name != "sources":
            kwargs[name] = _coerce(name, kwargs[name])

    config = Config(**kwargs)
    validate(config)
    return config


def validate(config: Config):
    """Raise ConfigurationError if config cannot run."""
    if not config.sources:
        raise ConfigurationError("No paths specified")
    if not config.token:
        raise ConfigurationError("No JWT token specified (--jwt or TAILER_JWT)")
    for name in ("table", "user_field", "fk_field", "content_field", "source_field"):
        if not getattr(config, name):
            raise ConfigurationError(f"{name} must not be empty")
    if not config.sink_url:
        raise ConfigurationError("SUPABASE_URL is not set")
    if not config.sink_key:
        raise ConfigurationError("SUPABASE_ANON_KEY is not set")
    if config.max_retries < 1:
        raise ConfigurationError("max_retries must be at least 1")
    for name in ("backoff_ms", "max_backoff_ms", "poll_interval", "write_settle_ms",
                 "http_timeout", "shutdown_timeout"):
        if getattr(config, name) < 0:
            raise ConfigurationError(f"{name} must not be negative")
    if sum(1 for s in config.sources if s.is_stdin) > 1:
        raise ConfigurationError("Standard input can only be tailed once")
    for spec in config.sources:
        get_parser(spec.format)
    if not isinstance(logging.getLevelName(config.log_level.upper()), int):
        raise ConfigurationError(f"Unknown log level: {config.log_level!r}")

