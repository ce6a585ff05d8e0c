"""Configuration module — frozen dataclass loaded from env vars, a .env file and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from es_shipper.merge import merge_deep

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOG_ES_"
VAR_PREFIX = "LOG_ES_VAR_"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Config:
    node: str = "http://localhost:9200"
    username: str = "elastic"
    password: str = "changeme"
    index: str = "logs-apm-%{DATE}"
    flush_bytes: int = 1000
    flush_interval: int = 30000  # milliseconds
    reject_unauthorized: bool = False
    op_type: str = "create"
    ca_fingerprint: str | None = None
    log_level: str = "INFO"
    additional_fields: dict = field(default_factory=dict)

    def redacted(self) -> dict:
        """Options as a dict with the password masked, for logging."""
        return {
            "node": self.node,
            "username": self.username,
            "password": "*****" if self.password else "",
            "index": self.index,
            "flush_bytes": self.flush_bytes,
            "flush_interval": self.flush_interval,
            "reject_unauthorized": self.reject_unauthorized,
            "op_type": self.op_type,
            "ca_fingerprint": self.ca_fingerprint,
            "additional_fields": self.additional_fields,
        }


def build_key_path(path: str, value):
    """Turn an underscore-delimited path into nested dicts.

    ``build_key_path("a_b_c", "v")`` returns ``{"a": {"b": {"c": "v"}}}``.
    Empty segments are skipped; an empty path returns *value* unchanged.
    """
    parts = [part for part in path.split("_") if part]
    if not parts:
        return value
    head, rest = parts[0], "_".join(parts[1:])
    return {head: build_key_path(rest, value)}


def additional_fields_from_env(environ=None) -> dict:
    """Collect every ``LOG_ES_VAR_*`` variable into one nested mapping.

    The suffix is lower-cased and used as a key path. Variables are applied
    in sorted order, so a longer path wins over a shorter scalar at the same
    prefix.
    """
    if environ is None:
        environ = os.environ

    fields: dict = {}
    for name in sorted(environ):
        if not name.startswith(VAR_PREFIX):
            continue
        path = name[len(VAR_PREFIX):].lower()
        nested = build_key_path(path, environ[name])
        if isinstance(nested, dict):
            fields = merge_deep(fields, nested)
    return fields


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Forward newline-delimited JSON logs from stdin to Elasticsearch",
    )
    parser.add_argument(
        "env_file", nargs="?", default=None,
        help="Optional .env file loaded before reading LOG_ES_* variables",
    )
    parser.add_argument("--host", type=str, default=None, help="Elasticsearch node URL")
    parser.add_argument("--index", type=str, default=None, help="Index template, may contain %%{DATE}")
    parser.add_argument("--flush-bytes", type=int, default=None)
    parser.add_argument("--flush-interval", type=int, default=None, help="Milliseconds")
    parser.add_argument("--op-type", choices=["create", "index"], default=None)
    return parser


def load_env_file(path: str | None) -> bool:
    """Load *path* into os.environ without overriding existing variables."""
    if not path:
        return False
    if not os.path.isfile(path):
        logger.warning("Env file %s not found, using environment only", path)
        return False
    load_dotenv(dotenv_path=path, override=False)
    logger.info("Loaded environment from %s", path)
    return True


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- .env file <- env vars <- CLI args (highest priority).

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_cli_parser().parse_args(argv)
    load_env_file(args.env_file)

    env = os.environ
    flush_bytes = (
        _parse_int("LOG_ES_FLUSH_BYTES", env["LOG_ES_FLUSH_BYTES"])
        if env.get("LOG_ES_FLUSH_BYTES") else Config.flush_bytes
    )
    flush_interval = (
        _parse_int("LOG_ES_FLUSH_INTERVAL", env["LOG_ES_FLUSH_INTERVAL"])
        if env.get("LOG_ES_FLUSH_INTERVAL") else Config.flush_interval
    )
    op_type = env.get("LOG_ES_OP_TYPE", Config.op_type).strip().lower()
    if op_type not in ("create", "index"):
        raise ValueError(f"LOG_ES_OP_TYPE must be 'create' or 'index', got {op_type!r}")

    return Config(
        node=args.host if args.host is not None else env.get("LOG_ES_HOST", Config.node),
        username=env.get("LOG_ES_USER", Config.username),
        password=env.get("LOG_ES_PASS", Config.password),
        index=args.index if args.index is not None else env.get("LOG_ES_INDEX", Config.index),
        flush_bytes=args.flush_bytes if args.flush_bytes is not None else flush_bytes,
        flush_interval=args.flush_interval if args.flush_interval is not None else flush_interval,
        reject_unauthorized=_parse_bool(env.get("LOG_ES_REJECT_UNAUTHORIZED", "false")),
        op_type=args.op_type if args.op_type is not None else op_type,
        ca_fingerprint=env.get("LOG_ES_CA_FINGERPRINT") or None,
        log_level=env.get("LOG_ES_LOG_LEVEL", Config.log_level).upper(),
        additional_fields=additional_fields_from_env(env),
    )
