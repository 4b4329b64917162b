from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .logging_utils import LogConfig

DEFAULT_CONFIG_FILE = "jill-stingray.yml"
DEFAULT_BOT_TOKEN_ENV = "DISCORD_TOKEN"
DEFAULT_APP_ID_ENV = "DISCORD_APP_ID"
DEFAULT_STATE_FILE = ".jill-stingray/state.sqlite3"
DEFAULT_LOG_FILE = ".jill-stingray/logs/bot.log"
DEFAULT_COMMAND_SCOPE = "global"
DEFAULT_MAX_MESSAGE_LENGTH = 2000

# guilds | guild members | guild messages | guild message reactions | message content
DEFAULT_INTENTS = (1 << 0) | (1 << 1) | (1 << 9) | (1 << 10) | (1 << 15)

STORE_ERROR_POLICIES = frozenset({"allow", "deny"})
SESSION_BACKENDS = frozenset({"memory", "sqlite"})


class BotConfigError(Exception):
    """Raised when bot config is invalid."""


@dataclass(frozen=True)
class CommandRegistration:
    enabled: bool
    scope: str
    guild_ids: tuple[str, ...]


@dataclass(frozen=True)
class PolicySettings:
    on_store_error: str = "allow"


@dataclass(frozen=True)
class SessionSettings:
    backend: str = "memory"


@dataclass(frozen=True)
class BotConfig:
    root: Path
    bot_token_env: str
    app_id_env: str
    bot_token: Optional[str]
    application_id: Optional[str]
    command_registration: CommandRegistration
    state_file: Path
    intents: int
    max_message_length: int
    policy: PolicySettings = field(default_factory=PolicySettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)
    log: LogConfig = field(default_factory=lambda: LogConfig(path=None))

    @classmethod
    def from_raw(cls, *, root: Path, raw: dict[str, Any]) -> "BotConfig":
        cfg: dict[str, Any] = raw if isinstance(raw, dict) else {}
        bot_token_env = str(cfg.get("bot_token_env", DEFAULT_BOT_TOKEN_ENV)).strip()
        app_id_env = str(cfg.get("app_id_env", DEFAULT_APP_ID_ENV)).strip()
        if not bot_token_env:
            raise BotConfigError("bot.bot_token_env must be non-empty")
        if not app_id_env:
            raise BotConfigError("bot.app_id_env must be non-empty")

        registration_raw = cfg.get("command_registration")
        registration_cfg = (
            registration_raw if isinstance(registration_raw, dict) else {}
        )
        scope_raw = (
            str(registration_cfg.get("scope", DEFAULT_COMMAND_SCOPE)).strip().lower()
        )
        if scope_raw not in {"global", "guild"}:
            raise BotConfigError(
                "bot.command_registration.scope must be 'global' or 'guild'"
            )
        command_registration = CommandRegistration(
            enabled=_parse_bool_or_default(
                registration_cfg.get("enabled"),
                default=True,
                key="bot.command_registration.enabled",
            ),
            scope=scope_raw,
            guild_ids=tuple(_parse_string_ids(registration_cfg.get("guild_ids"))),
        )

        state_file_value = cfg.get("state_file", DEFAULT_STATE_FILE)
        if not isinstance(state_file_value, str) or not state_file_value.strip():
            raise BotConfigError("bot.state_file must be a string path")

        intents_value = cfg.get("intents", DEFAULT_INTENTS)
        if not isinstance(intents_value, int) or isinstance(intents_value, bool):
            raise BotConfigError("bot.intents must be an integer")
        if intents_value < 0:
            raise BotConfigError("bot.intents must be >= 0")

        max_message_length = _parse_positive_int_or_default(
            cfg.get("max_message_length"),
            default=DEFAULT_MAX_MESSAGE_LENGTH,
            key="bot.max_message_length",
        )
        max_message_length = min(max_message_length, DEFAULT_MAX_MESSAGE_LENGTH)

        policy_raw = cfg.get("policy")
        policy_cfg = policy_raw if isinstance(policy_raw, dict) else {}
        on_store_error = str(policy_cfg.get("on_store_error", "allow")).strip().lower()
        if on_store_error not in STORE_ERROR_POLICIES:
            raise BotConfigError("bot.policy.on_store_error must be 'allow' or 'deny'")

        sessions_raw = cfg.get("sessions")
        sessions_cfg = sessions_raw if isinstance(sessions_raw, dict) else {}
        backend = str(sessions_cfg.get("backend", "memory")).strip().lower()
        if backend not in SESSION_BACKENDS:
            raise BotConfigError("bot.sessions.backend must be 'memory' or 'sqlite'")

        log_raw = cfg.get("log")
        log_cfg = log_raw if isinstance(log_raw, dict) else {}
        log_path_value = log_cfg.get("path", DEFAULT_LOG_FILE)
        log = LogConfig(
            path=(root / log_path_value).resolve()
            if isinstance(log_path_value, str) and log_path_value.strip()
            else None,
            level=str(log_cfg.get("level", "INFO")).upper(),
            max_bytes=_parse_positive_int_or_default(
                log_cfg.get("max_bytes"),
                default=5 * 1024 * 1024,
                key="bot.log.max_bytes",
            ),
            backup_count=_parse_positive_int_or_default(
                log_cfg.get("backup_count"), default=3, key="bot.log.backup_count"
            ),
        )

        return cls(
            root=root,
            bot_token_env=bot_token_env,
            app_id_env=app_id_env,
            bot_token=os.environ.get(bot_token_env),
            application_id=os.environ.get(app_id_env),
            command_registration=command_registration,
            state_file=(root / state_file_value).resolve(),
            intents=intents_value,
            max_message_length=max_message_length,
            policy=PolicySettings(on_store_error=on_store_error),
            sessions=SessionSettings(backend=backend),
            log=log,
        )

    def require_credentials(self) -> tuple[str, str]:
        if not self.bot_token:
            raise BotConfigError(f"missing bot token env '{self.bot_token_env}'")
        if not self.application_id:
            raise BotConfigError(f"missing application id env '{self.app_id_env}'")
        return self.bot_token, self.application_id


def load_bot_config(path: Optional[Path] = None) -> BotConfig:
    """Load `bot:` from a YAML file; a missing file yields defaults."""

    config_path = path or Path.cwd() / DEFAULT_CONFIG_FILE
    if config_path.is_dir():
        config_path = config_path / DEFAULT_CONFIG_FILE
    raw: Any = {}
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise BotConfigError(f"invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise BotConfigError(f"{config_path} must contain a mapping")
    bot_raw = raw.get("bot", {}) if isinstance(raw, dict) else {}
    return BotConfig.from_raw(
        root=config_path.parent.resolve(),
        raw=bot_raw if isinstance(bot_raw, dict) else {},
    )


def _parse_string_ids(value: Any) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    parsed: list[str] = []
    for item in items:
        token = str(item).strip()
        if token:
            parsed.append(token)
    return parsed


def _parse_positive_int_or_default(value: Any, *, default: int, key: str) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise BotConfigError(f"{key} must be an integer") from exc
    if parsed <= 0:
        return default
    return parsed


def _parse_bool_or_default(value: Any, *, default: bool, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise BotConfigError(f"{key} must be a boolean")
