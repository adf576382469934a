from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = 'https://api.amadeus.com'
TEST_BASE_URL = 'https://test.api.amadeus.com'


def project_root_dir() -> Path:
    # For dev runs, keep config.env next to the source files.
    return Path(__file__).resolve().parent


def _candidate_dotenv_paths() -> list[Path]:
    """Return candidate locations for config.env.

    Precedence rule (first existing file wins):
    1) next to the sources
    2) current working directory
    """
    candidates = [project_root_dir() / 'config.env', Path.cwd() / 'config.env']

    # De-dup while preserving order
    out: list[Path] = []
    seen: set[str] = set()
    for p in candidates:
        key = str(p.resolve())
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def dotenv_path() -> Path:
    """Return the first existing config.env candidate, otherwise the dev default."""
    for p in _candidate_dotenv_paths():
        if p.is_file():
            return p
    return project_root_dir() / 'config.env'


def _is_placeholder(value: str) -> bool:
    v = (value or '').strip()
    if not v:
        return True
    # Only reject obvious placeholders, not values that could be real credentials
    return v.lower() in {'x', 'y', 'your_client_id', 'your_client_secret',
                         'your_api_key_here', 'your_api_secret_here',
                         'placeholder', 'example', 'test'}


def load_dotenv_once() -> Optional[Path]:
    """Load config.env if present.

    Values already in the environment win, unless the Amadeus credentials
    there are missing or placeholders.
    """
    env_path = dotenv_path()
    if not env_path.is_file():
        return None

    current_id = os.getenv('AMADEUS_CLIENT_ID') or ''
    current_secret = os.getenv('AMADEUS_CLIENT_SECRET') or ''
    should_override = _is_placeholder(current_id) or _is_placeholder(current_secret)

    load_dotenv(dotenv_path=str(env_path), override=should_override)
    return env_path


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default


@dataclass(frozen=True)
class LoadedConfig:
    amadeus_client_id: str
    amadeus_client_secret: str
    amadeus_base_url: str
    currency: str
    min_request_interval: float
    loaded_from: Optional[Path]

    @property
    def has_amadeus(self) -> bool:
        return bool(self.amadeus_client_id and self.amadeus_client_secret)

    def to_amadeus_config(self):
        """Build the client configuration, failing fast without credentials."""
        from amadeus_client import AmadeusConfig, AuthenticationFailed

        if not self.has_amadeus:
            raise AuthenticationFailed(config_help_text())

        return AmadeusConfig(
            client_id=self.amadeus_client_id,
            client_secret=self.amadeus_client_secret,
            base_url=self.amadeus_base_url,
            currency=self.currency,
            min_request_interval=self.min_request_interval,
        )


def load_config() -> LoadedConfig:
    """Load credentials and settings from environment variables and/or config.env.

    The project uses config.env as the file containing:
      - AMADEUS_CLIENT_ID
      - AMADEUS_CLIENT_SECRET
      - optional: AMADEUS_BASE_URL, or AMADEUS_API_ENV=production|test
      - optional: DEFAULT_CURRENCY (USD)
      - optional: AMADEUS_MIN_REQUEST_INTERVAL (seconds, default 0.1)

    We only read config.env; we never modify it.
    """
    loaded_from = load_dotenv_once()

    aid = (os.getenv('AMADEUS_CLIENT_ID') or '').strip()
    asec = (os.getenv('AMADEUS_CLIENT_SECRET') or '').strip()

    # Treat placeholder values as "not configured".
    if _is_placeholder(aid):
        if aid:
            logger.warning("AMADEUS_CLIENT_ID contains a placeholder value. Please set your real Amadeus credentials in config.env")
        aid = ''
    if _is_placeholder(asec):
        if asec:
            logger.warning("AMADEUS_CLIENT_SECRET contains a placeholder value. Please set your real Amadeus credentials in config.env")
        asec = ''

    base_url = (os.getenv('AMADEUS_BASE_URL') or '').strip().rstrip('/')
    if not base_url:
        env = (os.getenv('AMADEUS_API_ENV') or 'test').strip().lower()
        base_url = PRODUCTION_BASE_URL if env == 'production' else TEST_BASE_URL

    currency = (os.getenv('DEFAULT_CURRENCY') or 'USD').strip().upper()

    return LoadedConfig(
        amadeus_client_id=aid,
        amadeus_client_secret=asec,
        amadeus_base_url=base_url,
        currency=currency,
        min_request_interval=_float_env('AMADEUS_MIN_REQUEST_INTERVAL', 0.1),
        loaded_from=loaded_from,
    )


def _mask(s: str) -> str:
    if not s:
        return ''
    if len(s) <= 6:
        return '*' * len(s)
    return f"{s[:3]}***{s[-3:]}"


def config_diagnostics() -> str:
    """Human-readable diagnostics for config/env loading (no secrets leaked)."""
    cfg = load_config()

    lines = []
    lines.append(f"CWD: {Path.cwd()}")
    lines.append(f"Resolved config.env: {dotenv_path()}")
    lines.append("Candidates searched:")
    for p in _candidate_dotenv_paths():
        lines.append(f"  - {p} (exists={p.is_file()})")

    lines.append(f"Loaded from: {cfg.loaded_from}")
    lines.append(f"Base URL: {cfg.amadeus_base_url}")
    lines.append(f"Currency: {cfg.currency}")
    lines.append(f"AMADEUS_CLIENT_ID: {_mask(cfg.amadeus_client_id)}")
    lines.append(f"AMADEUS_CLIENT_SECRET: {_mask(cfg.amadeus_client_secret)}")
    return "\n".join(lines)


def config_help_text() -> str:
    return (
        'No Amadeus credentials configured. Create a config.env file containing:\n\n'
        '  AMADEUS_CLIENT_ID=...\n'
        '  AMADEUS_CLIENT_SECRET=...\n\n'
        f'config.env location (first found): {dotenv_path()}\n'
    )
