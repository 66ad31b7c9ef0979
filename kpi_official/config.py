"""Configuration management for kpi-official.

This module centralizes file-system paths, environment variables, and split
configuration loaders used by the discovery and extraction pipeline.

Split configuration files
-------------------------
* ``config.json``: shared tuning knobs (auto-search defaults, HTTP, OCR,
  candidate scoring, proximity windows, per-ticker crawl seeds)
* ``kpis.json``: KPI definitions (pattern banks, unit kinds, plausibility bounds)
* ``catalog.json``: company and KPI display catalog used to build the dataset
* ``official_sources.json``: example sources file consumed by the CLI

Environment variables
---------------------
``AUDIT_DIR``, ``LOGS_DIR``, and ``TEMP_DIR`` override default
directories. ``TESSERACT_PATH`` points at an explicit OCR binary and
``MISTRAL_API_KEY`` enables the embedded OCR engine. Directories are created
eagerly on import so downstream callers can rely on their existence.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = Path(os.getenv("KPI_CONFIG_DIR", PROJECT_ROOT / "config"))
AUDIT_DIR = Path(os.getenv("AUDIT_DIR", PROJECT_ROOT / "audit"))
LOGS_DIR = Path(os.getenv("LOGS_DIR", PROJECT_ROOT / "logs"))
TEMP_DIR = Path(os.getenv("TEMP_DIR", PROJECT_ROOT / "temp"))

# Ensure directories exist
AUDIT_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)
TEMP_DIR.mkdir(parents=True, exist_ok=True)

# External services and binaries
MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY", "")
TESSERACT_PATH = os.getenv("TESSERACT_PATH", "")


class ConfigError(Exception):
    """Raised when a configuration or sources file is missing or malformed."""


def setup_logging(name: str = "kpi_official") -> logging.Logger:
    """Configure a console+file logger if not already present.

    Parameters
    ----------
    name : str, optional
        Logger namespace; reused to avoid duplicate handlers.

    Returns
    -------
    logging.Logger
        Logger with INFO-level console handler and DEBUG-level daily file
        handler under ``LOGS_DIR``.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

        # File handler
        log_filename = f"{datetime.now(UTC).strftime('%Y-%m-%d')}_run.log"
        file_handler = logging.FileHandler(LOGS_DIR / log_filename)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def _load_json(path: Path, description: str) -> dict[str, Any]:
    """Read a JSON object from ``path`` or raise :class:`ConfigError`."""
    if not path.exists():
        msg = f"{description} not found: {path}"
        raise ConfigError(msg)

    try:
        with path.open(encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as err:
        msg = f"{description} is not valid JSON: {path} ({err})"
        raise ConfigError(msg) from err

    if not isinstance(payload, dict):
        msg = f"{description} must contain a JSON object: {path}"
        raise ConfigError(msg)
    return payload


def get_config() -> dict[str, Any]:
    """Load the shared project configuration.

    Returns
    -------
    dict[str, Any]
        Parsed contents of ``config/config.json`` (``auto``, ``http``, ``ocr``,
        ``scoring``, ``extraction`` and ``seeds`` blocks).

    Raises
    ------
    ConfigError
        If ``config/config.json`` is missing or not valid JSON.
    """
    return _load_json(CONFIG_DIR / "config.json", "Configuration file")


def get_kpi_specs() -> dict[str, Any]:
    """Load KPI definitions from ``kpis.json``.

    Returns
    -------
    dict[str, Any]
        Mapping of KPI key to its raw definition block.

    Raises
    ------
    ConfigError
        If the file is missing or cannot be parsed.
    """
    return _load_json(CONFIG_DIR / "kpis.json", "KPI specs")


def get_catalog() -> dict[str, Any]:
    """Load the company/KPI display catalog from ``catalog.json``."""
    return _load_json(CONFIG_DIR / "catalog.json", "KPI catalog")


def load_sources(path: Path) -> dict[str, Any]:
    """Load a sources file describing explicit entries and discovery settings.

    Parameters
    ----------
    path : Path
        JSON file with ``asOf``, an optional top-level ``auto`` block and one
        block per ticker.

    Returns
    -------
    dict[str, Any]
        Parsed sources mapping.

    Raises
    ------
    ConfigError
        If the file is missing or malformed. This is the only fatal error of
        a run.
    """
    return _load_json(Path(path), "Sources file")


def get_mistral_client() -> Any:
    """Instantiate the synchronous Mistral SDK client used for OCR.

    Returns
    -------
    mistralai.Mistral
        Client configured with ``MISTRAL_API_KEY``.

    Raises
    ------
    ValueError
        If ``MISTRAL_API_KEY`` is absent.
    """
    if not MISTRAL_API_KEY:
        msg = "MISTRAL_API_KEY is not set"
        raise ValueError(msg)

    from mistralai import Mistral

    return Mistral(api_key=MISTRAL_API_KEY)

