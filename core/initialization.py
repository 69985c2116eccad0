"""
core/initialization.py
----------------------
Loads configuration from .env and wires one copy-trading engine with simple
dependency-injection (DI) overrides.
"""

from __future__ import annotations

import os
import logging
from typing import Dict, Optional

from dotenv import load_dotenv

from core.engine import CopyEngine
from module.persistence.sqlite import SQLitePersistence
from modules.account_registry import AccountRegistry
from modules.connection import ConnectionAdapter
from modules.copy_service import CopyServiceClient
from modules.event_subscriber import EventSubscriber
from modules.mirror_executor import MirrorExecutor
from modules.session_manager import SessionManager
from modules.stats import StatsAggregator
from utils.config_manager import ConfigManager
from utils.crypto import TokenCipher
from utils.event_bus import EventBus
from utils.logger import setup_logger


def _split_csv(raw: str) -> list:
    return [s.strip() for s in raw.split(",") if s.strip()]


def load_configuration(env_path: str = "config.env") -> Dict:
    """
    Load settings from an .env-style file and return a structured config dict.
    """
    log = logging.getLogger(__name__)
    load_dotenv(dotenv_path=env_path)

    conf: Dict[str, object] = {
        "DERIV_API": {
            "websocket_url": os.getenv("DERIV_WS_URL", ""),
            "app_id": os.getenv("DERIV_APP_ID", ""),
            "master_token": os.getenv("MASTER_TOKEN"),
        },
        "COPY_TRADER_IDS": _split_csv(os.getenv("COPY_TRADER_IDS", "")),
        "COPY_MASTER_KEY": os.getenv("COPY_MASTER_KEY"),
        "ACCOUNTS_DB": os.getenv("ACCOUNTS_DB", "data/copybot.db"),
        "REQUEST_TIMEOUT": float(os.getenv("REQUEST_TIMEOUT", "15")),
        "HEARTBEAT_INTERVAL": float(os.getenv("HEARTBEAT_INTERVAL", "25")),
        "MAX_TRADES": int(os.getenv("MAX_TRADES", "200")),
    }

    log.debug("Parsed COPY_TRADER_IDS: %s", conf["COPY_TRADER_IDS"])
    log.debug("Accounts DB: %s", conf["ACCOUNTS_DB"])
    return conf


def initialize_components(
    config: Dict,
    overrides: Optional[Dict[str, object]] = None,
) -> CopyEngine:
    """
    Construct and wire together one engine instance (supports DI via overrides).

    Keys you can override:
    {"logger", "bus", "master", "connection_factory", "store", "cipher"}
    """
    overrides = overrides or {}
    cfg = ConfigManager(config)

    # 1) Logger + bus
    logger = overrides.get("logger") or setup_logger("CopyBot")
    bus = overrides.get("bus") or EventBus(logger=logger)

    # 2) Connections – master stream + one channel per linked account
    url = cfg.get_ws_url()
    timeout = cfg.get_request_timeout()
    heartbeat = cfg.get_heartbeat_interval()

    def default_factory(label: str) -> ConnectionAdapter:
        return ConnectionAdapter(
            url, label=label, request_timeout=timeout, heartbeat_interval=heartbeat, logger=logger
        )

    connection_factory = overrides.get("connection_factory") or default_factory
    master = overrides.get("master") or connection_factory("master")

    # 3) Account store (tokens encrypted at rest)
    store = overrides.get("store")
    cipher = overrides.get("cipher")
    if store is None and "store" not in overrides:
        store = SQLitePersistence(cfg.get_accounts_db())
    if store is not None and cipher is None:
        cipher = TokenCipher(cfg.get_master_key())

    # 4) Core components
    registry = AccountRegistry(connection_factory, bus=bus, store=store, cipher=cipher, logger=logger)
    subscriber = EventSubscriber(master, bus=bus, logger=logger)
    executor = MirrorExecutor(master, registry, bus=bus, max_trades=cfg.get_max_trades(), logger=logger)
    sessions = SessionManager(registry, subscriber, bus=bus, logger=logger)
    stats = StatsAggregator(bus)

    logger.info("✅ Engine initialized → %s", url)

    return CopyEngine(
        logger=logger,
        bus=bus,
        master=master,
        registry=registry,
        subscriber=subscriber,
        executor=executor,
        sessions=sessions,
        stats=stats,
        copy_service=CopyServiceClient(master, logger=logger),
    )
