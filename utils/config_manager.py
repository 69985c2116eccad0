from typing import Any, Dict, List, Optional

DEFAULT_WS_URL = "wss://ws.derivws.com/websockets/v3"
DEFAULT_APP_ID = "1089"


class ConfigManager:
    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def get_ws_url(self) -> str:
        api = self.config.get("DERIV_API", {}) or {}
        url = api.get("websocket_url") or self.config.get("WEBSOCKET_URL") or DEFAULT_WS_URL
        app_id = api.get("app_id") or DEFAULT_APP_ID
        if "app_id=" in url:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}app_id={app_id}"

    def get_master_token(self) -> Optional[str]:
        return (self.config.get("DERIV_API", {}) or {}).get("master_token") or None

    def get_trader_ids(self) -> List[str]:
        return self.config.get("COPY_TRADER_IDS") or []

    def get_master_key(self) -> Optional[str]:
        return self.config.get("COPY_MASTER_KEY") or None

    def get_accounts_db(self) -> str:
        return self.config.get("ACCOUNTS_DB") or "data/copybot.db"

    def get_request_timeout(self) -> float:
        return float(self.config.get("REQUEST_TIMEOUT", 15))

    def get_heartbeat_interval(self) -> float:
        return float(self.config.get("HEARTBEAT_INTERVAL", 25))

    def get_max_trades(self) -> int:
        return int(self.config.get("MAX_TRADES", 200))
