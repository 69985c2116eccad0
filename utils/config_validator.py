def validate_config(config: dict, *, require_master: bool = True):
    required_keys = [
        "DERIV_API",
        "COPY_MASTER_KEY",
    ]

    missing = [k for k in required_keys if k not in config or not config[k]]
    if missing:
        raise ValueError(f"Missing required configuration keys: {missing}")

    if not isinstance(config["DERIV_API"], dict):
        raise TypeError("DERIV_API must be a dictionary.")

    if require_master and not config["DERIV_API"].get("master_token"):
        raise ValueError("DERIV_API.master_token (MASTER_TOKEN) is required.")

    if not isinstance(config.get("COPY_TRADER_IDS", []), list):
        raise TypeError("COPY_TRADER_IDS must be a list.")

    # the master channel streams one account's trades
    if len(config.get("COPY_TRADER_IDS") or []) > 1:
        raise ValueError("COPY_TRADER_IDS accepts a single trader id (the master's loginid).")

    for key in ("REQUEST_TIMEOUT", "HEARTBEAT_INTERVAL"):
        if key in config and float(config[key]) < 0:
            raise ValueError(f"{key} must be >= 0.")
