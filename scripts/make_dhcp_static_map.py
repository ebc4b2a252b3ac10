#!/usr/bin/python3
import json
import os
from datetime import datetime, timezone
from pathlib import Path

ROOT_PATH = Path(os.getenv("ROOT_PATH", Path(__file__).resolve().parents[1]))
CONFIG_DIR = ROOT_PATH / "leasekeeper" / "config"
CONFIG_DIR.mkdir(exist_ok=True)

dhcp_static_map = {
    "timestamp": datetime.now(timezone.utc).isoformat(),
    "payload": {
        "D0:DB:B7:6A:2C:98": "134.130.172.10",
        "3C:2A:F4:10:24:2F": "134.130.172.11",
        "E4:C3:2A:03:19:3E": "134.130.173.20",
    },
}

with open(CONFIG_DIR / "dhcp_static_map.json", "w", encoding="utf-8") as f:
    json.dump(dhcp_static_map, f, indent=4, ensure_ascii=False)
