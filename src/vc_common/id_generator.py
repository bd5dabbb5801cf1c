"""Request ids for card-provider calls.

The provider de-duplicates money-moving calls on `requestId`, so every
create/recharge/withdraw/release gets a fresh one: PREFIX_<epoch ms>_<8 hex>.
"""

import secrets
import time

CREATE_PREFIX = "CC"
RECHARGE_PREFIX = "RC"
WITHDRAW_PREFIX = "WD"
RELEASE_PREFIX = "RL"
COMPENSATION_RECHARGE_PREFIX = "CR"


def new_request_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
