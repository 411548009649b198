"""Builders for outbound command messages and parsing of inbound text messages."""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .exceptions import SubscriptionError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "FT3.0"

# Message codes (field 64)
MSG_LOGIN = 101
MSG_PAUSE_RESUME = 106
MSG_BEST_FIVE = 127
MSG_TOUCHLINE = 206
MSG_LTP_TOUCHLINE = 347

# Field 230
ACTION_SUBSCRIBE = 1
ACTION_UNSUBSCRIBE = 2

TOKEN_SEPARATOR = "_"

TokenPair = Tuple[int, int]


def format_time(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%H:%M:%S")


def _header(message_code: int, message_type: int, now: Optional[datetime]) -> str:
    return f"63={PROTOCOL_VERSION}|64={message_code}|65={message_type}|66={format_time(now)}|"


def build_login(user_id: str, api_key: str = "", now: Optional[datetime] = None) -> str:
    """Login message; an API key switches the password field to key auth."""
    if api_key and api_key.strip():
        password = f"68={api_key}|401=2"
    else:
        password = "68="
    return f"{_header(MSG_LOGIN, 74, now)}67={user_id}|{password}"


def parse_token_list(
    tokens: Iterable[str],
    on_invalid: Optional[Callable[[str], None]] = None
) -> List[TokenPair]:
    """
    Parse ``"<segment>_<token>"`` entries into integer pairs.

    Blank entries are skipped silently. Malformed entries are reported through
    ``on_invalid`` and skipped.
    """
    pairs: List[TokenPair] = []

    for item in tokens:
        if item is None or not item.strip():
            continue

        parts = item.split(TOKEN_SEPARATOR)
        try:
            if len(parts) != 2:
                raise ValueError(item)
            pairs.append((int(parts[0]), int(parts[1])))
        except ValueError:
            error_msg = f"Invalid token format: '{item}'. Expected format: 'MarketSegmentID_Token'."
            logger.warning(error_msg)
            if on_invalid:
                on_invalid(error_msg)

    return pairs


def _token_block(pairs: List[TokenPair]) -> str:
    if not pairs:
        raise SubscriptionError("No valid tokens found to subscribe.")
    return "".join(f"1={segment}$7={token}|" for segment, token in pairs)


def build_touchline_subscribe(
    pairs: List[TokenPair],
    response_type: str = "0",
    ltp_change_only: bool = False,
    now: Optional[datetime] = None
) -> str:
    """
    Touchline subscription.

    Args:
        pairs: (market segment, token) pairs
        response_type: "1" for fixed-length native data, "0" for text
        ltp_change_only: Only push updates when the LTP changes
    """
    if response_type not in ("0", "1"):
        raise SubscriptionError("Invalid response type passed. Valid values are 0 or 1")

    tokens = _token_block(pairs)
    ltp_flag = "200=1" if ltp_change_only else "200=0"
    native = "49=1|" if response_type == "1" else ""
    return f"{_header(MSG_TOUCHLINE, 84, now)}{native}{ltp_flag}|{tokens}230={ACTION_SUBSCRIBE}"


def build_touchline_unsubscribe(pairs: List[TokenPair], now: Optional[datetime] = None) -> str:
    tokens = _token_block(pairs)
    return f"{_header(MSG_TOUCHLINE, 84, now)}4=|{tokens}230={ACTION_UNSUBSCRIBE}"


def build_ltp_touchline(
    pairs: List[TokenPair],
    subscribe: bool = True,
    now: Optional[datetime] = None
) -> str:
    tokens = _token_block(pairs)
    action = ACTION_SUBSCRIBE if subscribe else ACTION_UNSUBSCRIBE
    return f"{_header(MSG_LTP_TOUCHLINE, 84, now)}{tokens}230={action}"


def build_best_five(
    token: str,
    market_segment_id: int,
    subscribe: bool = True,
    now: Optional[datetime] = None
) -> str:
    """Market depth (best five) request for a single instrument."""
    if token is None or not str(token).strip():
        raise SubscriptionError("Token cannot be null or empty.")
    if market_segment_id <= 0:
        raise SubscriptionError("Invalid MarketSegment.")

    action = ACTION_SUBSCRIBE if subscribe else ACTION_UNSUBSCRIBE
    return f"{_header(MSG_BEST_FIVE, 84, now)}1={market_segment_id}|7={token}|230={action}"


def build_pause_resume(is_pause: bool, now: Optional[datetime] = None) -> str:
    action = ACTION_SUBSCRIBE if is_pause else ACTION_UNSUBSCRIBE
    return f"{_header(MSG_PAUSE_RESUME, 84, now)}230={action}"


def parse_message(message: str) -> Dict[str, str]:
    """
    Split a pipe-delimited message into a ``key -> value`` mapping.

    Tokens without ``=`` are ignored; a repeated key keeps its last value.
    """
    result: Dict[str, str] = {}
    for token in message.split("|"):
        if "=" not in token:
            continue
        key, value = token.split("=", 1)
        result[key] = value
    return result
