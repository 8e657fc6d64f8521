from __future__ import annotations

"""
ClearNode RPC envelope: request builders and inbound frame parsing.

Wire shape (compact Nitrolite envelope)
---------------------------------------
Request : {"req": [request_id, method, params, timestamp_ms], "sig": ["0x.."]}
Response: {"res": [request_id, method, result, timestamp_ms], "sig": ["0x.."]}
Error   : {"res": [request_id, "error", {"error": "message"}, timestamp_ms]}

The signature covers the compact JSON encoding of the ``req`` array. The
``auth_request`` opener is unsigned (``"sig": []``); every later request is
signed by the operator key.

Inbound frames are parsed into a small tagged union (:class:`ResponseFrame`,
:class:`ErrorFrame`, :class:`ChallengeFrame`, :class:`AuthResultFrame`,
:class:`NoticeFrame`) so the client has a single dispatch point. Plain JSON-RPC
2.0 shaped frames (``id`` + ``result``/``error``, or ``method`` + ``params``)
are accepted too.
"""

import json
import time
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from .signer import RawSigner
from .types import Address, AppSession

JSON = Union[dict, list, str, int, float, bool, None]

# Method names are fixed by the ClearNode wire contract.
AUTH_REQUEST = "auth_request"
AUTH_CHALLENGE = "auth_challenge"
AUTH_VERIFY = "auth_verify"
GET_LEDGER_BALANCES = "get_ledger_balances"
GET_CHANNELS = "get_channels"
CREATE_APP_SESSION = "create_app_session"
ERROR = "error"


def now_ms() -> int:
    return int(time.time() * 1000)


def canonical_json(obj: JSON) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def request_ids(start: Optional[int] = None) -> Iterator[int]:
    """Monotonic request ids, seeded from the wall clock so restarts don't reuse ids."""
    return count(start=now_ms() if start is None else start)


# --------------------------------------------------------------------------- #
# Outbound
# --------------------------------------------------------------------------- #


@dataclass(slots=True, frozen=True)
class OutboundRequest:
    request_id: int
    method: str
    text: str


def build_request(
    method: str,
    params: JSON,
    *,
    request_id: int,
    signer: Optional[RawSigner] = None,
    timestamp: Optional[int] = None,
) -> OutboundRequest:
    req = [request_id, method, params, now_ms() if timestamp is None else timestamp]
    sigs: List[str] = []
    if signer is not None:
        sigs.append(signer.sign_raw(canonical_json(req).encode("utf-8")))
    return OutboundRequest(request_id, method, canonical_json({"req": req, "sig": sigs}))


def create_auth_request(
    *,
    address: Address,
    session_key: Address,
    application: str,
    expires_at: int,
    scope: str = "console",
    allowances: Sequence[Dict[str, str]] = (),
    request_id: int,
    timestamp: Optional[int] = None,
) -> OutboundRequest:
    params = {
        "address": address,
        "session_key": session_key,
        "application": application,
        "allowances": list(allowances),
        "expires_at": expires_at,
        "scope": scope,
    }
    return build_request(AUTH_REQUEST, params, request_id=request_id, timestamp=timestamp)


def create_auth_verify(
    signer: RawSigner, challenge: str, *, request_id: int, timestamp: Optional[int] = None
) -> OutboundRequest:
    return build_request(
        AUTH_VERIFY, {"challenge": challenge}, request_id=request_id, signer=signer, timestamp=timestamp
    )


def create_get_ledger_balances(
    signer: RawSigner, participant: Address, *, request_id: int, timestamp: Optional[int] = None
) -> OutboundRequest:
    return build_request(
        GET_LEDGER_BALANCES, {"participant": participant}, request_id=request_id, signer=signer, timestamp=timestamp
    )


def create_get_channels(
    signer: RawSigner, participant: Address, *, request_id: int, timestamp: Optional[int] = None
) -> OutboundRequest:
    return build_request(
        GET_CHANNELS, {"participant": participant}, request_id=request_id, signer=signer, timestamp=timestamp
    )


def create_app_session_request(
    signer: RawSigner, session: AppSession, *, request_id: int, timestamp: Optional[int] = None
) -> OutboundRequest:
    return build_request(
        CREATE_APP_SESSION, session.to_wire(), request_id=request_id, signer=signer, timestamp=timestamp
    )


# --------------------------------------------------------------------------- #
# Inbound
# --------------------------------------------------------------------------- #


@dataclass(slots=True, frozen=True)
class ResponseFrame:
    request_id: Optional[int]
    method: str
    result: JSON


@dataclass(slots=True, frozen=True)
class ErrorFrame:
    request_id: Optional[int]
    message: str
    code: Optional[int] = None


@dataclass(slots=True, frozen=True)
class ChallengeFrame:
    request_id: Optional[int]
    challenge: str


@dataclass(slots=True, frozen=True)
class AuthResultFrame:
    request_id: Optional[int]
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class NoticeFrame:
    """Server push that answers no request (balance updates, asset lists, ...)."""

    method: str
    payload: JSON


Frame = Union[ResponseFrame, ErrorFrame, ChallengeFrame, AuthResultFrame, NoticeFrame]


def _coerce_id(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    return None


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        msg = payload.get("error", payload.get("message"))
        if isinstance(msg, dict):
            msg = msg.get("message")
        if msg:
            return str(msg)
    elif isinstance(payload, str) and payload:
        return payload
    return "Request failed"


def _classify(request_id: Optional[int], method: str, payload: Any) -> Frame:
    if method == ERROR:
        return ErrorFrame(request_id, _error_message(payload))
    if method == AUTH_CHALLENGE:
        challenge = ""
        if isinstance(payload, dict):
            challenge = str(payload.get("challenge_message") or payload.get("challenge") or "")
        return ChallengeFrame(request_id, challenge)
    if method == AUTH_VERIFY:
        body = payload if isinstance(payload, dict) else {}
        return AuthResultFrame(request_id, bool(body.get("success")), dict(body))
    if request_id is None:
        return NoticeFrame(method, payload)
    return ResponseFrame(request_id, method, payload)


def parse_frame(raw: Union[str, bytes]) -> Frame:
    """
    Parse one inbound text frame.

    Raises ValueError for anything that is not a recognizable envelope; the
    client logs and drops such frames.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("frame is not a JSON object")

    res = data.get("res")
    if res is None and data.get("err") is not None:
        res = data["err"]
    if isinstance(res, list):
        if len(res) < 3:
            raise ValueError("response envelope too short")
        return _classify(_coerce_id(res[0]), str(res[1]), res[2])

    # JSON-RPC 2.0 shapes
    if "id" in data and ("result" in data or "error" in data):
        rid = _coerce_id(data.get("id"))
        err = data.get("error")
        if err is not None:
            code = err.get("code") if isinstance(err, dict) else None
            return ErrorFrame(rid, _error_message(err), int(code) if isinstance(code, int) else None)
        method = str(data.get("method") or "")
        return _classify(rid, method, data.get("result"))
    if "method" in data:
        return _classify(_coerce_id(data.get("id")), str(data["method"]), data.get("params"))

    raise ValueError("unrecognized frame")


__all__ = [
    "AUTH_REQUEST",
    "AUTH_CHALLENGE",
    "AUTH_VERIFY",
    "GET_LEDGER_BALANCES",
    "GET_CHANNELS",
    "CREATE_APP_SESSION",
    "OutboundRequest",
    "ResponseFrame",
    "ErrorFrame",
    "ChallengeFrame",
    "AuthResultFrame",
    "NoticeFrame",
    "Frame",
    "build_request",
    "canonical_json",
    "create_auth_request",
    "create_auth_verify",
    "create_get_ledger_balances",
    "create_get_channels",
    "create_app_session_request",
    "now_ms",
    "parse_frame",
    "request_ids",
]
