import json
import uuid
from datetime import datetime, timezone

import pytest

from netlabs.calc_protocol import (
    CalcRequest,
    ErrorCode,
    MathOperation,
    OperationType,
    ProtocolError,
    ProtocolMessage,
    compute,
)

STAMP = datetime(2024, 1, 1, 12, 34, 56, tzinfo=timezone.utc)


def test_creation_requete_calcul():
    request = CalcRequest(MathOperation.ADDITION, 5.0, 3.0)
    message = ProtocolMessage.calc_request("test_session", request)
    assert message.type is OperationType.CALCULATION
    assert message.session_id == "test_session"


def test_calcul_addition():
    assert compute(CalcRequest(MathOperation.ADDITION, 5.0, 3.0)) == 8.0


def test_calcul_division_par_zero():
    with pytest.raises(ValueError):
        compute(CalcRequest(MathOperation.DIVISION, 5.0, 0.0))


def test_serialisation_deserialisation():
    request = CalcRequest(MathOperation.MULTIPLICATION, 4.0, 7.0)
    message = ProtocolMessage.calc_request("session123", request)
    restored = ProtocolMessage.from_json(message.to_json())
    assert restored.type == message.type
    assert restored.session_id == message.session_id
    assert restored.request == request
    assert restored.id == message.id


@pytest.mark.parametrize(
    ("operation", "a", "b", "expected"),
    [
        (MathOperation.SUBTRACTION, 10.0, 4.0, 6.0),
        (MathOperation.MULTIPLICATION, 4.0, 7.0, 28.0),
        (MathOperation.DIVISION, 10.0, 4.0, 2.5),
        (MathOperation.POWER, 2.0, 10.0, 1024.0),
        (MathOperation.SQUARE_ROOT, 9.0, None, 3.0),
        (MathOperation.FACTORIAL, 5.0, None, 120.0),
        (MathOperation.FACTORIAL, 0.0, None, 1.0),
        (MathOperation.FIBONACCI, 0.0, None, 0.0),
        (MathOperation.FIBONACCI, 1.0, None, 1.0),
        (MathOperation.FIBONACCI, 10.0, None, 55.0),
        (MathOperation.FIBONACCI, 78.0, None, 8944394323791464.0),
    ],
)
def test_compute_values(operation, a, b, expected):
    assert compute(CalcRequest(operation, a, b)) == expected


@pytest.mark.parametrize(
    "request_",
    [
        CalcRequest(MathOperation.ADDITION, 1.0),
        CalcRequest(MathOperation.POWER, 1.0),
        CalcRequest(MathOperation.SQUARE_ROOT, -1.0),
        CalcRequest(MathOperation.FACTORIAL, -1.0),
        CalcRequest(MathOperation.FACTORIAL, 2.5),
        CalcRequest(MathOperation.FACTORIAL, 171.0),
        CalcRequest(MathOperation.FIBONACCI, 79.0),
        CalcRequest(MathOperation.FIBONACCI, 1.5),
    ],
)
def test_compute_errors(request_):
    with pytest.raises(ValueError):
        compute(request_)


def test_factorial_limit_value():
    result = compute(CalcRequest(MathOperation.FACTORIAL, 170.0))
    assert result == pytest.approx(7.257415615307999e306, rel=1e-12)


def test_power_of_negative_base_with_fraction_is_nan():
    result = compute(CalcRequest(MathOperation.POWER, -8.0, 0.5))
    assert repr(result) == "nan"


def test_bytes_round_trip_reports_consumed_length():
    message = ProtocolMessage.connect("alpha")
    raw = message.to_bytes()
    assert int.from_bytes(raw[:4], "big") == len(raw) - 4
    restored, consumed = ProtocolMessage.from_bytes(raw + b"extra")
    assert consumed == len(raw)
    assert restored.type is OperationType.CONNECT
    assert restored.session_id == "alpha"


@pytest.mark.parametrize("cut", [0, 3, 10])
def test_from_bytes_incomplete(cut):
    raw = ProtocolMessage.ping().to_bytes()
    with pytest.raises(ProtocolError):
        ProtocolMessage.from_bytes(raw[:cut])


def test_from_json_rejects_garbage():
    with pytest.raises(ProtocolError):
        ProtocolMessage.from_json("[1, 2]")
    with pytest.raises(ProtocolError):
        ProtocolMessage.from_json("not json")


def test_wire_format_names():
    request = CalcRequest(MathOperation.SQUARE_ROOT, 9.0)
    payload = json.loads(ProtocolMessage.calc_request("s", request).to_json())
    assert payload["type_operation"] == "Calcul"
    assert payload["requete_calcul"] == {
        "operation": "Racine", "operande1": 9.0, "operande2": None
    }


def test_error_message_data():
    message = ProtocolMessage.error(ErrorCode.DIVISION_BY_ZERO, "Division by zero")
    restored = ProtocolMessage.from_json(message.to_json())
    assert restored.data == {"code": "DIVISION_BY_ZERO", "description": "Division by zero"}


def test_pong_carries_ping_id():
    ping = ProtocolMessage.ping()
    assert ProtocolMessage.pong(ping.id).data == str(ping.id)


def test_result_keeps_request_id():
    request_id = uuid.uuid4()
    message = ProtocolMessage.calc_result(request_id, 8.0, "details")
    assert message.id == request_id
    assert message.result == 8.0
    assert message.content == "details"


def test_str_formats():
    request = CalcRequest(MathOperation.ADDITION, 5.0, 3.0)
    calc = ProtocolMessage(OperationType.CALCULATION, request=request, timestamp=STAMP)
    assert str(calc) == "[12:34:56] Calcul: Addition(5, Some(3.0))"
    result = ProtocolMessage(OperationType.CALCULATION_RESULT, result=8.0, timestamp=STAMP)
    assert str(result) == "[12:34:56] Result: 8"
    error = ProtocolMessage(OperationType.ERROR, timestamp=STAMP)
    assert str(error) == "[12:34:56] ERROR: Unknown error"
    ping = ProtocolMessage(OperationType.PING, timestamp=STAMP)
    assert str(ping) == "[12:34:56] Ping"


def test_timestamp_with_nanoseconds_is_accepted():
    payload = json.loads(ProtocolMessage.ping().to_json())
    payload["timestamp"] = "2024-01-01T12:34:56.123456789Z"
    restored = ProtocolMessage.from_json(json.dumps(payload))
    assert restored.timestamp == datetime(2024, 1, 1, 12, 34, 56, 123456, tzinfo=timezone.utc)