import json
from http import HTTPStatus

import pytest

from maco import errors
from maco.errors import Code, GrpcCode, MacoError, StatusError


def test_http_codes_pinned_by_source():
    assert Code.CLIENT_CLOSED.to_http_code() == 499
    assert Code.NOT_FOUND.to_http_code() == HTTPStatus.NOT_FOUND
    assert Code.UNKNOWN.to_http_code() == HTTPStatus.INTERNAL_SERVER_ERROR
    assert Code.GATEWAY_TIMEOUT.to_http_code() == HTTPStatus.GATEWAY_TIMEOUT


@pytest.mark.parametrize("code", [c for c in Code if c is not Code.UNKNOWN])
def test_http_round_trip(code):
    assert errors.from_http_code(code.to_http_code()) == code


def test_unknown_maps_to_internal_via_http():
    assert errors.from_http_code(Code.UNKNOWN.to_http_code()) == Code.INTERNAL


def test_unmapped_http_status_is_unknown():
    assert errors.from_http_code(418) == Code.UNKNOWN


@pytest.mark.parametrize("code", [c for c in Code if c is not Code.GATEWAY_TIMEOUT])
def test_grpc_round_trip(code):
    assert errors.from_grpc_code(code.to_grpc_code()) == code


def test_gateway_timeout_grpc_asymmetry():
    assert Code.GATEWAY_TIMEOUT.to_grpc_code() == GrpcCode.DEADLINE_EXCEEDED
    assert errors.from_grpc_code(GrpcCode.DEADLINE_EXCEEDED) == Code.UNAVAILABLE


@pytest.mark.parametrize(
    "grpc_code, expected",
    [
        (GrpcCode.FAILED_PRECONDITION, Code.FORBIDDEN),
        (GrpcCode.ABORTED, Code.CONFLICT),
        (GrpcCode.OUT_OF_RANGE, Code.BAD_REQUEST),
        (GrpcCode.DATA_LOSS, Code.INTERNAL),
        (GrpcCode.UNAUTHENTICATED, Code.UNAUTHORIZED),
        (GrpcCode.CANCELLED, Code.CLIENT_CLOSED),
    ],
)
def test_from_grpc_code_many_to_one(grpc_code, expected):
    assert errors.from_grpc_code(grpc_code) == expected


def test_from_grpc_code_out_of_range_is_unknown():
    assert errors.from_grpc_code(99) == Code.UNKNOWN


@pytest.mark.parametrize(
    "factory, code",
    [
        (errors.new_unknown, Code.UNKNOWN),
        (errors.new_internal, Code.INTERNAL),
        (errors.new_bad_request, Code.BAD_REQUEST),
        (errors.new_unauthorized, Code.UNAUTHORIZED),
        (errors.new_forbidden, Code.FORBIDDEN),
        (errors.new_not_found, Code.NOT_FOUND),
        (errors.new_conflict, Code.CONFLICT),
        (errors.new_too_many_requests, Code.TOO_MANY_REQUESTS),
        (errors.new_client_closed, Code.CLIENT_CLOSED),
        (errors.new_not_implemented, Code.NOT_IMPLEMENTED),
        (errors.new_unavailable, Code.UNAVAILABLE),
        (errors.new_gateway_timeout, Code.GATEWAY_TIMEOUT),
    ],
)
def test_constructors(factory, code):
    err = factory("detail text")
    assert err.code == code
    assert err.detail == "detail text"
    assert err.message == code.label


def test_message_is_code_name():
    assert errors.new_not_found("x").message == "NotFound"


def test_new_ok():
    err = errors.new_ok()
    assert err.code == Code.OK
    assert err.detail == ""
    assert errors.is_ok(err)


def test_to_json_fields():
    err = errors.new_bad_request("minions is required")
    data = json.loads(err.to_json())
    assert data == {"code": int(Code.BAD_REQUEST), "message": "BadRequest", "detail": "minions is required"}
    assert str(err) == err.to_json()


def test_json_round_trip_through_plain_exception():
    original = errors.new_conflict("already there")
    parsed = errors.parse(RuntimeError(original.to_json()))
    assert parsed.code == original.code
    assert parsed.message == original.message
    assert parsed.detail == original.detail


def test_empty_json_object_parses_as_ok():
    assert errors.is_ok(RuntimeError("{}"))


def test_status_round_trip_keeps_causes():
    err = errors.new_not_found("gone").with_cause({"name": "m1"})
    status = err.to_status()
    assert status.code == GrpcCode.NOT_FOUND
    assert status.message == "gone"
    back = errors.from_status(status)
    assert back.code == Code.NOT_FOUND
    assert back.detail == "gone"
    assert back.causes == [{"name": "m1"}]


def test_with_cause_returns_self_and_ignores_none():
    err = errors.new_internal("x")
    assert err.with_cause(None) is err
    assert err.causes == []
    err.with_cause("c")
    assert err.causes == ["c"]


def test_parse_none_and_identity():
    assert errors.parse(None) is None
    err = errors.new_forbidden("no")
    assert errors.parse(err) is err


def test_parse_plain_exception_is_unknown():
    parsed = errors.parse(ValueError("boom"))
    assert parsed.code == Code.UNKNOWN
    assert parsed.detail == "boom"


def test_parse_validation_error_is_bad_request():
    class FieldError(Exception):
        def reason(self):
            return "value too long"

    parsed = errors.parse(FieldError("ignored"))
    assert parsed.code == Code.BAD_REQUEST
    assert parsed.detail == "value too long"


def test_parse_status_error():
    parsed = errors.parse(StatusError(GrpcCode.PERMISSION_DENIED, "denied"))
    assert parsed.code == Code.FORBIDDEN
    assert parsed.detail == "denied"


def test_is_predicates():
    assert errors.is_not_found(errors.new_not_found("x"))
    assert not errors.is_conflict(errors.new_not_found("x"))
    assert errors.is_unavailable(StatusError(GrpcCode.DEADLINE_EXCEEDED, "t"))
    assert errors.is_unknown(ValueError("x"))
    assert errors.is_gateway_timeout(errors.new_gateway_timeout("x"))
    assert not errors.is_ok(None)


def test_maco_error_is_raisable():
    err = errors.new_unauthorized("who")
    assert err.code == Code.UNAUTHORIZED
    assert err.detail == "who"
    with pytest.raises(MacoError) as info:
        raise err
    assert info.value is err
    assert errors.is_unauthorized(info.value)