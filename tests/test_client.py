"""Unit tests for snowgrant/client.py

Tests the SQL API client: request shape, status handling, polling and the
users REST endpoint.
"""

import json

import httpx
import pytest

from conftest import ACCOUNT_URL, result
from snowgrant.client import (
    AUTH_TYPE_HEADER,
    ROLE_HEADER,
    CreateUserRequest,
    SnowflakeClient,
    StatementResponse,
    statement_body,
)
from snowgrant.context import CallContext
from snowgrant.exceptions import (
    DecodeError,
    InvalidArgumentError,
    OperationCancelledError,
    SnowflakeAPIError,
    UnprocessableEntityError,
)


# =============================================================================
# Test StatementResponse
# =============================================================================


class TestStatementResponse:
    """Tests for decoding statement response payloads."""

    def test_from_json(self):
        response = StatementResponse.from_json(result(("name",), [("R1",)], handle="h1"))
        assert response.statement_handle == "h1"
        assert response.result_set_metadata.num_rows == 1
        assert response.result_set_metadata.index_of("name")[0] == 0
        assert response.data == [["R1"]]
        assert response.has_result

    def test_accepts_lower_case_metadata_key(self):
        payload = {"resultSetMetadata": {"numRows": 0, "rowType": [{"name": "name", "type": "text"}]}, "data": []}
        response = StatementResponse.from_json(payload)
        assert response.result_set_metadata.row_type[0].name == "name"

    def test_null_cells_become_empty_strings(self):
        payload = result(("name", "comment"), [("R1", None)])
        assert StatementResponse.from_json(payload).data == [["R1", ""]]

    def test_index_of_missing_column(self):
        response = StatementResponse.from_json(result(("name",)))
        assert response.result_set_metadata.index_of("owner") == (-1, None)

    def test_async_response_has_no_result(self):
        response = StatementResponse.from_json({"statementHandle": "h1", "code": "333334"})
        assert not response.has_result

    def test_non_dict_raises(self):
        with pytest.raises(DecodeError):
            StatementResponse.from_json(["not", "a", "dict"])


class TestStatementBody:
    """Tests for building the statements request body."""

    def test_single_statement(self):
        assert statement_body(["SHOW ROLES;"]) == {"statement": "SHOW ROLES;"}

    def test_multi_statement_sets_count(self):
        body = statement_body(["USE ROLE R1;", "SHOW USERS;"])
        assert body == {
            "statement": "USE ROLE R1;SHOW USERS;",
            "parameters": {"MULTI_STATEMENT_COUNT": 2},
        }


# =============================================================================
# Test SnowflakeClient statements
# =============================================================================


class TestSubmit:
    """Tests for SnowflakeClient.submit()"""

    def test_sends_jwt_headers(self, client, warehouse, ctx):
        warehouse.on("SHOW ROLES", result(("name",)))
        client.submit(ctx, "SHOW ROLES;")

        request = warehouse.requests[-1]
        assert request.method == "POST"
        assert str(request.url) == f"{ACCOUNT_URL}/api/v2/statements"
        assert request.headers["Authorization"].startswith("Bearer ")
        assert request.headers["Accept"] == "application/json"
        assert request.headers[AUTH_TYPE_HEADER] == "KEYPAIR_JWT"
        assert json.loads(request.content) == {"statement": "SHOW ROLES;"}

    def test_empty_statement_list_raises(self, client, ctx):
        with pytest.raises(InvalidArgumentError):
            client.submit(ctx, [])

    def test_422_raises_unprocessable(self, client, warehouse, ctx):
        warehouse.on_error("SHOW GRANTS")
        with pytest.raises(UnprocessableEntityError) as exc_info:
            client.submit(ctx, "SHOW GRANTS ON TABLE x;")
        err = exc_info.value
        assert err.status_code == 422
        assert err.code == "003001"
        assert err.is_access_control_error

    def test_other_422_codes_are_not_access_control(self, client, warehouse, ctx):
        warehouse.on_error("DESCRIBE", code="002003", message="does not exist")
        with pytest.raises(UnprocessableEntityError) as exc_info:
            client.submit(ctx, "DESCRIBE USER x;")
        assert not exc_info.value.is_access_control_error
        assert exc_info.value.sf_message == "does not exist"

    def test_server_error_raises_api_error(self, client, warehouse, ctx):
        warehouse.on_error("SHOW", status=500, code="000001", message="boom")
        with pytest.raises(SnowflakeAPIError) as exc_info:
            client.submit(ctx, "SHOW ROLES;")
        assert not isinstance(exc_info.value, UnprocessableEntityError)
        assert exc_info.value.status_code == 500

    def test_transport_error_raises_api_error(self, credential, ctx):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        with httpx.Client(transport=httpx.MockTransport(fail)) as http:
            client = SnowflakeClient(ACCOUNT_URL, credential, http_client=http)
            with pytest.raises(SnowflakeAPIError, match="connection refused") as exc_info:
                client.submit(ctx, "SHOW ROLES;")
        assert exc_info.value.status_code is None

    def test_invalid_json_raises_decode_error(self, credential, ctx):
        with httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))) as http:
            client = SnowflakeClient(ACCOUNT_URL, credential, http_client=http)
            with pytest.raises(DecodeError):
                client.submit(ctx, "SHOW ROLES;")

    def test_cancelled_context_sends_nothing(self, client, warehouse):
        ctx = CallContext()
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            client.submit(ctx, "SHOW ROLES;")
        assert warehouse.requests == []


class TestExecute:
    """Tests for SnowflakeClient.execute()"""

    def test_inline_result_is_not_polled(self, client, warehouse, ctx):
        warehouse.on("SHOW ROLES", result(("name",), [("R1",)]))
        response = client.execute(ctx, "SHOW ROLES;")
        assert response.data == [["R1"]]
        assert [r.method for r in warehouse.requests] == ["POST"]

    def test_polls_when_result_is_not_inline(self, client, warehouse, ctx):
        warehouse.on("SHOW USERS", (202, {"statementHandle": "h-async", "code": "333334"}))
        warehouse.polls["h-async"] = result(("name",), [("ALICE",)])

        response = client.execute(ctx, "SHOW USERS;")
        assert response.data == [["ALICE"]]
        assert warehouse.requests[-1].url.path == "/api/v2/statements/h-async"

    def test_poll_still_running_raises(self, client, warehouse, ctx):
        running = {"statementHandle": "h-async", "code": "333334", "message": "Asynchronous execution in progress."}
        warehouse.on("SHOW USERS", (202, running))
        warehouse.polls["h-async"] = (202, running)

        with pytest.raises(SnowflakeAPIError, match="still running") as exc_info:
            client.execute(ctx, "SHOW USERS;")
        assert exc_info.value.status_code == 202
        assert exc_info.value.code == "333334"

    def test_handle_index_polls_that_handle(self, client, warehouse, ctx):
        warehouse.on(
            "SHOW USERS",
            {"statementHandle": "h0", "statementHandles": ["h1", "h2"], "code": "090001"},
        )
        warehouse.polls["h1"] = result(("status",), [("ok",)])
        warehouse.polls["h2"] = result(("name",), [("BOB",)])

        assert client.execute(ctx, ["USE ROLE R;", "SHOW USERS;"], handle_index=1).data == [["BOB"]]

    def test_missing_handle_index_returns_submit_response(self, client, warehouse, ctx):
        warehouse.on("SHOW USERS", result(("name",), [("BOB",)]))
        response = client.execute(ctx, "SHOW USERS;", handle_index=3)
        assert response.data == [["BOB"]]
        assert len(warehouse.requests) == 1

    def test_poll_requires_handle(self, client, ctx):
        with pytest.raises(InvalidArgumentError):
            client.poll(ctx, "")


# =============================================================================
# Test users endpoint
# =============================================================================


class TestCreateUserRequest:
    """Tests for CreateUserRequest serialization."""

    def test_camel_cases_and_omits_empty_fields(self):
        body = CreateUserRequest(
            name='"alice"', login_name="alice@example.com", must_change_password=True, default_secondary_roles="ALL"
        ).to_json()
        assert body == {
            "name": '"alice"',
            "loginName": "alice@example.com",
            "mustChangePassword": True,
            "defaultSecondaryRoles": "ALL",
        }


class TestUsersEndpoint:
    """Tests for create_user() and delete_user()"""

    def test_create_user_completed(self, client, warehouse, ctx):
        assert client.create_user(ctx, CreateUserRequest(name='"alice"', email="a@example.com")) is True
        request = warehouse.requests[-1]
        assert request.url.path == "/api/v2/users"
        assert request.headers[ROLE_HEADER] == "USERADMIN"
        assert warehouse.user_requests == [("POST", {"name": '"alice"', "email": "a@example.com"})]

    def test_create_user_accepted(self, client, warehouse, ctx):
        warehouse.create_user_status = 202
        assert client.create_user(ctx, CreateUserRequest(name='"alice"')) is False

    def test_delete_user_quotes_name_into_path(self, client, warehouse, ctx):
        client.delete_user(ctx, '"alice"')
        request = warehouse.requests[-1]
        assert request.method == "DELETE"
        assert request.headers[ROLE_HEADER] == "USERADMIN"
        assert request.url.params["ifExists"] == "true"
        assert warehouse.user_requests == [("DELETE", '"alice"', {"ifExists": "true"})]
