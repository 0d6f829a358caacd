import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx
import inflection

from .context import CallContext
from .exceptions import (
    DecodeError,
    InvalidArgumentError,
    SnowflakeAPIError,
    UnprocessableEntityError,
)
from .jwt import Credential, issue_token

logger = logging.getLogger("snowgrant")

STATEMENTS_PATH = "api/v2/statements"
USERS_PATH = "api/v2/users"

AUTH_TYPE_HEADER = "X-Snowflake-Authorization-Token-Type"
AUTH_TYPE_KEYPAIR_JWT = "KEYPAIR_JWT"
ROLE_HEADER = "X-Snowflake-Role"
USER_ADMIN_ROLE = "USERADMIN"

DEFAULT_TIMEOUT = 60.0

# SQL API code for "Asynchronous execution in progress"
STATEMENT_IN_PROGRESS = "333334"


@dataclass
class RowType:
    name: str
    type: str


@dataclass
class ResultSetMetadata:
    num_rows: int = 0
    row_type: list[RowType] = field(default_factory=list)

    def index_of(self, name: str) -> tuple[int, Optional[RowType]]:
        for i, row_type in enumerate(self.row_type):
            if row_type.name == name:
                return i, row_type
        return -1, None

    @classmethod
    def from_json(cls, payload: Optional[dict]) -> "ResultSetMetadata":
        if not payload:
            return cls()
        return cls(
            num_rows=payload.get("numRows") or 0,
            row_type=[RowType(name=rt.get("name", ""), type=rt.get("type", "")) for rt in payload.get("rowType") or []],
        )


@dataclass
class StatementResponse:
    code: str = ""
    message: str = ""
    statement_handle: str = ""
    statement_handles: list[str] = field(default_factory=list)
    result_set_metadata: ResultSetMetadata = field(default_factory=ResultSetMetadata)
    data: list[list[str]] = field(default_factory=list)

    @property
    def has_result(self) -> bool:
        return bool(self.result_set_metadata.row_type) or bool(self.data)

    @classmethod
    def from_json(cls, payload: dict) -> "StatementResponse":
        if not isinstance(payload, dict):
            raise DecodeError(f"Unexpected statement response: {payload!r}")
        # The API has used both spellings
        metadata = payload.get("resultSetMetaData") or payload.get("resultSetMetadata")
        rows = payload.get("data") or []
        return cls(
            code=payload.get("code") or "",
            message=payload.get("message") or "",
            statement_handle=payload.get("statementHandle") or "",
            statement_handles=list(payload.get("statementHandles") or []),
            result_set_metadata=ResultSetMetadata.from_json(metadata),
            data=[["" if cell is None else str(cell) for cell in row] for row in rows],
        )


@dataclass
class CreateUserRequest:
    name: str
    login_name: str = ""
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    comment: str = ""
    password: str = ""
    must_change_password: bool = False
    disabled: bool = False
    default_warehouse: str = ""
    default_namespace: str = ""
    default_role: str = ""
    default_secondary_roles: str = ""  # ALL or NONE

    def to_json(self) -> dict:
        body = {}
        for attr, value in self.__dict__.items():
            if value or attr == "name":
                body[inflection.camelize(attr, uppercase_first_letter=False)] = value
        return body


def statement_body(statements: list[str]) -> dict:
    if len(statements) == 1:
        return {"statement": statements[0]}
    return {
        "statement": "".join(statements),
        "parameters": {"MULTI_STATEMENT_COUNT": len(statements)},
    }


def _error_details(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        payload = response.json()
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    return payload.get("code"), payload.get("message")


def log_authorization_gap(err: UnprocessableEntityError, action: str, expected_level: int = logging.DEBUG, **fields):
    """
    Log a 422 at `expected_level` when Snowflake reports the usual insufficient
    privileges code, and at ERROR for anything else.
    """
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    if err.is_access_control_error:
        logger.log(expected_level, f"{action}: insufficient privileges, skipping {details} (code {err.code})")
    else:
        logger.error(f"{action}: unexpected 422 {details} (code {err.code}): {err.sf_message or err}")


class SnowflakeClient:
    """
    Client for the Snowflake SQL API (/api/v2/statements) and the users REST
    endpoint, authenticated with a key-pair JWT.

    The token is issued once at construction and never refreshed, so a client
    must not outlive the token lifetime (59 minutes).
    """

    def __init__(
        self,
        account_url: str,
        credential: Credential,
        http_client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if not account_url:
            raise InvalidArgumentError("account_url is required")
        self.account_url = account_url.rstrip("/")
        self.credential = credential
        self.timeout = timeout
        self._token = issue_token(credential)
        self._headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
            AUTH_TYPE_HEADER: AUTH_TYPE_KEYPAIR_JWT,
        }
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client()

    def close(self):
        if self._owns_http_client:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _url(self, *segments: str) -> str:
        return "/".join([self.account_url, *segments])

    def _raise_for_status(self, response: httpx.Response, method: str, url: str):
        status = response.status_code
        if 200 <= status < 300:
            return
        code, sf_message = _error_details(response)
        message = f"{method} {url} returned {status}"
        if code or sf_message:
            message += f": {code} - {sf_message}"
        if status == 422:
            raise UnprocessableEntityError(message, status_code=status, code=code, sf_message=sf_message)
        raise SnowflakeAPIError(message, status_code=status, code=code, sf_message=sf_message)

    def _request(
        self,
        ctx: CallContext,
        method: str,
        url: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> tuple[int, Any]:
        ctx.check()
        request_headers = dict(self._headers)
        if headers:
            request_headers.update(headers)
        try:
            response = self._http.request(
                method,
                url,
                json=json,
                params=params,
                headers=request_headers,
                timeout=ctx.timeout(self.timeout),
            )
        except httpx.TimeoutException as err:
            ctx.check()
            raise SnowflakeAPIError(f"{method} {url} timed out: {err}") from err
        except httpx.HTTPError as err:
            raise SnowflakeAPIError(f"{method} {url} failed: {err}") from err

        try:
            self._raise_for_status(response, method, url)
            if not response.content:
                return response.status_code, None
            try:
                return response.status_code, response.json()
            except ValueError as err:
                raise DecodeError(f"{method} {url} returned invalid JSON: {err}") from err
        finally:
            response.close()

    def submit(self, ctx: CallContext, statements: Union[str, list[str]]) -> StatementResponse:
        if isinstance(statements, str):
            statements = [statements]
        if not statements:
            raise InvalidArgumentError("at least one statement is required")

        sql_text = " ".join(statements)
        start = time.time()
        try:
            _, payload = self._request(ctx, "POST", self._url(STATEMENTS_PATH), json=statement_body(statements))
        except SnowflakeAPIError as err:
            logger.debug(f"> {sql_text}    (err {err.status_code} {err.code}, {time.time() - start:.2f}s)")
            raise
        response = StatementResponse.from_json(payload or {})
        logger.debug(f"> {sql_text}    ({len(response.data)} rows, {time.time() - start:.2f}s)")
        return response

    def poll(self, ctx: CallContext, handle: str) -> StatementResponse:
        if not handle:
            raise InvalidArgumentError("statement handle is required")
        status, payload = self._request(ctx, "GET", self._url(STATEMENTS_PATH, quote(handle, safe="")))
        response = StatementResponse.from_json(payload or {})
        if (status == 202 or response.code == STATEMENT_IN_PROGRESS) and not response.has_result:
            raise SnowflakeAPIError(
                f"statement {handle} is still running: {response.code} - {response.message}",
                status_code=status,
                code=response.code,
                sf_message=response.message,
            )
        return response

    def execute(
        self,
        ctx: CallContext,
        statements: Union[str, list[str]],
        handle_index: Optional[int] = None,
    ) -> StatementResponse:
        """
        Submit statements and return the result rows.

        With `handle_index`, the result of that statement in a multi-statement
        batch is fetched. When the batch did not produce such a handle the submit
        response is returned as is. Otherwise the primary handle is polled only
        when the submit response carries no result inline.
        """
        response = self.submit(ctx, statements)

        if handle_index is not None:
            handles = response.statement_handles
            if not -len(handles) <= handle_index < len(handles):
                logger.debug(f"statement handle {handle_index} missing from response, got {len(handles)}")
                return response
            return self.poll(ctx, handles[handle_index])

        if response.has_result or not response.statement_handle:
            return response
        return self.poll(ctx, response.statement_handle)

    def create_user(self, ctx: CallContext, request: CreateUserRequest) -> bool:
        """
        Create a user through POST /api/v2/users.

        Returns True when Snowflake finished the creation (200) and False when
        the request was only accepted (202).
        """
        status, payload = self._request(
            ctx,
            "POST",
            self._url(USERS_PATH),
            json=request.to_json(),
            headers={ROLE_HEADER: USER_ADMIN_ROLE, "Content-Type": "application/json"},
        )
        completed = status == 200
        payload = payload if isinstance(payload, dict) else {}
        logger.debug(
            f"user creation request completed name={request.name} status_code={status} "
            f"completed={completed} status={payload.get('status', '')} message={payload.get('message', '')}"
        )
        return completed

    def delete_user(self, ctx: CallContext, name: str, if_exists: bool = True):
        params = {"ifExists": "true"} if if_exists else None
        try:
            self._request(
                ctx,
                "DELETE",
                self._url(USERS_PATH, quote(name, safe="")),
                params=params,
                headers={ROLE_HEADER: USER_ADMIN_ROLE},
            )
        except SnowflakeAPIError as err:
            logger.error(f"failed to delete user name={name}: {err}")
            raise
        logger.debug(f"user deleted name={name}")
