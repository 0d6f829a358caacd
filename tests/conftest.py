"""Shared fixtures: an in-memory Snowflake SQL API served through httpx.MockTransport."""

import itertools
import json
from urllib.parse import unquote

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from snowgrant.client import SnowflakeClient
from snowgrant.context import background
from snowgrant.jwt import Credential

ACCOUNT_URL = "https://acct.snowflakecomputing.com"
TIMESTAMP_COLUMNS = ("created_on", "last_success_login")

ROLE_COLUMNS = ("created_on", "name", "owner", "comment")
DATABASE_COLUMNS = ("created_on", "name", "owner", "kind", "origin")
SCHEMA_COLUMNS = ("created_on", "name", "database_name")
TABLE_COLUMNS = ("created_on", "name", "schema_name", "database_name", "kind", "comment", "owner")
TABLE_GRANT_COLUMNS = (
    "created_on",
    "privilege",
    "granted_on",
    "name",
    "granted_to",
    "grantee_name",
    "grant_option",
    "granted_by",
)
ROLE_GRANTEE_COLUMNS = ("created_on", "role", "granted_to", "grantee_name")
USER_COLUMNS = (
    "name",
    "login_name",
    "display_name",
    "first_name",
    "last_name",
    "email",
    "disabled",
    "snowflake_lock",
    "default_role",
    "has_rsa_public_key",
    "has_password",
    "last_success_login",
    "type",
    "has_mfa",
    "comment",
)
SECRET_COLUMNS = ("created_on", "name", "schema_name", "database_name", "owner", "comment", "secret_type")
DESCRIBE_COLUMNS = ("property", "value", "default", "description")

CREATED_ON = "1700000000.000000000"


def result(columns, rows=(), row_types=None, handle=None):
    """Build a statement response payload with inline rows."""
    row_types = row_types or {}
    payload = {
        "code": "090001",
        "message": "Statement executed successfully.",
        "resultSetMetaData": {
            "numRows": len(rows),
            "rowType": [
                {
                    "name": column,
                    "type": row_types.get(column, "timestamp_ltz" if column in TIMESTAMP_COLUMNS else "text"),
                }
                for column in columns
            ],
        },
        "data": [list(row) for row in rows],
    }
    if handle:
        payload["statementHandle"] = handle
    return payload


def error(code="003001", message="SQL access control error: Insufficient privileges"):
    return {"code": code, "message": message}


def role_row(name, owner="SECURITYADMIN", comment=""):
    return (CREATED_ON, name, owner, comment)


def database_row(name, owner="SYSADMIN", kind="STANDARD", origin=""):
    return (CREATED_ON, name, owner, kind, origin)


def schema_row(name, database):
    return (CREATED_ON, name, database)


def table_row(name, schema, database, owner="SYSADMIN", kind="TABLE", comment=""):
    return (CREATED_ON, name, schema, database, kind, comment, owner)


def table_grant_row(privilege, granted_to, grantee_name, name="T", granted_on="TABLE"):
    return (CREATED_ON, privilege, granted_on, name, granted_to, grantee_name, "false", "SYSADMIN")


def user_row(name, login=None, email="", display_name="", disabled="false", locked="false", user_type="PERSON"):
    return (
        name,
        login or name,
        display_name,
        "",
        "",
        email,
        disabled,
        locked,
        "PUBLIC",
        "false",
        "true",
        "",
        user_type,
        "false",
        "",
    )


def describe_user_rows(name, **properties):
    values = {
        "NAME": name,
        "LOGIN_NAME": name,
        "DISPLAY_NAME": name,
        "FIRST_NAME": "",
        "LAST_NAME": "",
        "EMAIL": "",
        "DISABLED": "false",
        "SNOWFLAKE_LOCK": "false",
        "DEFAULT_ROLE": "PUBLIC",
        "LAST_SUCCESS_LOGIN": "null",
        "TYPE": "PERSON",
        "HAS_MFA": "false",
        "COMMENT": "",
        "RSA_PUBLIC_KEY_LAST_SET_TIME": "null",
        "RSA_PUBLIC_KEY_2_LAST_SET_TIME": "null",
    }
    values.update({key.upper(): value for key, value in properties.items()})
    return [(key, value, "null", "") for key, value in values.items()]


class FakeWarehouse:
    """
    Answers SQL API and users API requests from registered routes.

    A route matches when its pattern is a substring of the submitted statement;
    the most recently registered match wins. A route given several responses
    serves them in order and then keeps serving the last one.
    """

    def __init__(self):
        self.routes = []
        self.polls = {}
        self.statements = []
        self.requests = []
        self.user_requests = []
        self.create_user_status = 200
        self._handles = itertools.count(1)

    def on(self, pattern, *responses, status=200):
        if not responses:
            responses = (result(()),)
        queue = [(status, r) if not isinstance(r, tuple) else r for r in responses]
        self.routes.insert(0, (pattern, queue))

    def on_error(self, pattern, status=422, code="003001", message="SQL access control error: Insufficient privileges"):
        self.on(pattern, (status, error(code, message)))

    def executed(self, pattern):
        return [s for s in self.statements if pattern in s]

    def _statement(self, request):
        body = json.loads(request.content)
        statement = body["statement"]
        self.statements.append(statement)
        for pattern, queue in self.routes:
            if pattern in statement:
                status, payload = queue.pop(0) if len(queue) > 1 else queue[0]
                break
        else:
            status, payload = 200, result(())
        if status == 200 and "statementHandle" not in payload:
            payload = dict(payload, statementHandle=f"01b-{next(self._handles)}")
        return httpx.Response(status, json=payload)

    def handler(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/api/v2/statements" and request.method == "POST":
            return self._statement(request)
        if path.startswith("/api/v2/statements/") and request.method == "GET":
            handle = unquote(path.rsplit("/", 1)[-1])
            if handle not in self.polls:
                return httpx.Response(404, json=error("000709", f"Statement {handle} not found"))
            # a poll entry is a payload, or a (status, payload) pair
            entry = self.polls[handle]
            status, payload = entry if isinstance(entry, tuple) else (200, entry)
            return httpx.Response(status, json=payload)
        if path == "/api/v2/users" and request.method == "POST":
            self.user_requests.append(("POST", json.loads(request.content)))
            return httpx.Response(self.create_user_status, json={"status": "User successfully created."})
        if path.startswith("/api/v2/users/") and request.method == "DELETE":
            self.user_requests.append(("DELETE", path.rsplit("/", 1)[-1], dict(request.url.params)))
            return httpx.Response(200, json={"status": "User successfully dropped."})
        return httpx.Response(404, json=error("000000", f"no route for {request.method} {path}"))


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def credential(rsa_key):
    return Credential(account_identifier="myorg-acct", user_identifier="svc_governance", private_key=rsa_key)


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def http_client(warehouse):
    with httpx.Client(transport=httpx.MockTransport(warehouse.handler)) as http:
        yield http


@pytest.fixture
def client(credential, http_client):
    return SnowflakeClient(ACCOUNT_URL, credential, http_client=http_client)


@pytest.fixture
def ctx():
    return background()
