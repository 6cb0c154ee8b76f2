import pytest

from keystone_sync.credentials import (
    Credentials,
    CredentialSettings,
    Scheme,
    parse_token,
    read_openrc,
    resolve_credentials,
)
from keystone_sync.errors import AuthError, ConfigError, ExecutionError

TOKEN_OUTPUT = "2099-01-01T00:00:00+00:00\ngAAAAtoken\nproject-id\nuser-id\n"
AUTH_FAILURE = "The request you have made requires authentication. (HTTP 401)"


@pytest.fixture
def no_rc(tmp_path):
    return tmp_path / "missing-openrc"


def test_resolve_from_environment_selects_v2_without_domain_scope(monkeypatch, no_rc):
    monkeypatch.setenv("OS_AUTH_URL", "http://keystone:5000/v2.0")
    monkeypatch.setenv("OS_USERNAME", "admin")
    monkeypatch.setenv("OS_PASSWORD", "secret")
    monkeypatch.setenv("OS_PROJECT_NAME", "admin")

    creds = resolve_credentials(rc_file=no_rc)

    assert creds.scheme is Scheme.V2
    assert creds.auth_url == "http://keystone:5000/v2.0"
    assert creds.project_name == "admin"


def test_resolve_selects_v3_with_domain_qualifier(monkeypatch, no_rc):
    monkeypatch.setenv("OS_AUTH_URL", "http://keystone:5000/v3")
    monkeypatch.setenv("OS_USERNAME", "admin")
    monkeypatch.setenv("OS_PASSWORD", "secret")
    monkeypatch.setenv("OS_USER_DOMAIN_NAME", "Default")

    assert resolve_credentials(rc_file=no_rc).scheme is Scheme.V3


def test_system_scope_selects_v3(monkeypatch, no_rc):
    monkeypatch.setenv("OS_AUTH_URL", "http://keystone:5000")
    monkeypatch.setenv("OS_USERNAME", "admin")
    monkeypatch.setenv("OS_PASSWORD", "secret")
    monkeypatch.setenv("OS_SYSTEM_SCOPE", "all")

    assert resolve_credentials(rc_file=no_rc).scheme is Scheme.V3


def test_explicit_parameters_win_over_environment(monkeypatch, no_rc):
    monkeypatch.setenv("OS_AUTH_URL", "http://from-env:5000")
    monkeypatch.setenv("OS_USERNAME", "env-user")
    monkeypatch.setenv("OS_PASSWORD", "env-pass")

    creds = resolve_credentials(
        overrides={"auth_url": "http://explicit:5000", "username": None},
        rc_file=no_rc,
    )

    assert creds.auth_url == "http://explicit:5000"
    # None means "not given" and keeps the environment value
    assert creds.username == "env-user"


def test_unknown_override_is_a_config_error(no_rc):
    with pytest.raises(ConfigError):
        CredentialSettings().with_overrides(tenant="x")


def test_rc_file_only_fills_unset_fields(monkeypatch, tmp_path):
    rc = tmp_path / "openrc"
    rc.write_text(
        "# admin credentials\n"
        "export OS_AUTH_URL=http://from-rc:5000/v3\n"
        "export OS_USERNAME='rc-user'\n"
        'export OS_PASSWORD="rc pass"\n'
        "export OS_USER_DOMAIN_NAME=Default\n"
        "export NOVA_VERSION=1.1\n"
    )
    monkeypatch.setenv("OS_USERNAME", "env-user")

    creds = resolve_credentials(rc_file=rc)

    assert creds.auth_url == "http://from-rc:5000/v3"
    assert creds.username == "env-user"
    assert creds.password == "rc pass"
    assert creds.scheme is Scheme.V3


def test_read_openrc_missing_file_is_empty(tmp_path):
    assert read_openrc(tmp_path / "nope") == {}


def test_missing_password_and_token_is_config_error(monkeypatch, no_rc):
    monkeypatch.setenv("OS_AUTH_URL", "http://keystone:5000/v3")
    monkeypatch.setenv("OS_USERNAME", "admin")

    with pytest.raises(ConfigError):
        resolve_credentials(rc_file=no_rc)


def test_missing_auth_url_is_config_error(monkeypatch, no_rc):
    monkeypatch.setenv("OS_USERNAME", "admin")
    monkeypatch.setenv("OS_PASSWORD", "secret")

    with pytest.raises(ConfigError):
        resolve_credentials(rc_file=no_rc)


@pytest.mark.parametrize(
    "scopes",
    [
        {"system_scope": "all", "domain_name": "Default"},
        {"system_scope": "all", "project_name": "admin"},
        {"domain_name": "Default", "project_name": "admin"},
    ],
)
def test_ambiguous_scope_is_config_error(scopes):
    raw = CredentialSettings(
        auth_url="http://keystone:5000/v3", username="admin", password="secret", **scopes
    )
    with pytest.raises(ConfigError):
        Credentials.from_settings(raw)


def test_v2_with_domain_scope_is_config_error():
    raw = CredentialSettings(
        auth_url="http://keystone:5000/v2.0",
        identity_api_version="2.0",
        username="admin",
        password="secret",
        user_domain_name="Default",
    )
    with pytest.raises(ConfigError):
        Credentials.from_settings(raw)


def test_explicit_v3_without_domain_scope():
    raw = CredentialSettings(
        auth_url="http://keystone:5000/v3",
        identity_api_version="3",
        username="admin",
        password="secret",
        project_name="admin",
    )
    assert Credentials.from_settings(raw).scheme is Scheme.V3


def test_token_only_credentials_are_accepted():
    raw = CredentialSettings(auth_url="http://keystone:5000/v3", token="pre-issued")
    creds = Credentials.from_settings(raw)
    assert creds.token_value == "pre-issued"


def test_parse_token_lines():
    token = parse_token(TOKEN_OUTPUT.split())
    assert token.id == "gAAAAtoken"
    assert token.project_id == "project-id"
    assert token.user_id == "user-id"
    assert token.is_valid()


def test_parse_token_without_project():
    token = parse_token(["2099-01-01T00:00:00+00:00", "tok", "user-id"])
    assert token.project_id is None
    assert token.user_id == "user-id"


def test_expired_token_is_not_valid():
    token = parse_token(["2000-01-01T00:00:00+00:00", "tok"])
    assert not token.is_valid()


def test_token_is_lazy_and_cached(runner, executor, credentials):
    runner.add("token", "issue", "--format", "value", stdout=TOKEN_OUTPUT)

    assert credentials.cached_token is None
    first = credentials.token(executor)
    second = credentials.token(executor)

    assert first is second
    assert first.id == "gAAAAtoken"
    assert runner.count("token", "issue") == 1


def test_token_request_uses_password_not_a_token(runner, executor, credentials):
    runner.add("token", "issue", "--format", "value", stdout=TOKEN_OUTPUT)
    credentials.token(executor)

    env = runner.envs[0]
    assert env["OS_PASSWORD"] == "secret"
    assert env["OS_USERNAME"] == "admin"
    assert "OS_TOKEN" not in env


def test_reset_forgets_token(runner, executor, credentials):
    runner.add("token", "issue", "--format", "value", stdout=TOKEN_OUTPUT)
    credentials.token(executor)
    credentials.reset()
    credentials.token(executor)
    assert runner.count("token", "issue") == 2


def test_pre_issued_token_needs_no_call(runner, executor):
    creds = Credentials(scheme=Scheme.V3, auth_url="http://k:5000/v3", token_value="abc")
    assert creds.token(executor).id == "abc"
    assert runner.calls == []


def test_auth_failure_is_fatal_and_not_retried(runner, executor, credentials):
    runner.add("token", "issue", "--format", "value", stderr=AUTH_FAILURE, returncode=1)

    with pytest.raises(AuthError):
        credentials.token(executor, retries=3)
    assert runner.count("token", "issue") == 1


def test_transient_failure_is_not_retried_by_default(runner, executor, credentials):
    runner.add(
        "token", "issue", "--format", "value",
        stderr="Unable to establish connection to http://keystone:5000/v3/auth/tokens",
        returncode=1,
    )

    with pytest.raises(ExecutionError):
        credentials.token(executor, retries=0)
    assert runner.count("token", "issue") == 1


def test_transient_failure_is_retried_when_configured(runner, executor, credentials):
    runner.add(
        "token", "issue", "--format", "value",
        stderr="Unable to establish connection",
        returncode=1,
    )

    with pytest.raises(ExecutionError):
        credentials.token(executor, retries=2)
    assert runner.count("token", "issue") == 3


def test_env_uses_cached_token_once_issued(runner, executor, credentials):
    runner.add("token", "issue", "--format", "value", stdout=TOKEN_OUTPUT)
    credentials.token(executor)

    env = credentials.env()
    assert env["OS_AUTH_TYPE"] == "v3token"
    assert env["OS_TOKEN"] == "gAAAAtoken"
    assert "OS_PASSWORD" not in env
    assert env["OS_PROJECT_NAME"] == "admin"


def test_v2_env_uses_tenant_variables():
    creds = Credentials(
        scheme=Scheme.V2,
        auth_url="http://keystone:5000/v2.0",
        username="admin",
        password="secret",
        project_name="admin",
    )
    env = creds.env()
    assert env["OS_TENANT_NAME"] == "admin"
    assert env["OS_IDENTITY_API_VERSION"] == "2.0"
    assert "OS_PROJECT_NAME" not in env
    assert "OS_USER_DOMAIN_NAME" not in env
