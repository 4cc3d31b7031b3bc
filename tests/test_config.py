import pytest
from pydantic import ValidationError

from bulkmail.core.config import DevSettings, ProdSettings, TestSettings

PROD_ENV = {
    "DATABASE_URL": "postgres://u:p@db/bulkmail",
    "ENCRYPTION_KEY": "k" * 32,
    "IDENTIFIER_HASH_PEPPER": "p" * 32,
    "JWT_SECRET": "s" * 32,
}


@pytest.fixture
def prod_env(monkeypatch):
    for key, value in PROD_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("ENV", "prod")
    return monkeypatch


def test_prod_settings_accept_complete_env(prod_env):
    cfg = ProdSettings(_env_file=None)
    assert cfg.DATABASE_URL.startswith("postgresql://")
    assert cfg.LOG_FORMAT == "json"


@pytest.mark.parametrize("missing", ["ENCRYPTION_KEY", "IDENTIFIER_HASH_PEPPER", "DATABASE_URL"])
def test_prod_settings_require_secrets(prod_env, missing):
    prod_env.delenv(missing)
    with pytest.raises(ValidationError):
        ProdSettings(_env_file=None)


def test_prod_rejects_placeholder_jwt_secret(prod_env):
    prod_env.setenv("JWT_SECRET", "change_me")
    with pytest.raises(ValidationError):
        ProdSettings(_env_file=None)


def test_non_prod_profiles_have_local_secrets():
    assert TestSettings(_env_file=None).ENCRYPTION_KEY
    assert DevSettings(_env_file=None).IDENTIFIER_HASH_PEPPER
    assert TestSettings(_env_file=None).MONTHLY_EMAIL_LIMIT == 100


def test_wildcard_origin_disables_credentials():
    assert DevSettings(_env_file=None).CORS_ALLOW_CREDENTIALS is False
    assert DevSettings(_env_file=None, CORS_ALLOW_CREDENTIALS=True).CORS_ALLOW_CREDENTIALS is False


def test_explicit_origins_keep_credentials():
    cfg = DevSettings(
        _env_file=None,
        CORS_ALLOW_ORIGINS=["https://app.example.com"],
        CORS_ALLOW_CREDENTIALS=True,
    )
    assert cfg.CORS_ALLOW_CREDENTIALS is True
