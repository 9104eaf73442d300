import pydantic
import pytest

from app.core.config import INSECURE_JWT_SECRET, Settings


@pytest.mark.parametrize("secret", ["", "   ", INSECURE_JWT_SECRET])
def test_production_requires_real_secret(secret):
    with pytest.raises(pydantic.ValidationError):
        Settings(ENVIRONMENT="production", JWT_SECRET_KEY=secret)


def test_production_with_secret():
    settings = Settings(ENVIRONMENT="Production", JWT_SECRET_KEY="a-long-random-secret")
    assert settings.is_production


def test_development_allows_default_secret():
    settings = Settings(ENVIRONMENT="development")
    assert not settings.is_production
    assert settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES == 7 * 24 * 60
    assert settings.BCRYPT_ROUNDS == 10
    assert settings.PREFERENCE_MAX_WEIGHT == 5.0
