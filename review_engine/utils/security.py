import hmac
from datetime import datetime, timedelta
from jose import jwt, JWTError
from config.config import Config

# JWT settings
SECRET_KEY = Config.SECRET_KEY
ALGORITHM = "HS256"


def generate_token(data: dict, expires_delta: timedelta = None) -> str:
    """Generate JWT token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=Config.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """Verify and decode JWT token"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def verify_cron_secret(provided: str) -> bool:
    """Constant-time comparison against CRON_SECRET; unset secret rejects everything"""
    expected = Config.CRON_SECRET
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
