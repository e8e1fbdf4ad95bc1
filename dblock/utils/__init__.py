from .connector import create_redis_client, db_connection, is_redis_uri
from .logger import JsonFormatter, setup_logging
from .token import random_token, token_length

__all__ = [
	"JsonFormatter",
	"create_redis_client",
	"db_connection",
	"is_redis_uri",
	"random_token",
	"setup_logging",
	"token_length",
]
