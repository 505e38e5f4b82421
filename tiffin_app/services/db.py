from pymongo import AsyncMongoClient
from functools import lru_cache
import os
from dotenv import load_dotenv

load_dotenv()

MONGODB_URI = os.getenv('MONGODB_URI')
MONGODB_DB = os.getenv('MONGODB_DB', 'tiffin_khata')
SUBSCRIPTION_RETRY_SECONDS = float(os.getenv('SUBSCRIPTION_RETRY_SECONDS', '5'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


@lru_cache(maxsize=1)
def get_db_client():
    if not MONGODB_URI:
        raise RuntimeError('MONGODB_URI not set in environment')
    client = AsyncMongoClient(MONGODB_URI, tz_aware=True)
    return client


def get_db():
    client = get_db_client()
    return client[MONGODB_DB]
