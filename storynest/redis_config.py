import os

class RedisConfig:
    TTL_CAP: int = int(os.environ.get("TTL_CAP", 20*60))
    TTL_PROMOTION: int = int(os.environ.get("TTL_PROMOTION", 15))
    TTL_STRONG: int = int(os.environ.get("TTL_STRONG", 5*60))
    TTL_EPHEMERAL: int = int(os.environ.get("TTL_EPHEMERAL", 30))

    NF_SENTINEL_KEY: str = '__NF__'
    NF_SENTINEL_VALUE: int = -1
