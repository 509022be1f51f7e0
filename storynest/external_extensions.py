from redis import Redis

RedisInterface: Redis | None = None

def init_redis(**constructor_kwargs) -> Redis:
    global RedisInterface
    constructor_kwargs.setdefault('decode_responses', True)
    RedisInterface = Redis(**constructor_kwargs)
    if not RedisInterface.ping():
        raise ConnectionError('Failed to connect to Redis instance')
    return RedisInterface

def set_redis(interface: Redis | None) -> None:
    '''Swap the active cache client, e.g. for an already constructed client or to disable caching with None'''
    global RedisInterface
    RedisInterface = interface

def get_redis() -> Redis | None:
    return RedisInterface
