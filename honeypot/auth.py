from fastapi import Header, HTTPException

from . import config


async def get_api_key(x_api_key: str = Header(..., alias="x-api-key")):
    """
    Validate API key from x-api-key header.
    Default key is 'mySecretKey123' if HONEYPOT_API_KEY is not set.
    """
    if config.API_KEY and x_api_key != config.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return x_api_key
