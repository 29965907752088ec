from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from guest_engagement.config import AppConfig, Settings, get_config, get_settings
from guest_engagement.core.database import get_db
from guest_engagement.services.sms_gateway import SmsGateway, get_sms_gateway

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


async def get_gateway(db: DBSession, settings: AppSettings) -> SmsGateway:
    """SMS gateway bound to the request's database session."""
    return get_sms_gateway(db, settings)


Gateway = Annotated[SmsGateway, Depends(get_gateway)]
