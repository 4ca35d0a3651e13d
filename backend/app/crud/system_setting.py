from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.system_setting import SystemSetting


class SystemSettingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, key: str) -> SystemSetting | None:
        result = await self.session.execute(
            select(SystemSetting).where(SystemSetting.key == key)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[SystemSetting]:
        result = await self.session.execute(select(SystemSetting).order_by(SystemSetting.key))
        return list(result.scalars().all())

    async def upsert(self, key: str, value: str | None, type_: str) -> SystemSetting:
        setting = await self.get_by_key(key)
        if setting is None:
            setting = SystemSetting(key=key, value=value, type=type_)
            self.session.add(setting)
        else:
            setting.value = value
            setting.type = type_
        await self.session.flush()
        return setting
