from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./smartpark.db"
    sql_echo: bool = False

    # Оценка ожидания при предложении зарядки
    wait_minutes_per_car: int = 30
    service_minutes: int = 60

    # Параметры робота (единственный экземпляр)
    bot_max_power_kw: float = 22.0
    bot_battery_percent: int = 100

    # Парковочные места, создаваемые при первом запуске
    spot_codes: List[str] = [f"P{i:02d}" for i in range(1, 11)]

    # Тариф по умолчанию (если тарифов еще нет)
    default_parking_per_hour: Optional[float] = None
    default_energy_per_kwh: Optional[float] = None

    payment_qr_prefix: str = "PAY"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SMARTPARK_")


settings = Settings()
