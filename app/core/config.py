"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PRS_",
        extra="ignore",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(default="local")
    service_name: str = Field(default="patient-record-service")
    database_url: str = Field(default="sqlite:///./data/patients.db")
    sql_echo: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    paginate_max_size: int = Field(default=100)

    kafka_bootstrap_servers: str | None = Field(default=None)
    kafka_client_id: str = Field(default="patient-record-service")
    kafka_create_topics: bool = Field(default=True)
    embedded_consumers: bool = Field(default=False)
    topic_patient_created: str = Field(default="patient-created")
    topic_patient_updated: str = Field(default="patient-updated")
    topic_patient_deleted: str = Field(default="patient-deleted")
    topic_patient_events: str = Field(default="patient-events")
    topic_partitions: int = Field(default=3, ge=1)
    merged_topic_partitions: int = Field(default=5, ge=1)
    topic_replication_factor: int = Field(default=1, ge=1)

    producer_acks: str = Field(default="all")
    producer_retries: int = Field(default=3, ge=0)
    producer_max_in_flight: int = Field(default=1, ge=1)
    producer_enable_idempotence: bool = Field(default=True)
    producer_delivery_timeout_ms: int = Field(default=120_000)

    consumer_group_id: str = Field(default="patient-service-group")
    consumer_auto_offset_reset: Literal["earliest", "latest"] = Field(default="earliest")
    consumer_poll_timeout: float = Field(default=1.0)
    consumer_max_attempts: Optional[int] = Field(default=None, ge=1)
    dead_letter_topic: str = Field(default="patient-events-dlt")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("kafka_bootstrap_servers", mode="before")
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @field_validator("consumer_max_attempts", mode="before")
    @classmethod
    def blank_attempts_to_none(cls, value: int | str | None) -> int | str | None:
        if value in (None, ""):
            return None
        return value

    @property
    def all_events_group_id(self) -> str:
        return f"{self.consumer_group_id}-all-events"


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings instance."""

    return AppSettings()
