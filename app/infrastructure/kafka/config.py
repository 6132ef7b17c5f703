"""
Kafka Configuration
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings


class KafkaConfig(BaseSettings):
    """Kafka 설정"""

    # Kafka 브로커 주소
    bootstrap_servers: List[str] = Field(
        default=["localhost:19092", "localhost:19093", "localhost:19094"],
        description="Kafka bootstrap servers"
    )

    # Producer 설정
    producer_acks: str = Field(
        default="all",
        description="Producer acks: 'all', '1', '0'"
    )
    producer_compression_type: str = Field(
        default="snappy",
        description="Compression type: 'none', 'gzip', 'snappy', 'lz4'"
    )
    producer_retries: int = Field(
        default=3,
        description="Number of publish attempts on timeout"
    )
    producer_request_timeout_ms: int = Field(
        default=30000,
        description="Request timeout in milliseconds"
    )

    # Topic 설정
    topic_chat_events: str = "chat.events"
    topic_message_events: str = "message.events"

    class Config:
        env_prefix = "KAFKA_"
        case_sensitive = False
        extra = "ignore"


# Singleton instance
kafka_config = KafkaConfig()
